from decimal import Decimal

import pytest

from expense_flow.core import SEED_EXPENSES, ExpenseRecord, ExpenseStatus, apply_decision, apply_validation
from expense_flow.db import apply_all_migrations, connect_sqlite, open_database
from expense_flow.errors import DuplicateRecordError, RecordNotFoundError, StoreCorruptedError
from expense_flow.models import ExpenseValidationResult, ManagerDecisionResult
from expense_flow.repositories import InMemoryKeyValueStore, LocalRecordStore, SqliteKeyValueStore

from fakes import decision_payload


def _record(expense_id: str, status: ExpenseStatus = ExpenseStatus.PENDING) -> ExpenseRecord:
    return ExpenseRecord(
        expense_id=expense_id,
        employee_name="John Doe",
        employee_id="EMP-12345",
        category="Travel",
        amount=Decimal("12.30"),
        expense_date="2026-02-01",
        merchant="SBB",
        status=status,
        submitted_at="2026-02-02T08:00:00.000000Z",
    )


def test_sqlite_mirror_survives_new_store_instances():
    conn = connect_sqlite()
    apply_all_migrations(conn)

    first = LocalRecordStore(SqliteKeyValueStore(conn))
    first.append(_record("EXP-2026-AAAA0001"))

    reopened = LocalRecordStore(SqliteKeyValueStore(conn))
    ids = [record.expense_id for record in reopened.load_all()]

    assert ids == ["EXP-2026-AAAA0001", "EXP-2026-001", "EXP-2026-002", "EXP-2026-003"]
    assert reopened.get("EXP-2026-AAAA0001").amount == Decimal("12.30")


def test_persisted_records_come_before_seed_and_newest_first():
    store = LocalRecordStore(InMemoryKeyValueStore())
    store.append(_record("EXP-2026-A"))
    store.append(_record("EXP-2026-B"))

    ids = [record.expense_id for record in store.load_all()]

    assert ids[:2] == ["EXP-2026-B", "EXP-2026-A"]
    assert ids[2:] == [seed.expense_id for seed in SEED_EXPENSES]


def test_append_refuses_reused_ids():
    store = LocalRecordStore(InMemoryKeyValueStore())
    store.append(_record("EXP-2026-A"))

    with pytest.raises(DuplicateRecordError):
        store.append(_record("EXP-2026-A"))
    with pytest.raises(DuplicateRecordError):
        store.append(_record("EXP-2026-001"))


def test_replace_updates_in_place_and_keeps_order():
    store = LocalRecordStore(InMemoryKeyValueStore(), seed=())
    store.append(_record("EXP-2026-A"))
    store.append(_record("EXP-2026-B"))

    approved = apply_validation(_record("EXP-2026-A"), ExpenseValidationResult(final_decision="approved"))
    store.replace("EXP-2026-A", approved)

    assert [(r.expense_id, r.status) for r in store.load_all()] == [
        ("EXP-2026-B", ExpenseStatus.PENDING),
        ("EXP-2026-A", ExpenseStatus.APPROVED),
    ]


def test_replacing_a_seed_record_shadows_it():
    store = LocalRecordStore(InMemoryKeyValueStore())
    seed = store.get("EXP-2026-001")
    decided = apply_decision(
        seed,
        "approved",
        ManagerDecisionResult.model_validate(decision_payload("approved", "EXP-2026-001")),
    )

    store.replace("EXP-2026-001", decided)

    records = store.load_all()
    assert [r.expense_id for r in records].count("EXP-2026-001") == 1
    assert store.get("EXP-2026-001").status is ExpenseStatus.APPROVED


def test_replace_unknown_or_mismatched_id():
    store = LocalRecordStore(InMemoryKeyValueStore())

    with pytest.raises(RecordNotFoundError):
        store.replace("EXP-2026-NOPE", _record("EXP-2026-NOPE"))
    with pytest.raises(ValueError):
        store.replace("EXP-2026-001", _record("EXP-2026-002"))


@pytest.mark.parametrize("raw", ["{not json", '{"id": "EXP-1"}', '[{"id": "EXP-1"}]'])
def test_corrupted_storage_is_reported(raw):
    store = LocalRecordStore(InMemoryKeyValueStore({"expenses": raw}))

    with pytest.raises(StoreCorruptedError):
        store.load_all()


@pytest.mark.parametrize("status", [ExpenseStatus.ESCALATED, ExpenseStatus.APPROVED])
def test_records_without_matching_outcome_are_reported(status):
    kv = InMemoryKeyValueStore()
    LocalRecordStore(kv, seed=()).append(_record("EXP-2026-A", status))

    with pytest.raises(StoreCorruptedError, match="inconsistent"):
        LocalRecordStore(kv, seed=()).load_all()


def test_storage_key_is_configurable():
    kv = InMemoryKeyValueStore()
    store = LocalRecordStore(kv, key="team-expenses", seed=())
    store.append(_record("EXP-2026-A"))

    assert kv.get("expenses") is None
    assert '"EXP-2026-A"' in kv.get("team-expenses")


def test_database_file_is_created_and_reopened(tmp_path):
    path = tmp_path / "data" / "expenses.sqlite3"
    LocalRecordStore(SqliteKeyValueStore(open_database(path)), seed=()).append(_record("EXP-2026-A"))

    reopened = open_database(path)

    assert apply_all_migrations(reopened) == ["001_kv_store.sql"]
    assert [r.expense_id for r in LocalRecordStore(SqliteKeyValueStore(reopened), seed=()).load_all()] == [
        "EXP-2026-A"
    ]
