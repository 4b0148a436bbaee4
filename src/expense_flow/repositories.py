from __future__ import annotations

import json
import sqlite3
from typing import Any, Iterable, Optional, Protocol

from expense_flow.core import SEED_EXPENSES, ExpenseRecord, consistency_problems
from expense_flow.errors import DuplicateRecordError, RecordNotFoundError, StoreCorruptedError


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class RecordStore(Protocol):
    def load_all(self) -> list[ExpenseRecord]:
        ...

    def append(self, record: ExpenseRecord) -> None:
        ...

    def replace(self, expense_id: str, record: ExpenseRecord) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value


class SqliteKeyValueStore:
    """Key-value mirror backed by the ``kv_store`` table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO kv_store(key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key)
                DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value),
            )


class LocalRecordStore:
    """Expense records kept as one JSON list under a single key, merged with seed data on load.

    Persisted records come first. A seed record is hidden once a record with
    the same id has been persisted, so deciding a seeded claim survives reloads
    without producing two entries for one id.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        key: str = "expenses",
        seed: Iterable[ExpenseRecord] = SEED_EXPENSES,
    ):
        self.kv = kv
        self.key = key
        self.seed = tuple(seed)

    def load_all(self) -> list[ExpenseRecord]:
        persisted = [self._parse(item) for item in self._read()]
        persisted_ids = {record.expense_id for record in persisted}
        return persisted + [record for record in self.seed if record.expense_id not in persisted_ids]

    def get(self, expense_id: str) -> ExpenseRecord:
        for record in self.load_all():
            if record.expense_id == expense_id:
                return record
        raise RecordNotFoundError(expense_id)

    def ids(self) -> set[str]:
        ids = {str(item.get("id")) for item in self._read()}
        ids.update(record.expense_id for record in self.seed)
        return ids

    def append(self, record: ExpenseRecord) -> None:
        if record.expense_id in self.ids():
            raise DuplicateRecordError(f"Expense id already in use: {record.expense_id}")
        items = self._read()
        items.insert(0, record.to_dict())
        self._write(items)

    def replace(self, expense_id: str, record: ExpenseRecord) -> None:
        if record.expense_id != expense_id:
            raise ValueError(f"Record id {record.expense_id} does not match {expense_id}")
        items = self._read()
        for index, item in enumerate(items):
            if item.get("id") == expense_id:
                items[index] = record.to_dict()
                self._write(items)
                return
        if any(seed.expense_id == expense_id for seed in self.seed):
            items.append(record.to_dict())
            self._write(items)
            return
        raise RecordNotFoundError(expense_id)

    def _read(self) -> list[dict[str, Any]]:
        raw = self.kv.get(self.key)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreCorruptedError(f"Stored expenses under {self.key!r} are not valid JSON") from exc
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise StoreCorruptedError(f"Stored expenses under {self.key!r} must be a list of objects")
        return items

    def _write(self, items: list[dict[str, Any]]) -> None:
        self.kv.set(self.key, json.dumps(items, ensure_ascii=False))

    @staticmethod
    def _parse(item: dict[str, Any]) -> ExpenseRecord:
        try:
            record = ExpenseRecord.from_dict(item)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreCorruptedError(f"Stored expense {item.get('id')!r} cannot be read: {exc}") from exc
        problems = consistency_problems(record)
        if problems:
            raise StoreCorruptedError(f"Stored expense {record.expense_id!r} is inconsistent: {'; '.join(problems)}")
        return record
