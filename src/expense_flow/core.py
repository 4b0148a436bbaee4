from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Iterable, Literal
from uuid import uuid4

from .errors import InvalidTransitionError
from .models import ExpenseValidationResult, ManagerDecisionResult


ISO_TS = "%Y-%m-%dT%H:%M:%S.%fZ"

CATEGORIES = ("Meals", "Travel", "Accommodation", "Office Supplies", "Other")

CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000.00")

Decision = Literal["approved", "rejected"]
DECISIONS: tuple[Decision, ...] = ("approved", "rejected")

TransitionSource = Literal["validation", "manager"]


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (ExpenseStatus.APPROVED, ExpenseStatus.REJECTED)

    @property
    def awaiting_decision(self) -> bool:
        return self in (ExpenseStatus.PENDING, ExpenseStatus.PROCESSING, ExpenseStatus.ESCALATED)


@dataclass(frozen=True)
class ChangeLogEntry:
    expense_id: str
    field_name: str
    old_value: Any
    new_value: Any
    source: TransitionSource
    changed_at: str = field(default_factory=lambda: utc_now())


@dataclass
class ExpenseDraft:
    """Raw form input for a new claim, before any checks."""

    category: str = ""
    amount: str | Decimal | float | None = None
    expense_date: str = ""
    merchant: str = ""
    description: str = ""
    employee_name: str = ""
    employee_id: str = ""

    def validate(self) -> list[str]:
        problems: list[str] = []
        for required in ["category", "expense_date", "merchant"]:
            value = getattr(self, required)
            if value is None or not str(value).strip():
                problems.append(f"{required} is required")
        if self.category and self.category.strip() and self.category.strip() not in CATEGORIES:
            problems.append(f"category must be one of: {', '.join(CATEGORIES)}")
        if self.expense_date and self.expense_date.strip():
            try:
                date.fromisoformat(self.expense_date.strip())
            except ValueError:
                problems.append("expense_date must be an ISO date (YYYY-MM-DD)")

        if self.amount is None or str(self.amount).strip() == "":
            problems.append("amount is required")
        else:
            raw = to_decimal(self.amount)
            if raw is None:
                problems.append(f"amount is not a number: {self.amount!r}")
            elif abs(raw) > MAX_AMOUNT:
                problems.append(f"amount must not exceed {format_currency(MAX_AMOUNT)}")
            elif parse_amount(raw) < 0:
                problems.append("amount must not be negative")
        return problems


@dataclass(frozen=True)
class ExpenseRecord:
    expense_id: str
    employee_name: str
    employee_id: str
    category: str
    amount: Decimal
    expense_date: str
    merchant: str
    description: str = ""
    status: ExpenseStatus = ExpenseStatus.PENDING
    submitted_at: str = field(default_factory=lambda: utc_now())
    receipt_url: str | None = None
    validation_result: ExpenseValidationResult | None = None
    manager_decision: ManagerDecisionResult | None = None
    change_log: tuple[ChangeLogEntry, ...] = ()

    def pending_days(self, now: datetime | None = None) -> int | None:
        """Approximate age of a claim that still waits for an outcome."""
        if not self.status.awaiting_decision:
            return None
        submitted = parse_timestamp(self.submitted_at)
        if submitted is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max((now - submitted).days, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.expense_id,
            "employee_name": self.employee_name,
            "employee_id": self.employee_id,
            "category": self.category,
            "amount": str(self.amount),
            "date": self.expense_date,
            "merchant": self.merchant,
            "description": self.description,
            "receipt_url": self.receipt_url,
            "status": self.status.value,
            "validation_result": (
                self.validation_result.model_dump(mode="json") if self.validation_result else None
            ),
            "manager_decision": (
                self.manager_decision.model_dump(mode="json") if self.manager_decision else None
            ),
            "submitted_at": self.submitted_at,
            "change_log": [asdict(entry) for entry in self.change_log],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExpenseRecord":
        amount = parse_amount(data["amount"])
        if amount is None:
            raise ValueError(f"Invalid amount for expense {data.get('id')}: {data['amount']!r}")
        validation = data.get("validation_result")
        decision = data.get("manager_decision")
        return cls(
            expense_id=data["id"],
            employee_name=data.get("employee_name", ""),
            employee_id=data.get("employee_id", ""),
            category=data["category"],
            amount=amount,
            expense_date=data["date"],
            merchant=data["merchant"],
            description=data.get("description") or "",
            receipt_url=data.get("receipt_url"),
            status=ExpenseStatus(data["status"]),
            validation_result=ExpenseValidationResult.model_validate(validation) if validation else None,
            manager_decision=ManagerDecisionResult.model_validate(decision) if decision else None,
            submitted_at=data.get("submitted_at") or utc_now(),
            change_log=tuple(ChangeLogEntry(**entry) for entry in data.get("change_log") or ()),
        )


def status_for_validation(final_decision: str) -> ExpenseStatus:
    if final_decision == "approved":
        return ExpenseStatus.APPROVED
    if final_decision == "rejected":
        return ExpenseStatus.REJECTED
    return ExpenseStatus.ESCALATED


def apply_validation(record: ExpenseRecord, result: ExpenseValidationResult) -> ExpenseRecord:
    """Attach the automated verdict to a claim that has not been validated yet."""
    if record.validation_result is not None:
        raise InvalidTransitionError(f"Expense {record.expense_id} already has a validation outcome")
    if record.status not in (ExpenseStatus.PENDING, ExpenseStatus.PROCESSING):
        raise InvalidTransitionError(
            f"Expense {record.expense_id} cannot be validated from status {record.status.value}"
        )
    return _transition(
        record,
        status_for_validation(result.final_decision),
        "validation",
        validation_result=result,
    )


def apply_decision(record: ExpenseRecord, decision: str, result: ManagerDecisionResult) -> ExpenseRecord:
    """Record a manager's final decision on an escalated claim."""
    if record.status is not ExpenseStatus.ESCALATED:
        raise InvalidTransitionError(
            f"Expense {record.expense_id} is {record.status.value}; only escalated expenses can be decided"
        )
    if record.manager_decision is not None:
        raise InvalidTransitionError(f"Expense {record.expense_id} already has a manager decision")
    if decision not in DECISIONS:
        raise InvalidTransitionError(f"Unknown decision: {decision!r}")
    if result.decision != decision:
        raise InvalidTransitionError(
            f"Decision confirmation for {record.expense_id} says {result.decision}, expected {decision}"
        )
    return _transition(record, ExpenseStatus(decision), "manager", manager_decision=result)


def _transition(
    record: ExpenseRecord,
    new_status: ExpenseStatus,
    source: TransitionSource,
    **changes: Any,
) -> ExpenseRecord:
    entry = ChangeLogEntry(
        expense_id=record.expense_id,
        field_name="status",
        old_value=record.status.value,
        new_value=new_status.value,
        source=source,
    )
    return replace(record, status=new_status, change_log=record.change_log + (entry,), **changes)


def consistency_problems(record: ExpenseRecord) -> list[str]:
    """Return every way the record breaks the status/outcome invariants."""
    problems: list[str] = []
    validation = record.validation_result
    decision = record.manager_decision
    escalated_by_validation = (
        validation is not None and status_for_validation(validation.final_decision) is ExpenseStatus.ESCALATED
    )

    if record.status is ExpenseStatus.ESCALATED:
        if not escalated_by_validation:
            problems.append("escalated without an escalating validation outcome")
        if decision is not None:
            problems.append("escalated but already carries a manager decision")
    elif record.status.is_terminal:
        if decision is None:
            if validation is None:
                problems.append(f"{record.status.value} without any outcome")
            elif status_for_validation(validation.final_decision) is not record.status:
                problems.append("status does not match the validation outcome")
        else:
            if not escalated_by_validation:
                problems.append("manager decision on a claim that was never escalated")
            if decision.decision != record.status.value:
                problems.append("status does not match the manager decision")
    elif decision is not None:
        problems.append(f"{record.status.value} but carries a manager decision")
    return problems


def new_expense_id(taken: Iterable[str], now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    taken_ids = set(taken)
    while True:
        candidate = f"EXP-{year}-{uuid4().hex[:8].upper()}"
        if candidate not in taken_ids:
            return candidate


def to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def parse_amount(value: Any) -> Decimal | None:
    """Parse an amount and round it half-up to whole cents.

    Extra decimal places are rounded, not rejected: ``"85.555"`` becomes
    ``85.56`` and ``"-0.001"`` becomes ``0.00``. Returns ``None`` for
    anything that is not a finite number or has too many digits to round.
    """
    amount = to_decimal(value)
    if amount is None:
        return None
    try:
        rounded = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    return rounded.copy_abs() if rounded.is_zero() else rounded


def format_currency(amount: Decimal) -> str:
    quantized = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    grouped = f"{abs(quantized):,.2f}".replace(",", "’")
    sign = "-" if quantized < 0 else ""
    return f"{sign}CHF {grouped}"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_TS)


def parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


SEED_EXPENSES: tuple[ExpenseRecord, ...] = (
    ExpenseRecord(
        expense_id="EXP-2026-001",
        employee_name="John Doe",
        employee_id="EMP-12345",
        category="Meals",
        amount=Decimal("85.50"),
        expense_date="2026-01-15",
        merchant="Restaurant ABC",
        description="Client dinner meeting",
        status=ExpenseStatus.ESCALATED,
        submitted_at="2026-01-16T10:30:00Z",
        validation_result=ExpenseValidationResult(
            final_decision="escalated",
            escalation_reasons=("Meal expense requires attendee list for client entertainment",),
            aggregated_recommendation="Manager review required for client entertainment expense.",
        ),
    ),
    ExpenseRecord(
        expense_id="EXP-2026-002",
        employee_name="Jane Smith",
        employee_id="EMP-67890",
        category="Travel",
        amount=Decimal("450.00"),
        expense_date="2026-01-12",
        merchant="Swiss Rail",
        description="Travel to Bern office",
        status=ExpenseStatus.APPROVED,
        submitted_at="2026-01-13T09:15:00Z",
        validation_result=ExpenseValidationResult(
            final_decision="approved",
            aggregated_recommendation="All checks passed.",
        ),
    ),
    ExpenseRecord(
        expense_id="EXP-2026-003",
        employee_name="Mike Johnson",
        employee_id="EMP-11111",
        category="Office Supplies",
        amount=Decimal("125.00"),
        expense_date="2026-01-14",
        merchant="Office Depot",
        description="Team supplies",
        status=ExpenseStatus.PENDING,
        submitted_at="2026-01-15T14:20:00Z",
    ),
)
