from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from html import escape
from typing import Iterable, Optional

from .core import ExpenseRecord, ExpenseStatus, format_currency
from .models import ExpenseValidationResult


STATUS_LABELS = {
    ExpenseStatus.APPROVED: "Approved",
    ExpenseStatus.REJECTED: "Rejected",
    ExpenseStatus.ESCALATED: "Escalated",
    ExpenseStatus.PENDING: "Pending",
    ExpenseStatus.PROCESSING: "Processing",
}


@dataclass(frozen=True)
class DashboardStats:
    total: int
    approved: int
    pending: int
    rejected: int
    escalated: int
    total_amount: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "approved": self.approved,
            "pending": self.pending,
            "rejected": self.rejected,
            "escalated": self.escalated,
            "total_amount": str(self.total_amount),
            "total_amount_display": format_currency(self.total_amount),
        }


def dashboard_stats(records: Iterable[ExpenseRecord]) -> DashboardStats:
    records = list(records)
    counts = {status: 0 for status in ExpenseStatus}
    for record in records:
        counts[record.status] += 1
    return DashboardStats(
        total=len(records),
        approved=counts[ExpenseStatus.APPROVED],
        pending=counts[ExpenseStatus.PENDING] + counts[ExpenseStatus.PROCESSING],
        rejected=counts[ExpenseStatus.REJECTED],
        escalated=counts[ExpenseStatus.ESCALATED],
        total_amount=sum((record.amount for record in records), Decimal("0.00")),
    )


def matches_search(record: ExpenseRecord, search: str) -> bool:
    needle = search.strip().lower()
    if not needle:
        return True
    return any(
        needle in value.lower() for value in (record.expense_id, record.employee_name, record.merchant)
    )


def manager_queue(records: Iterable[ExpenseRecord], search: str = "") -> list[ExpenseRecord]:
    return [
        record
        for record in records
        if record.status is ExpenseStatus.ESCALATED and matches_search(record, search)
    ]


def filter_records(
    records: Iterable[ExpenseRecord],
    status: Optional[ExpenseStatus] = None,
    employee_id: Optional[str] = None,
    search: str = "",
) -> list[ExpenseRecord]:
    return [
        record
        for record in records
        if (status is None or record.status is status)
        and (employee_id is None or record.employee_id == employee_id)
        and matches_search(record, search)
    ]


def render_status_badge(status: ExpenseStatus) -> str:
    return f'<span class="badge badge-{status.value}">{STATUS_LABELS[status]}</span>'


def render_validation_summary(result: ExpenseValidationResult) -> str:
    parts = [
        '<section class="validation-summary">',
        "<h2>Validation Summary</h2>",
        f"<p><strong>Decision:</strong> {escape(result.final_decision)}</p>",
    ]
    summary = result.validation_summary
    if summary is not None:
        checks = [
            ("Receipt authentication", summary.receipt_authentication.passed, summary.receipt_authentication.issues),
            (
                "Policy compliance",
                summary.policy_compliance.passed,
                [f"{v.severity}: {v.description}" for v in summary.policy_compliance.violations],
            ),
            (
                "Business rules",
                summary.business_rules.passed,
                [f"{v.severity}: {v.description}" for v in summary.business_rules.violations],
            ),
        ]
        parts.append("<ul>")
        for label, passed, findings in checks:
            outcome = "passed" if passed else "failed"
            items = "".join(f"<li>{escape(finding)}</li>" for finding in findings)
            parts.append(f'<li class="{outcome}">{label}: {outcome}{f"<ul>{items}</ul>" if items else ""}</li>')
        parts.append("</ul>")
    if result.escalation_reasons:
        reasons = "".join(f"<li>{escape(reason)}</li>" for reason in result.escalation_reasons)
        parts.append(f"<h3>Escalation reasons</h3><ul>{reasons}</ul>")
    if result.aggregated_recommendation:
        parts.append(f"<p>{escape(result.aggregated_recommendation)}</p>")
    parts.append("</section>")
    return "".join(parts)
