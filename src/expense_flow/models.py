"""Payload contracts exchanged with the remote validation and decision agents.

Every model is frozen: once a result is attached to an expense record it is
never edited, only replaced together with the record.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class PolicyViolation(_Payload):
    policy_name: str = ""
    violation_type: str = ""
    severity: str = ""
    description: str = ""


class RuleViolation(_Payload):
    rule_name: str = ""
    violation_type: str = ""
    severity: str = ""
    description: str = ""


class ReceiptAuthentication(_Payload):
    passed: bool
    score: float = 0.0
    issues: Tuple[str, ...] = ()


class PolicyCompliance(_Payload):
    passed: bool
    violations: Tuple[PolicyViolation, ...] = ()


class BusinessRules(_Payload):
    passed: bool
    violations: Tuple[RuleViolation, ...] = ()


class ValidationSummary(_Payload):
    receipt_authentication: ReceiptAuthentication
    policy_compliance: PolicyCompliance
    business_rules: BusinessRules


class ExpenseValidationResult(_Payload):
    # Kept as free text: unknown decisions are escalated rather than rejected.
    final_decision: str
    validation_summary: Optional[ValidationSummary] = None
    escalation_reasons: Tuple[str, ...] = ()
    aggregated_recommendation: str = ""
    next_steps: Tuple[str, ...] = ()

    @field_validator("final_decision")
    @classmethod
    def _normalize_decision(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("final_decision must not be empty")
        return normalized


class NotificationDetails(_Payload):
    email_sent: bool = False
    recipient: str = ""
    subject: str = ""


class AuditTrail(_Payload):
    decision_by: str = ""
    previous_status: str = ""
    new_status: str = ""
    recorded_at: str = ""


class ManagerDecisionResult(_Payload):
    decision: Literal["approved", "rejected"]
    expense_id: str = ""
    manager_notes: str = ""
    decision_timestamp: str = ""
    employee_notified: bool = False
    notification_details: Optional[NotificationDetails] = None
    audit_trail: Optional[AuditTrail] = None
    next_steps: Tuple[str, ...] = ()

    @field_validator("decision", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class NormalizedAgentResponse(_Payload):
    status: str = "success"
    result: dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None


class AgentResponse(_Payload):
    """Envelope returned by the agent service for a single call."""

    success: bool
    response: Optional[NormalizedAgentResponse] = None
    error: Optional[str] = None


class UploadResult(_Payload):
    success: bool
    asset_ids: Tuple[str, ...] = ()
    error: Optional[str] = None
