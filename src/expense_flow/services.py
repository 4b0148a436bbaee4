from __future__ import annotations

import logging
from typing import Optional, Sequence

from expense_flow.config import Settings
from expense_flow.core import (
    DECISIONS,
    ExpenseDraft,
    ExpenseRecord,
    ExpenseStatus,
    apply_decision,
    apply_validation,
    new_expense_id,
    parse_amount,
    utc_now,
)
from expense_flow.db import open_database
from expense_flow.errors import (
    DraftValidationError,
    GatewayError,
    InvalidTransitionError,
    MalformedResponseError,
    OperationInProgressError,
    RecordNotFoundError,
)
from expense_flow.gateway import (
    AgentClient,
    DecisionGateway,
    DecisionService,
    GatewayResult,
    ValidationGateway,
    ValidationService,
    decision_instruction,
    validation_instruction,
)
from expense_flow.repositories import LocalRecordStore, RecordStore, SqliteKeyValueStore
from expense_flow.uploads import ReceiptUpload, ReceiptUploader, receipt_reference

logger = logging.getLogger(__name__)


class LifecycleController:
    """Owns every status change of an expense claim.

    The store is only written after a gateway call has succeeded and its
    payload parsed, so a failed call never leaves a partial record behind.
    Nothing is retried; the caller decides whether to try again.
    """

    def __init__(
        self,
        store: RecordStore,
        validation: ValidationService,
        decisions: DecisionService,
        uploader: Optional[ReceiptUploader] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.validation = validation
        self.decisions = decisions
        self.uploader = uploader
        self.settings = settings or Settings()
        self.in_flight: set[str] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LifecycleController":
        conn = open_database(settings.db_path)
        store = LocalRecordStore(SqliteKeyValueStore(conn), key=settings.storage_key)
        client = AgentClient(settings.agent_base_url, api_key=settings.api_key)
        return cls(
            store=store,
            validation=ValidationGateway(client, settings.validation_agent_id),
            decisions=DecisionGateway(client, settings.decision_agent_id),
            uploader=client,
            settings=settings,
        )

    def records(self) -> list[ExpenseRecord]:
        return self.store.load_all()

    def get(self, expense_id: str) -> ExpenseRecord:
        for record in self.store.load_all():
            if record.expense_id == expense_id:
                return record
        raise RecordNotFoundError(expense_id)

    def is_busy(self, key: str) -> bool:
        return key in self.in_flight

    async def submit(self, draft: ExpenseDraft, receipt: Optional[ReceiptUpload] = None) -> ExpenseRecord:
        problems = draft.validate()
        if problems:
            raise DraftValidationError(problems)
        if receipt is not None:
            receipt.validate(self.settings.max_upload_bytes)

        amount = parse_amount(draft.amount)
        employee_name = draft.employee_name.strip() or self.settings.employee_name
        employee_id = draft.employee_id.strip() or self.settings.employee_id

        key = f"draft:{id(draft)}"
        self._begin(key)
        try:
            assets = await self._upload(receipt)
            message = validation_instruction(
                employee_name=employee_name,
                employee_id=employee_id,
                category=draft.category.strip(),
                amount=amount,
                merchant=draft.merchant.strip(),
                expense_date=draft.expense_date.strip(),
                location=self.settings.employee_location,
                notes=draft.description,
            )
            result = await self.validation.validate(message, assets or None)
            verdict = self._unwrap(result, "validation")

            processing = ExpenseRecord(
                expense_id=new_expense_id(record.expense_id for record in self.store.load_all()),
                employee_name=employee_name,
                employee_id=employee_id,
                category=draft.category.strip(),
                amount=amount,
                expense_date=draft.expense_date.strip(),
                merchant=draft.merchant.strip(),
                description=draft.description.strip(),
                status=ExpenseStatus.PROCESSING,
                submitted_at=utc_now(),
                receipt_url=receipt_reference(receipt, assets),
            )
            record = apply_validation(processing, verdict)
            self.store.append(record)
        finally:
            self.in_flight.discard(key)

        logger.info(
            "Expense %s submitted by %s: %s (%s)",
            record.expense_id,
            record.employee_id,
            record.status.value,
            verdict.final_decision,
        )
        return record

    async def decide(self, record: ExpenseRecord | str, decision: str, rationale: str) -> ExpenseRecord:
        expense_id = record if isinstance(record, str) else record.expense_id
        current = self.get(expense_id)

        if decision not in DECISIONS:
            raise DraftValidationError([f"decision must be one of: {', '.join(DECISIONS)}"])
        if current.status is not ExpenseStatus.ESCALATED:
            raise InvalidTransitionError(
                f"Expense {expense_id} is {current.status.value}; only escalated expenses can be decided"
            )
        if not rationale or not rationale.strip():
            raise DraftValidationError(["rationale is required"])

        self._begin(expense_id)
        try:
            result = await self.decisions.decide(decision_instruction(current, decision, rationale.strip()))
            confirmation = self._unwrap(result, "decision")
            if confirmation.decision != decision:
                logger.warning(
                    "Decision agent confirmed %s for %s but %s was requested",
                    confirmation.decision,
                    expense_id,
                    decision,
                )
                raise MalformedResponseError(
                    f"Decision agent confirmed '{confirmation.decision}' but '{decision}' was requested"
                )
            updated = apply_decision(current, decision, confirmation)
            self.store.replace(expense_id, updated)
        finally:
            self.in_flight.discard(expense_id)

        logger.info("Expense %s %s by manager", expense_id, updated.status.value)
        return updated

    def _begin(self, key: str) -> None:
        if key in self.in_flight:
            raise OperationInProgressError(f"A request for {key} is already in progress")
        self.in_flight.add(key)

    async def _upload(self, receipt: Optional[ReceiptUpload]) -> Sequence[str]:
        if receipt is None:
            return ()
        if self.uploader is None:
            raise GatewayError("Receipt uploads are not configured")
        uploaded = await self.uploader.upload_files([receipt.as_multipart()])
        if not uploaded.success:
            logger.warning("Receipt upload failed: %s", uploaded.error)
            raise GatewayError(uploaded.error or "File upload failed")
        return uploaded.asset_ids

    @staticmethod
    def _unwrap(result: GatewayResult, operation: str):
        if result.ok and result.value is not None:
            return result.value
        logger.warning("%s gateway failed: %s", operation.capitalize(), result.error)
        if result.malformed:
            raise MalformedResponseError(result.error or f"Malformed {operation} response")
        raise GatewayError(result.error or f"{operation.capitalize()} call failed")
