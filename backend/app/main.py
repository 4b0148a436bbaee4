from __future__ import annotations

import logging
from typing import Any, Literal, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from expense_flow.config import load_settings
from expense_flow.core import ExpenseDraft, ExpenseRecord, ExpenseStatus
from expense_flow.errors import (
    DraftValidationError,
    ExpenseFlowError,
    GatewayError,
    InvalidTransitionError,
    OperationInProgressError,
    RecordNotFoundError,
)
from expense_flow.logging_config import configure_logging
from expense_flow.services import LifecycleController
from expense_flow.ui import dashboard_stats, filter_records, manager_queue
from expense_flow.uploads import ReceiptUpload

logger = logging.getLogger(__name__)


class DecisionRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    rationale: str


def create_app(controller: Optional[LifecycleController] = None) -> FastAPI:
    app = FastAPI(title="ExpenseFlow API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.controller = controller

    app.get("/health")(health)
    app.get("/expenses")(list_expenses)
    app.get("/expenses/{expense_id}")(get_expense)
    app.post("/expenses", status_code=201)(submit_expense)
    app.post("/expenses/{expense_id}/decision")(decide_expense)
    app.get("/dashboard")(dashboard)
    app.get("/manager/queue")(review_queue)
    return app


def get_controller(request: Request) -> LifecycleController:
    if request.app.state.controller is None:
        settings = load_settings()
        configure_logging(settings.log_level)
        request.app.state.controller = LifecycleController.from_settings(settings)
    return request.app.state.controller


def serialize(record: ExpenseRecord) -> dict[str, Any]:
    payload = record.to_dict()
    payload["days_pending"] = record.pending_days()
    return payload


def to_http_error(exc: ExpenseFlowError) -> HTTPException:
    if isinstance(exc, DraftValidationError):
        return HTTPException(status_code=422, detail=exc.problems)
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, OperationInProgressError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, GatewayError):
        return HTTPException(status_code=502, detail=str(exc))
    logger.exception("Unhandled expense flow error")
    return HTTPException(status_code=500, detail=str(exc))


def health():
    return {"status": "ok"}


def list_expenses(
    status: Optional[ExpenseStatus] = None,
    search: str = "",
    employee_id: Optional[str] = None,
    controller: LifecycleController = Depends(get_controller),
):
    records = filter_records(controller.records(), status=status, employee_id=employee_id, search=search)
    return [serialize(record) for record in records]


def get_expense(expense_id: str, controller: LifecycleController = Depends(get_controller)):
    try:
        return serialize(controller.get(expense_id))
    except RecordNotFoundError as exc:
        raise to_http_error(exc) from exc


async def submit_expense(
    category: str = Form(""),
    amount: str = Form(""),
    date: str = Form(""),
    merchant: str = Form(""),
    description: str = Form(""),
    employee_name: str = Form(""),
    employee_id: str = Form(""),
    receipt: Optional[UploadFile] = File(None),
    controller: LifecycleController = Depends(get_controller),
):
    draft = ExpenseDraft(
        category=category,
        amount=amount,
        expense_date=date,
        merchant=merchant,
        description=description,
        employee_name=employee_name,
        employee_id=employee_id,
    )
    upload = None
    if receipt is not None and receipt.filename:
        upload = ReceiptUpload(
            filename=receipt.filename,
            content_type=receipt.content_type or "application/octet-stream",
            content=await receipt.read(),
        )
    try:
        record = await controller.submit(draft, upload)
    except ExpenseFlowError as exc:
        raise to_http_error(exc) from exc
    return serialize(record)


async def decide_expense(
    expense_id: str,
    payload: DecisionRequest,
    controller: LifecycleController = Depends(get_controller),
):
    try:
        record = await controller.decide(expense_id, payload.decision, payload.rationale)
    except ExpenseFlowError as exc:
        raise to_http_error(exc) from exc
    return serialize(record)


def dashboard(
    employee_id: Optional[str] = None,
    controller: LifecycleController = Depends(get_controller),
):
    records = filter_records(controller.records(), employee_id=employee_id)
    return dashboard_stats(records).to_dict()


def review_queue(search: str = "", controller: LifecycleController = Depends(get_controller)):
    return [serialize(record) for record in manager_queue(controller.records(), search)]


app = create_app()
