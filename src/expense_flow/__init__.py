from .core import (
    ChangeLogEntry,
    ExpenseDraft,
    ExpenseRecord,
    ExpenseStatus,
    apply_decision,
    apply_validation,
)
from .errors import ExpenseFlowError, GatewayError, MalformedResponseError
from .repositories import LocalRecordStore
from .services import LifecycleController
from .ui import render_validation_summary

__all__ = [
    "ChangeLogEntry",
    "ExpenseDraft",
    "ExpenseFlowError",
    "ExpenseRecord",
    "ExpenseStatus",
    "GatewayError",
    "LifecycleController",
    "LocalRecordStore",
    "MalformedResponseError",
    "apply_decision",
    "apply_validation",
    "render_validation_summary",
]
