from __future__ import annotations


class ExpenseFlowError(Exception):
    """Base class for every failure raised by the expense lifecycle."""


class DraftValidationError(ExpenseFlowError, ValueError):
    """Raised when submitted form data is incomplete or invalid."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


class InvalidTransitionError(ExpenseFlowError):
    """Raised when a status change is not allowed from the current status."""


class OperationInProgressError(ExpenseFlowError):
    """Raised when a second call targets a claim that already has one outstanding."""


class GatewayError(ExpenseFlowError):
    """Raised when an agent call fails; the message is the gateway's own."""


class MalformedResponseError(GatewayError):
    """Raised when an agent reports success but its payload is unusable."""


class StoreError(ExpenseFlowError):
    pass


class RecordNotFoundError(StoreError, KeyError):
    def __str__(self) -> str:
        return f"Expense record not found: {self.args[0]}"


class DuplicateRecordError(StoreError):
    pass


class StoreCorruptedError(StoreError):
    pass
