"""Remote agent integration.

Both gateways are one-shot request/response calls: no retry, no idempotency
key, and any timeout belongs to the HTTP transport. Responses are parsed at
this boundary and handed back as a tagged ``GatewayResult`` so callers never
inspect raw payloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Dict, Generic, Optional, Protocol, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .core import ExpenseRecord, format_currency
from .models import AgentResponse, ExpenseValidationResult, ManagerDecisionResult, UploadResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

AGENT_CALL_PATH = "/agent/call"
UPLOAD_PATH = "/upload"
TRANSPORT_TIMEOUT = 120.0


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    malformed: bool = False

    @classmethod
    def success(cls, value: T) -> "GatewayResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, malformed: bool = False) -> "GatewayResult[T]":
        return cls(ok=False, error=error, malformed=malformed)


class ValidationService(Protocol):
    async def validate(
        self, message: str, assets: Optional[Sequence[str]] = None
    ) -> GatewayResult[ExpenseValidationResult]:
        ...


class DecisionService(Protocol):
    async def decide(self, message: str) -> GatewayResult[ManagerDecisionResult]:
        ...


class AgentClient:
    """Async client for the agent service's call and upload endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.transport = transport

    @property
    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=TRANSPORT_TIMEOUT,
            transport=self.transport,
        )

    async def call_agent(
        self,
        message: str,
        agent_id: str,
        assets: Optional[Sequence[str]] = None,
    ) -> AgentResponse:
        body: Dict[str, Any] = {"message": message, "agent_id": agent_id}
        if assets:
            body["assets"] = list(assets)

        payload, error = await self._post_json(AGENT_CALL_PATH, json=body)
        if error is not None:
            logger.warning("Agent %s call failed: %s", agent_id, error)
            return AgentResponse(success=False, error=error)
        try:
            return AgentResponse.model_validate(payload)
        except ValidationError:
            logger.warning("Agent %s returned an unrecognized envelope", agent_id)
            return AgentResponse(success=False, error="Agent returned an unrecognized response envelope")

    async def upload_files(self, files: Sequence[tuple[str, bytes, str]]) -> UploadResult:
        """Upload ``(filename, content, content_type)`` triples and return their asset ids."""
        multipart = [("files", (name, content, content_type)) for name, content, content_type in files]
        payload, error = await self._post_json(UPLOAD_PATH, files=multipart)
        if error is not None:
            return UploadResult(success=False, error=error)
        try:
            return UploadResult.model_validate(payload)
        except ValidationError:
            return UploadResult(success=False, error="File upload returned an unrecognized response")

    async def _post_json(self, path: str, **kwargs: Any) -> tuple[Any, Optional[str]]:
        """POST and decode JSON; transport problems come back as the error half of the pair."""
        try:
            async with self._client() as client:
                resp = await client.post(path, **kwargs)
                resp.raise_for_status()
                return resp.json(), None
        except httpx.HTTPStatusError as exc:
            return None, f"Agent service responded with HTTP {exc.response.status_code}"
        except httpx.HTTPError as exc:
            return None, f"Agent service unreachable: {exc}"
        except ValueError:
            return None, "Agent service returned a non-JSON response"


class ValidationGateway:
    """Calls the expense validation manager agent."""

    def __init__(self, client: AgentClient, agent_id: str):
        self.client = client
        self.agent_id = agent_id

    async def validate(
        self, message: str, assets: Optional[Sequence[str]] = None
    ) -> GatewayResult[ExpenseValidationResult]:
        response = await self.client.call_agent(message, self.agent_id, assets)
        return parse_agent_result(response, ExpenseValidationResult)


class DecisionGateway:
    """Calls the manager decision agent."""

    def __init__(self, client: AgentClient, agent_id: str):
        self.client = client
        self.agent_id = agent_id

    async def decide(self, message: str) -> GatewayResult[ManagerDecisionResult]:
        response = await self.client.call_agent(message, self.agent_id)
        return parse_agent_result(response, ManagerDecisionResult)


def parse_agent_result(response: AgentResponse, model: Type[M]) -> GatewayResult[M]:
    if not response.success:
        return GatewayResult.failure(response.error or "Agent call failed")
    if response.response is None:
        return GatewayResult.failure("Agent reported success without a response body", malformed=True)
    if response.response.status != "success":
        return GatewayResult.failure(
            response.response.message or f"Agent reported status {response.response.status!r}"
        )
    try:
        return GatewayResult.success(model.model_validate(response.response.result))
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
        return GatewayResult.failure(
            f"Malformed {model.__name__} from agent: invalid or missing {', '.join(fields)}",
            malformed=True,
        )


def validation_instruction(
    employee_name: str,
    employee_id: str,
    category: str,
    amount: Decimal,
    merchant: str,
    expense_date: str,
    location: str,
    notes: str = "",
) -> str:
    message = (
        f"Process expense submission: Employee {employee_name} (ID: {employee_id}) uploaded a "
        f"{category} receipt for {format_currency(amount)} from {merchant} on {expense_date}. "
        f"Category: {category}. Employee location: {location}."
    )
    if notes.strip():
        message += f" Notes: {notes.strip()}"
    return message


def decision_instruction(record: ExpenseRecord, decision: str, rationale: str) -> str:
    return (
        f"Process manager decision: Expense ID {record.expense_id} for {record.employee_name}, "
        f"{format_currency(record.amount)} {record.category} expense. "
        f"Manager decision: {decision.upper()}. Rationale: '{rationale}' "
        f"Send {decision} notification to employee."
    )
