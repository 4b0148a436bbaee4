import asyncio
import json

import httpx

from expense_flow.gateway import (
    AgentClient,
    DecisionGateway,
    ValidationGateway,
    decision_instruction,
    validation_instruction,
)
from expense_flow.core import SEED_EXPENSES

from fakes import VALIDATION_PAYLOAD, decision_payload


def _client(handler) -> AgentClient:
    return AgentClient("http://agents.test/api", api_key="secret", transport=httpx.MockTransport(handler))


def _envelope(result, status="success"):
    return {"success": True, "response": {"status": status, "result": result}}


def test_validation_gateway_parses_successful_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers.get("x-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_envelope(VALIDATION_PAYLOAD))

    gateway = ValidationGateway(_client(handler), "validation-agent")
    result = asyncio.run(gateway.validate("Process expense submission", ["asset-1"]))

    assert result.ok
    assert result.value.final_decision == "escalated"
    assert result.value.validation_summary.policy_compliance.violations[0].severity == "medium"
    assert seen["url"] == "http://agents.test/api/agent/call"
    assert seen["api_key"] == "secret"
    assert seen["body"] == {
        "message": "Process expense submission",
        "agent_id": "validation-agent",
        "assets": ["asset-1"],
    }


def test_missing_final_decision_is_malformed():
    payload = {k: v for k, v in VALIDATION_PAYLOAD.items() if k != "final_decision"}
    gateway = ValidationGateway(_client(lambda request: httpx.Response(200, json=_envelope(payload))), "agent")

    result = asyncio.run(gateway.validate("msg"))

    assert not result.ok
    assert result.malformed
    assert "final_decision" in result.error


def test_unrecognized_final_decision_is_kept_for_escalation():
    payload = dict(VALIDATION_PAYLOAD, final_decision="Needs Review")
    gateway = ValidationGateway(_client(lambda request: httpx.Response(200, json=_envelope(payload))), "agent")

    result = asyncio.run(gateway.validate("msg"))

    assert result.ok
    assert result.value.final_decision == "needs review"


def test_explicit_failure_message_is_passed_through():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "Agent quota exhausted"})

    result = asyncio.run(ValidationGateway(_client(handler), "agent").validate("msg"))

    assert not result.ok
    assert not result.malformed
    assert result.error == "Agent quota exhausted"


def test_agent_error_status_is_a_failure():
    def handler(request):
        body = {"success": True, "response": {"status": "error", "result": {}, "message": "Receipt unreadable"}}
        return httpx.Response(200, json=body)

    result = asyncio.run(ValidationGateway(_client(handler), "agent").validate("msg"))

    assert not result.ok
    assert result.error == "Receipt unreadable"


def test_http_and_transport_errors_become_failures():
    server_error = ValidationGateway(_client(lambda request: httpx.Response(503)), "agent")
    result = asyncio.run(server_error.validate("msg"))
    assert not result.ok
    assert result.error == "Agent service responded with HTTP 503"

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = asyncio.run(ValidationGateway(_client(unreachable), "agent").validate("msg"))
    assert not result.ok
    assert result.error.startswith("Agent service unreachable")


def test_non_json_body_is_a_failure():
    gateway = ValidationGateway(_client(lambda request: httpx.Response(200, text="<html>oops</html>")), "agent")

    result = asyncio.run(gateway.validate("msg"))

    assert not result.ok
    assert result.error == "Agent service returned a non-JSON response"


def test_decision_gateway_parses_confirmation():
    def handler(request):
        body = json.loads(request.content)
        assert "assets" not in body
        return httpx.Response(200, json=_envelope(decision_payload("REJECTED", "EXP-2026-001")))

    result = asyncio.run(DecisionGateway(_client(handler), "decision-agent").decide("msg"))

    assert result.ok
    assert result.value.decision == "rejected"
    assert result.value.audit_trail.previous_status == "escalated"


def test_decision_gateway_rejects_unknown_decision():
    payload = decision_payload("maybe")
    result = asyncio.run(
        DecisionGateway(_client(lambda request: httpx.Response(200, json=_envelope(payload))), "agent").decide("msg")
    )

    assert not result.ok
    assert result.malformed


def test_upload_files_returns_asset_ids():
    def handler(request):
        assert request.url.path == "/api/upload"
        assert b"receipt.png" in request.content
        return httpx.Response(200, json={"success": True, "asset_ids": ["asset-9"]})

    uploaded = asyncio.run(_client(handler).upload_files([("receipt.png", b"\x89PNG", "image/png")]))

    assert uploaded.success
    assert uploaded.asset_ids == ("asset-9",)


def test_instructions_describe_the_claim():
    seed = SEED_EXPENSES[0]
    submission = validation_instruction(
        employee_name="John Doe",
        employee_id="EMP-12345",
        category="Meals",
        amount=seed.amount,
        merchant="Restaurant ABC",
        expense_date="2026-01-15",
        location="Zurich office",
    )
    decision = decision_instruction(seed, "approved", "Within policy")

    assert submission == (
        "Process expense submission: Employee John Doe (ID: EMP-12345) uploaded a Meals receipt "
        "for CHF 85.50 from Restaurant ABC on 2026-01-15. Category: Meals. Employee location: Zurich office."
    )
    assert decision == (
        "Process manager decision: Expense ID EXP-2026-001 for John Doe, CHF 85.50 Meals expense. "
        "Manager decision: APPROVED. Rationale: 'Within policy' Send approved notification to employee."
    )
