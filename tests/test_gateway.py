"""
Precheck Gateway Test Suite
Drives the HTTP surface in-process and verifies status codes, response
structure and the audit trail endpoint.
"""

from __future__ import annotations

import json

import httpx
from fastapi.testclient import TestClient

from main import create_app
from precheck.config import GatewaySettings

from support import MemoryAudit, Recorder, allow_response, make_gate, policy_response

USER = {"X-Governs-User-Id": "user-1", "X-Governs-Org-Id": "org-1"}
BERLIN = {"latitude": 52.52, "longitude": 13.41, "location_name": "Berlin"}


def _client(**gate_kwargs) -> TestClient:
    return TestClient(create_app(GatewaySettings(), gate=make_gate(**gate_kwargs)))


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

def test_health():
    with _client() as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "operational", "service": "precheck-gateway"}


def test_missing_user_is_unauthorized():
    authority = Recorder(allow_response)
    with _client(authority=authority) as client:
        resp = client.post("/mcp", json={"tool": "kv_get", "args": {}})
    assert resp.status_code == 401
    assert "no authenticated user" in resp.json()["detail"]
    assert authority.calls == 0


def test_missing_tool_is_rejected_before_authority():
    authority = Recorder(allow_response)
    with _client(authority=authority) as client:
        resp = client.post("/mcp", json={"args": {"x": 1}}, headers=USER)

    body = resp.json()
    assert resp.status_code == 400
    assert body["success"] is False
    assert body["error_type"] == "validation_error"
    assert "Tool name is required" in body["error"]
    assert authority.calls == 0


def test_non_object_args_is_rejected():
    with _client() as client:
        resp = client.post("/mcp", json={"tool": "kv_get", "args": [1, 2]}, headers=USER)
    assert resp.status_code == 400
    assert resp.json()["error_type"] == "validation_error"


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

def test_allowed_tool_call_returns_200():
    authority = Recorder(allow_response)
    with _client(authority=authority) as client:
        resp = client.post(
            "/mcp",
            json={
                "tool": "weather_current",
                "args": BERLIN,
                "messages": [{"role": "user", "content": "What's the weather in Berlin?"}],
            },
            headers=USER,
        )

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["decision"] == "ALLOW"
    assert body["data"]["temperature"].endswith("°C")
    assert body["correlation_id"]
    assert authority.requests[0].headers["X-Governs-User-Id"] == "user-1"
    assert authority.requests[0].headers["X-Governs-Org-Id"] == "org-1"


def test_policy_block_returns_403():
    with _client(authority=lambda request: httpx.Response(200, json={
        "decision": "block", "reasons": ["Budget exceeded"],
    })) as client:
        resp = client.post(
            "/mcp", json={"tool": "payment_process", "args": {"amount": 5000}}, headers=USER,
        )

    body = resp.json()
    assert resp.status_code == 403
    assert body["decision"] == "BLOCK"
    assert body["reasons"] == ["Budget exceeded"]
    assert body["error_type"] == "authority_block"
    assert "data" not in body


def test_unavailable_authority_returns_503():
    with _client(authority=_unreachable) as client:
        resp = client.post("/mcp", json={"tool": "kv_get", "args": {}}, headers=USER)

    body = resp.json()
    assert resp.status_code == 503
    assert body["decision"] == "BLOCK"
    assert body["error_type"] == "connection_failed"


def test_body_cannot_override_policy_or_tool_config():
    authority = Recorder(allow_response)
    with _client(authority=authority) as client:
        resp = client.post(
            "/mcp",
            json={
                "tool": "web_search",
                "args": {"query": "status page"},
                "tool_config": {"scope": "internal"},
                "policy_config": {"allow_all": True},
            },
            headers=USER,
        )

    assert resp.status_code == 200
    sent = authority.bodies[0]
    assert sent["scope"] == "net.external"
    assert "tool_config" not in sent
    assert "allow_all" not in sent["policy_config"]
    assert sent["policy_config"]["id"] == "pol-1"


def test_chat_body_cannot_override_policy():
    authority = Recorder(allow_response)
    with _client(authority=authority) as client:
        client.post(
            "/chat/precheck",
            json={
                "messages": [{"role": "user", "content": "hello"}],
                "provider": "openai",
                "policy_config": {"allow_all": True},
                "tool_config": {"scope": "internal"},
            },
            headers=USER,
        )

    sent = authority.bodies[0]
    assert sent["scope"] == "net.external"
    assert "allow_all" not in sent["policy_config"]
    assert "tool_config" not in sent


def test_authority_block_with_error_type_metadata_stays_403():
    with _client(authority=lambda request: httpx.Response(200, json={
        "decision": "block",
        "reasons": ["Monthly budget exhausted"],
        "metadata": {"error_type": "budget_exceeded"},
    })) as client:
        resp = client.post("/mcp", json={"tool": "kv_get", "args": {}}, headers=USER)

    body = resp.json()
    assert resp.status_code == 403
    assert body["error_type"] == "authority_block"


def test_missing_platform_policy_returns_503():
    authority = Recorder(allow_response)
    with _client(
        authority=authority,
        policy=lambda request: httpx.Response(200, json={"policies": []}),
    ) as client:
        resp = client.post("/mcp", json={"tool": "kv_get", "args": {}}, headers=USER)

    body = resp.json()
    assert resp.status_code == 503
    assert body["decision"] == "BLOCK"
    assert body["error_type"] == "policy_unavailable"
    assert authority.calls == 0


def test_confirm_returns_202_with_url():
    with _client(authority=lambda request: httpx.Response(200, json={
        "decision": "confirm",
        "confirmation_url": "https://approve.test/c/7",
    })) as client:
        resp = client.post("/mcp", json={"tool": "email_send", "args": {}}, headers=USER)

    body = resp.json()
    assert resp.status_code == 202
    assert body["decision"] == "CONFIRM"
    assert body["confirmation_url"] == "https://approve.test/c/7"
    assert body["success"] is False


def test_unknown_tool_returns_400():
    with _client() as client:
        resp = client.post("/mcp", json={"tool": "rm_rf", "args": {}}, headers=USER)
    assert resp.status_code == 400
    assert resp.json()["error_type"] == "unknown_tool"


def test_tool_error_is_reported_with_200():
    with _client() as client:
        resp = client.post("/mcp", json={"tool": "weather_current", "args": {}}, headers=USER)

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is False
    assert body["decision"] == "ALLOW"
    assert body["error_type"] == "executor_error"


# ---------------------------------------------------------------------------
# Other endpoints
# ---------------------------------------------------------------------------

def test_list_tools():
    with _client() as client:
        resp = client.get("/mcp")

    body = resp.json()
    names = {tool["name"] for tool in body["tools"]}
    assert resp.status_code == 200
    assert {"weather_current", "payment_process", "kv_set"} <= names
    assert "weather" in body["categories"]


def test_chat_precheck():
    with _client() as client:
        resp = client.post(
            "/chat/precheck",
            json={"messages": [{"role": "user", "content": "hello"}], "provider": "openai"},
            headers=USER,
        )

    body = resp.json()
    assert resp.status_code == 200
    assert body["data"]["messages"] == [{"role": "user", "content": "hello"}]


def test_chat_precheck_without_provider_is_rejected():
    with _client() as client:
        resp = client.post(
            "/chat/precheck", json={"messages": [{"role": "user", "content": "hi"}]}, headers=USER,
        )
    assert resp.status_code == 400


def test_audit_trail_not_configured():
    with _client() as client:
        resp = client.get("/audit/whatever")
    assert resp.status_code == 404


def test_audit_trail_for_governed_action():
    audit = MemoryAudit()
    with _client(audit=audit) as client:
        corr = client.post(
            "/mcp", json={"tool": "kv_get", "args": {"key": "a"}}, headers=USER,
        ).json()["correlation_id"]
        resp = client.get(f"/audit/{corr}")
        missing = client.get("/audit/no-such-id")

    events = resp.json()["events"]
    assert resp.status_code == 200
    assert [e["action_type"] for e in events] == [
        "INBOUND_ACTION", "PRECHECK_DECISION", "TOOL_DISPATCH",
    ]
    assert missing.status_code == 404


def test_audit_outage_returns_503():
    with _client(audit=MemoryAudit(fail=True)) as client:
        resp = client.post("/mcp", json={"tool": "kv_get", "args": {}}, headers=USER)
    assert resp.status_code == 503
    assert resp.json()["error_type"] == "audit_unavailable"


def test_tools_registered_with_platform_on_startup():
    policy = Recorder(policy_response)
    with _client(policy=policy):
        pass

    posts = [r for r in policy.requests if r.method == "POST"]
    assert len(posts) == 1
    assert posts[0].url.path == "/api/v1/tools/register"
    body = json.loads(posts[0].content)
    assert body["agent_id"] == "precheck-gateway"
    names = {tool["function"]["name"] for tool in body["tools"]}
    assert "weather_current" in names


def test_tool_registration_can_be_disabled():
    policy = Recorder(policy_response)
    settings = GatewaySettings(register_tools_on_startup=False)
    with TestClient(create_app(settings, gate=make_gate(policy=policy))):
        pass
    assert policy.calls == 0
