"""
Test support: scriptable stand-ins for the DecisionAuthority and the
platform's budget and policy endpoints (httpx MockTransport), a recording
tool, and an in-memory audit sink.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx

from precheck.budget import BudgetContextFetcher
from precheck.decision_client import DecisionClient
from precheck.dispatcher import ToolDispatcher
from precheck.gate import PrecheckGate
from precheck.policy import PlatformPolicyClient
from precheck.tools import ToolExecutor, ToolSpec, build_demo_registry

AUTHORITY_URL = "http://authority.test"
PLATFORM_URL = "http://platform.test"


def allow_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"decision": "allow", "reasons": []})


def budget_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={
        "monthly_limit": 1000.0,
        "current_spend": 250.0,
        "remaining_budget": 750.0,
        "budget_type": "user",
    })


PLATFORM_POLICY = {
    "id": "pol-1",
    "name": "Default governance policy",
    "orgId": "org-1",
    "budget_enforcement": True,
    "deny_tools": ["shell_exec"],
    "toolMetadata": {
        "payment_process": {"scope": "net.external", "metadata": {"category": "payment"}},
        "file_read": {"scope": "net.internal"},
    },
}


def policy_response(request: httpx.Request) -> httpx.Response:
    if request.method == "POST":
        return httpx.Response(200, json={"registered": True})
    return httpx.Response(200, json={"policies": [PLATFORM_POLICY]})


class Recorder:
    """Wraps a MockTransport handler and keeps every request it saw."""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


class RecordingTool(ToolExecutor):
    def __init__(self, result: Any = None, error: Optional[Exception] = None):
        self.result = result if result is not None else {"ok": True}
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def execute(self, args: dict[str, Any]) -> Any:
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


class MemoryAudit:
    """Same call surface as AuditSpineManager, kept in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[dict[str, Any]] = []

    def log_event(self, actor_id, action_type, correlation_id, intent_payload):
        if self.fail:
            raise RuntimeError("connection refused")
        self.events.append({
            "id": str(len(self.events) + 1),
            "actor_id": actor_id,
            "action_type": action_type,
            "correlation_id": correlation_id,
            "intent_payload": intent_payload,
        })
        return self.events[-1]["id"]

    def get_trail(self, correlation_id):
        return [e for e in self.events if e["correlation_id"] == correlation_id]


def make_decision_client(handler, retries: int = 0, **kwargs) -> DecisionClient:
    kwargs.setdefault("retry_delay", 0.0)
    return DecisionClient(
        AUTHORITY_URL,
        api_key="test-key",
        retries=retries,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def make_budget_fetcher(handler=budget_response, **kwargs) -> BudgetContextFetcher:
    return BudgetContextFetcher(
        PLATFORM_URL,
        api_key="test-key",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def make_policy_client(handler=policy_response, **kwargs) -> PlatformPolicyClient:
    return PlatformPolicyClient(
        PLATFORM_URL,
        api_key="test-key",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def make_gate(
    authority=allow_response,
    budget=budget_response,
    policy=policy_response,
    registry=None,
    audit=None,
    retries: int = 0,
) -> PrecheckGate:
    return PrecheckGate(
        decision_client=make_decision_client(authority, retries=retries),
        budget_fetcher=make_budget_fetcher(budget),
        policy_client=make_policy_client(policy),
        dispatcher=ToolDispatcher(registry or build_demo_registry()),
        audit=audit,
    )


def registry_with(name: str, tool: ToolExecutor, **kwargs):
    registry = build_demo_registry()
    registry.register(ToolSpec(name=name, executor=tool, **kwargs))
    return registry
