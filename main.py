"""
Precheck Gateway

Single point of entry for an agent's outbound actions. Every tool call and
every chat turn is sent through the PrecheckGate before it may run; an
unreachable DecisionAuthority blocks the action rather than letting it pass.

Run with:  uvicorn main:app --port 8000
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from precheck.audit import AuditSpineManager
from precheck.budget import BudgetContextFetcher
from precheck.config import GatewaySettings
from precheck.decision_client import DecisionClient
from precheck.dispatcher import ToolDispatcher
from precheck.errors import AUTHORITY_BLOCK, ActionValidationError
from precheck.gate import PrecheckGate
from precheck.identity import resolve_subject
from precheck.models import BudgetSubject, Decision, GateResult, ToolCall
from precheck.policy import PlatformPolicyClient
from precheck.tools import build_demo_registry

logger = logging.getLogger("precheck.gateway")

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class McpRequest(BaseModel):
    tool: Optional[str] = None
    args: dict[str, Any] = {}
    # Conversation that led to the call; its last user message is screened
    messages: list[dict[str, Any]] = []


class ChatPrecheckRequest(BaseModel):
    messages: list[dict[str, Any]] = []
    provider: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _subject(request: Request, user_id: Optional[str], org_id: Optional[str]) -> BudgetSubject:
    """Resolve the acting subject from the auth proxy's headers.

    Raises HTTPException(401) when no user is present.
    """
    settings: GatewaySettings = request.app.state.settings
    try:
        return resolve_subject(
            user_id,
            org_id or settings.org_id or None,
            settings.api_key or None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc))


def _status_for(result: GateResult) -> int:
    if result.decision == Decision.CONFIRM:
        return 202
    if result.decision == Decision.BLOCK:
        # Explicit policy denial vs. a decision path that was unavailable
        return 403 if result.error_type == AUTHORITY_BLOCK else 503
    if result.error_type == "unknown_tool":
        return 400
    return 200


def _respond(result: GateResult) -> JSONResponse:
    return JSONResponse(
        status_code=_status_for(result),
        content=result.model_dump(mode="json", exclude_none=True),
    )


def _validation_failure(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "error_type": "validation_error"},
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "operational", "service": "precheck-gateway"}


@router.post("/mcp")
async def call_tool(
    body: McpRequest,
    request: Request,
    x_governs_user_id: Optional[str] = Header(None),
    x_governs_org_id: Optional[str] = Header(None),
):
    """
    Govern and, if allowed, execute one tool call.

    200 ALLOW (tool errors are reported in ``data`` with ``success=false``),
    202 CONFIRM, 403 policy BLOCK, 503 decision path unavailable,
    400 invalid request or unknown tool, 401 no authenticated user.
    """
    subject = _subject(request, x_governs_user_id, x_governs_org_id)
    gate: PrecheckGate = request.app.state.gate
    try:
        result = await gate.govern_tool_call(
            subject,
            ToolCall(tool_name=body.tool, args=body.args),
            messages=body.messages,
        )
    except ActionValidationError as exc:
        return _validation_failure(str(exc))
    return _respond(result)


@router.get("/mcp")
def list_tools(request: Request):
    registry = request.app.state.gate.dispatcher.registry
    return {
        "tools": [
            {
                "name": spec.name,
                "description": spec.description or f"Implementation of {spec.name}",
                "category": spec.category,
                "scope": spec.scope.value,
            }
            for spec in registry
        ],
        "categories": registry.categories(),
    }


@router.post("/chat/precheck")
async def precheck_chat(
    body: ChatPrecheckRequest,
    request: Request,
    x_governs_user_id: Optional[str] = Header(None),
    x_governs_org_id: Optional[str] = Header(None),
):
    """Govern a chat turn before it is sent to the model provider."""
    subject = _subject(request, x_governs_user_id, x_governs_org_id)
    gate: PrecheckGate = request.app.state.gate
    try:
        result = await gate.govern_chat(
            subject,
            body.messages,
            body.provider,
        )
    except ActionValidationError as exc:
        return _validation_failure(str(exc))
    return _respond(result)


@router.get("/audit/{correlation_id}")
async def audit_trail(correlation_id: str, request: Request):
    """Every audit event recorded for one governed action."""
    gate: PrecheckGate = request.app.state.gate
    if gate.audit is None:
        raise HTTPException(status_code=404, detail="Audit spine is not configured.")
    events = await asyncio.to_thread(gate.audit.get_trail, correlation_id)
    if not events:
        raise HTTPException(status_code=404, detail=f"No audit events for {correlation_id}.")
    return {"correlation_id": correlation_id, "events": events}


# ---------------------------------------------------------------------------
# App construction
# ---------------------------------------------------------------------------

def build_gate(settings: GatewaySettings) -> PrecheckGate:
    """Construct the long-lived pipeline services for one process."""
    audit = AuditSpineManager(settings.audit_db_config) if settings.audit_db_config else None
    return PrecheckGate(
        decision_client=DecisionClient(
            settings.precheck_base_url,
            api_key=settings.api_key,
            org_id=settings.org_id,
            timeout=settings.precheck_timeout_seconds,
            attempt_timeout=settings.precheck_attempt_timeout_seconds,
            retries=settings.precheck_retries,
            retry_delay=settings.precheck_retry_delay,
        ),
        budget_fetcher=BudgetContextFetcher(
            settings.platform_url,
            api_key=settings.api_key,
            timeout=settings.budget_timeout_seconds,
            fallback_monthly_limit=settings.budget_fallback_monthly_limit,
            cache_ttl_seconds=settings.budget_cache_ttl_seconds,
            cache_max_subjects=settings.budget_cache_max_subjects,
        ),
        policy_client=PlatformPolicyClient(
            settings.platform_url,
            api_key=settings.api_key,
            timeout=settings.policy_timeout_seconds,
            agent_id=settings.agent_id,
        ),
        dispatcher=ToolDispatcher(build_demo_registry()),
        audit=audit,
        financial_tools=settings.financial_tools,
    )


def create_app(
    settings: Optional[GatewaySettings] = None,
    gate: Optional[PrecheckGate] = None,
) -> FastAPI:
    """Build the gateway. The gate is created once, in the lifespan."""
    settings = settings or GatewaySettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.gate = gate or build_gate(settings)
        if app.state.gate.audit is None:
            logger.warning("Audit spine not configured; governed actions are not audited")
        if settings.register_tools_on_startup:
            await app.state.gate.policy_client.register_tools(app.state.gate.dispatcher.registry)
        try:
            yield
        finally:
            await app.state.gate.aclose()

    app = FastAPI(title="Precheck Gateway", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        return _validation_failure(f"Invalid request body: {location} {first.get('msg', '')}".strip())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
