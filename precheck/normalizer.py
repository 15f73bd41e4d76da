"""
Request Normalizer

Turns a chat turn or a tool invocation into one GovernanceRequest. Both entry
points validate their input first; a malformed action is rejected with
ActionValidationError before anything is sent to the DecisionAuthority.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from precheck.errors import ActionValidationError
from precheck.models import (
    BudgetContext,
    ChatMessage,
    ChatPayload,
    GovernanceRequest,
    PolicyConfig,
    PurchaseMetadata,
    ScopeClass,
    ToolCall,
    ToolConfig,
    ToolPayload,
)

CHAT_ACTION_NAME = "model.chat"
DEFAULT_FINANCIAL_TOOLS = frozenset({"payment_process"})

_MARKUP_TAG = re.compile(
    r"</?[A-Za-z][A-Za-z0-9-]*"
    r"""(?:\s+[A-Za-z_:][-\w:.]*(?:\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'<>=`]+))?)*"""
    r"\s*/?>"
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_plain_text(text: str) -> str:
    """Strip markup tags so content screening only ever sees plain text."""
    return _MARKUP_TAG.sub("", text).strip()


def coerce_messages(messages: Iterable[Union[ChatMessage, dict]]) -> list[ChatMessage]:
    try:
        return [
            m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
            for m in messages
        ]
    except ValidationError as exc:
        raise ActionValidationError(f"Invalid chat message: {exc.errors()[0]['msg']}") from exc


def last_user_utterance(messages: list[ChatMessage]) -> str:
    """Content of the most recent user message, or "" if there is none.

    Earlier turns are ignored on purpose: a previously blocked message must
    not poison the decision on a new one.
    """
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


def require_tool_name(tool_call: ToolCall) -> str:
    name = (tool_call.tool_name or "").strip()
    if not name:
        raise ActionValidationError("Tool name is required")
    return name


def render_tool_call(tool_name: str, args: dict[str, Any]) -> str:
    return f"Tool call: {tool_name} with arguments: {json.dumps(args, sort_keys=True, default=str)}"


def extract_purchase_metadata(args: dict[str, Any]) -> Optional[PurchaseMetadata]:
    """Lift amount/currency/description out of a financial tool's args.

    Returns None when no amount is given. An amount that is not a finite,
    non-negative number is rejected rather than passed on unparsed.
    """
    raw_amount = args.get("amount")
    if raw_amount is None or raw_amount == "":
        return None
    try:
        amount = float(raw_amount)
    except (TypeError, ValueError) as exc:
        raise ActionValidationError(f"Invalid payment amount: {raw_amount!r}") from exc
    if not math.isfinite(amount) or amount < 0:
        raise ActionValidationError(f"Invalid payment amount: {raw_amount!r}")

    return PurchaseMetadata(
        purchase_amount=amount,
        amount=amount,
        currency=str(args.get("currency") or "USD"),
        description=str(args.get("description") or "Payment transaction"),
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def build_chat_request(
    messages: Iterable[Union[ChatMessage, dict]],
    provider: str,
    correlation_id: str,
    policy_config: Optional[PolicyConfig] = None,
    tool_config: Optional[ToolConfig] = None,
    budget_context: Optional[BudgetContext] = None,
) -> GovernanceRequest:
    """Normalize a chat turn headed for a model provider."""
    parsed = coerce_messages(messages)
    if not parsed:
        raise ActionValidationError("At least one message is required")
    if not provider or not provider.strip():
        raise ActionValidationError("Model provider is required")

    return GovernanceRequest(
        action_name=CHAT_ACTION_NAME,
        scope_class=ScopeClass.NET_EXTERNAL,
        raw_text=to_plain_text(last_user_utterance(parsed)),
        payload=ChatPayload(messages=parsed, provider=provider.strip()),
        tags={"chat"},
        correlation_id=correlation_id,
        policy_config_override=policy_config,
        tool_config_override=tool_config,
        budget_context=budget_context,
    )


def build_tool_request(
    tool_call: ToolCall,
    correlation_id: str,
    messages: Optional[Iterable[Union[ChatMessage, dict]]] = None,
    registry_scope: Optional[ScopeClass] = None,
    financial_tools: frozenset[str] = DEFAULT_FINANCIAL_TOOLS,
    policy_config: Optional[PolicyConfig] = None,
    tool_config: Optional[ToolConfig] = None,
    budget_context: Optional[BudgetContext] = None,
) -> GovernanceRequest:
    """Normalize a tool invocation.

    When the conversation that led to the call is supplied, its latest user
    utterance becomes ``raw_text`` so screening inspects user intent rather
    than the serialized call.
    """
    tool_name = require_tool_name(tool_call)
    args = dict(tool_call.args)

    utterance = last_user_utterance(coerce_messages(messages or []))
    raw_text = utterance if utterance.strip() else render_tool_call(tool_name, args)

    if tool_config is not None and tool_config.scope is not None:
        scope = tool_config.scope
    else:
        scope = registry_scope or ScopeClass.NET_EXTERNAL

    effective_config = tool_config
    if tool_name in financial_tools:
        purchase = extract_purchase_metadata(args)
        if purchase is not None:
            effective_config = (tool_config or ToolConfig()).model_copy(deep=True)
            effective_config.metadata = {**effective_config.metadata, **purchase.model_dump()}

    return GovernanceRequest(
        action_name=tool_name,
        scope_class=scope,
        raw_text=to_plain_text(raw_text),
        payload=ToolPayload(tool=tool_name, args=args),
        tags={"tool"},
        correlation_id=correlation_id,
        policy_config_override=policy_config,
        tool_config_override=effective_config,
        budget_context=budget_context,
    )
