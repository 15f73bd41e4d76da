"""
Precheck Gate

The pre-action governance pipeline. Every chat turn or tool call passes
through the same steps before anything leaves the process:

  1. Validate and normalize the action (no remote call if this fails).
  2. Record the inbound action on the Audit Spine, concurrently with the
     budget-context and platform-policy fetches.
  3. Ask the DecisionAuthority, with the platform's policy and tool config
     and the budget context embedded. Callers never supply either override.
  4. Interpret the decision.
  5. Dispatch the tool only on ALLOW.

A cancelled caller aborts at whichever await it is parked on; since dispatch
is the last step, no tool runs for an action whose decision never arrived.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional, Union

from precheck import audit as audit_events
from precheck.budget import BudgetContextFetcher
from precheck.correlation import new_correlation_id
from precheck.decision_client import DecisionClient, blocked_decision
from precheck.dispatcher import ToolDispatcher
from precheck.errors import AUDIT_UNAVAILABLE, AUTHORITY_BLOCK, POLICY_UNAVAILABLE, UnknownTool
from precheck.interpreter import Verdict, VerdictAction, interpret
from precheck.models import (
    BudgetSubject,
    ChatMessage,
    GateResult,
    GovernanceDecision,
    GovernanceRequest,
    PolicyConfig,
    ToolCall,
    ToolConfig,
)
from precheck.normalizer import DEFAULT_FINANCIAL_TOOLS, build_chat_request, build_tool_request
from precheck.policy import PlatformPolicyClient

logger = logging.getLogger(__name__)


class AuditWriteFailed(Exception):
    pass


# Rebuilds the normalized request with the platform's overrides applied
RequestBuilder = Callable[[Optional[PolicyConfig], Optional[ToolConfig]], GovernanceRequest]


class PrecheckGate:
    """
    Wires the pipeline components together. One instance is built at process
    start and shared by every request; it holds no per-request state.
    """

    def __init__(
        self,
        decision_client: DecisionClient,
        budget_fetcher: BudgetContextFetcher,
        policy_client: PlatformPolicyClient,
        dispatcher: ToolDispatcher,
        audit=None,
        financial_tools: frozenset[str] = DEFAULT_FINANCIAL_TOOLS,
        correlation_ids: Callable[[], str] = new_correlation_id,
    ):
        self.decision_client = decision_client
        self.budget_fetcher = budget_fetcher
        self.policy_client = policy_client
        self.dispatcher = dispatcher
        self.audit = audit
        self.financial_tools = financial_tools
        self._correlation_ids = correlation_ids

    # -- Audit --------------------------------------------------------------

    async def _record(
        self,
        subject: BudgetSubject,
        action_type: str,
        correlation_id: str,
        payload: dict[str, Any],
    ) -> None:
        if self.audit is None:
            return
        try:
            await asyncio.to_thread(
                self.audit.log_event,
                actor_id=subject.user_id,
                action_type=action_type,
                correlation_id=correlation_id,
                intent_payload=payload,
            )
        except Exception as exc:
            raise AuditWriteFailed(str(exc)) from exc

    async def _record_best_effort(self, *args: Any) -> None:
        try:
            await self._record(*args)
        except AuditWriteFailed:
            logger.exception("Audit write failed after decision (corr=%s)", args[2])

    # -- Pipeline -----------------------------------------------------------

    async def _decide(
        self,
        subject: BudgetSubject,
        request: GovernanceRequest,
        rebuild: RequestBuilder,
    ) -> GovernanceDecision:
        corr = request.correlation_id
        inbound = {
            "action": request.action_name,
            "scope": request.scope_class.value,
            "tags": sorted(request.tags),
            "raw_text": request.raw_text,
        }
        budget, platform, audited = await asyncio.gather(
            self.budget_fetcher.fetch(subject, corr),
            self.policy_client.fetch(subject, corr),
            self._record(subject, audit_events.INBOUND_ACTION, corr, inbound),
            return_exceptions=True,
        )

        if isinstance(audited, BaseException):
            if not isinstance(audited, AuditWriteFailed):
                raise audited
            logger.error("Inbound action not audited - BLOCKING (corr=%s): %s", corr, audited)
            return blocked_decision(AUDIT_UNAVAILABLE)
        for outcome in (budget, platform):
            if isinstance(outcome, BaseException):
                raise outcome
        if platform.policy is None:
            decision = blocked_decision(POLICY_UNAVAILABLE)
        else:
            request = rebuild(
                platform.policy, platform.tool_config_for(request.action_name),
            ).model_copy(update={"budget_context": budget})
            decision = await self.decision_client.precheck(request, subject.user_id, subject.org_id)
        logger.info(
            "Precheck %s for %s (corr=%s, budget=%s)",
            decision.outcome.value, request.action_name, corr, budget.source.value,
        )

        await self._record_best_effort(subject, audit_events.PRECHECK_DECISION, corr, {
            "action": request.action_name,
            "scope": request.scope_class.value,
            "decision": decision.outcome.value,
            "reasons": decision.reasons,
            "error_type": decision.error_type,
        })
        return decision

    def _withheld(self, verdict: Verdict, decision: GovernanceDecision, corr: str) -> GateResult:
        """Result for a DEFER or DENY verdict; nothing was executed."""
        if verdict.action == VerdictAction.DEFER:
            token = verdict.confirmation
            return GateResult(
                success=False,
                decision=verdict.decision,
                reasons=verdict.reasons,
                confirmation_url=token.url if token else None,
                data={
                    "confirmation_id": token.confirmation_id if token else None,
                    "expires_at": token.expires_at if token else None,
                },
                correlation_id=corr,
                error="Action requires confirmation",
            )
        return GateResult(
            success=False,
            decision=verdict.decision,
            reasons=verdict.reasons,
            correlation_id=corr,
            error="Action blocked by policy",
            # Gate-assigned categories only; the authority's metadata never lands here
            error_type=decision.failure_category or AUTHORITY_BLOCK,
        )

    async def govern_tool_call(
        self,
        subject: BudgetSubject,
        tool_call: ToolCall,
        messages: Optional[Iterable[Union[ChatMessage, dict]]] = None,
    ) -> GateResult:
        """Govern one tool invocation. Raises ActionValidationError on bad input."""
        corr = self._correlation_ids()
        conversation = list(messages or [])
        tool_name = (tool_call.tool_name or "").strip()

        def build(policy_config=None, tool_config=None) -> GovernanceRequest:
            return build_tool_request(
                tool_call,
                corr,
                messages=conversation,
                registry_scope=self.dispatcher.registry.scope_for(tool_name),
                financial_tools=self.financial_tools,
                policy_config=policy_config,
                tool_config=tool_config,
            )

        request = build()
        decision = await self._decide(subject, request, build)
        verdict = interpret(decision, args=dict(tool_call.args))
        if not verdict.should_execute:
            return self._withheld(verdict, decision, corr)

        try:
            outcome = await self.dispatcher.dispatch(request.action_name, verdict.args or {}, corr)
        except UnknownTool as exc:
            return GateResult(
                success=False,
                decision=verdict.decision,
                reasons=verdict.reasons,
                correlation_id=corr,
                error=str(exc),
                error_type="unknown_tool",
            )

        await self._record_best_effort(subject, audit_events.TOOL_DISPATCH, corr, {
            "tool": outcome.tool_name,
            "ok": outcome.ok,
        })
        return GateResult(
            success=outcome.ok,
            decision=verdict.decision,
            reasons=verdict.reasons,
            data=outcome.data,
            correlation_id=corr,
            error=outcome.error,
            error_type=None if outcome.ok else "executor_error",
        )

    async def govern_chat(
        self,
        subject: BudgetSubject,
        messages: Iterable[Union[ChatMessage, dict]],
        provider: str,
    ) -> GateResult:
        """Govern a chat turn. On ALLOW, ``data`` holds the messages to send."""
        corr = self._correlation_ids()
        conversation = list(messages)

        def build(policy_config=None, tool_config=None) -> GovernanceRequest:
            return build_chat_request(
                conversation, provider, corr, policy_config=policy_config, tool_config=tool_config,
            )

        request = build()
        original = request.payload.messages

        decision = await self._decide(subject, request, build)
        verdict = interpret(decision, messages=original)
        if not verdict.should_execute:
            return self._withheld(verdict, decision, corr)

        return GateResult(
            success=True,
            decision=verdict.decision,
            reasons=verdict.reasons,
            data={
                "messages": [
                    m.model_dump() if isinstance(m, ChatMessage) else m
                    for m in verdict.messages or []
                ],
                "provider": request.payload.provider,
            },
            correlation_id=corr,
        )

    async def aclose(self) -> None:
        await self.decision_client.aclose()
        await self.budget_fetcher.aclose()
        await self.policy_client.aclose()
