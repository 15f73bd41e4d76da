"""
Decision Interpreter

Single transition from a GovernanceDecision to what the pipeline does next:
execute, defer until an out-of-band approval arrives, or deny. CONFIRM is a
real suspension point; nothing here ever executes a deferred action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from precheck.models import ConfirmationToken, Decision, GovernanceDecision

DEFAULT_BLOCK_REASON = "Action blocked by policy"
DEFAULT_CONFIRM_REASON = "Action requires confirmation before it can run"


class VerdictAction(str, Enum):
    EXECUTE = "EXECUTE"
    DEFER = "DEFER"
    DENY = "DENY"


@dataclass
class Verdict:
    action: VerdictAction
    decision: Decision
    reasons: list[str] = field(default_factory=list)
    args: Optional[dict[str, Any]] = None
    messages: Optional[list[Any]] = None
    confirmation: Optional[ConfirmationToken] = None

    @property
    def should_execute(self) -> bool:
        return self.action == VerdictAction.EXECUTE


def interpret(
    decision: GovernanceDecision,
    args: Optional[dict[str, Any]] = None,
    messages: Optional[list[Any]] = None,
) -> Verdict:
    """Map a decision onto the pipeline's next step.

    On ALLOW, a policy-modified payload (``args`` for tools, ``messages`` for
    chat) replaces the caller's original.
    """
    if decision.outcome == Decision.ALLOW:
        modified = decision.modified_payload or {}
        effective_args = modified.get("args")
        effective_messages = modified.get("messages")
        return Verdict(
            action=VerdictAction.EXECUTE,
            decision=Decision.ALLOW,
            reasons=list(decision.reasons),
            args=effective_args if isinstance(effective_args, dict) else args,
            messages=effective_messages if isinstance(effective_messages, list) else messages,
        )

    if decision.outcome == Decision.CONFIRM:
        return Verdict(
            action=VerdictAction.DEFER,
            decision=Decision.CONFIRM,
            reasons=list(decision.reasons) or [DEFAULT_CONFIRM_REASON],
            confirmation=decision.confirmation,
        )

    return Verdict(
        action=VerdictAction.DENY,
        decision=Decision.BLOCK,
        reasons=list(decision.reasons) or [DEFAULT_BLOCK_REASON],
    )
