"""
Decision Interpreter Test Suite
ALLOW executes (with any policy-modified payload), CONFIRM defers, BLOCK
denies. Nothing but ALLOW may ever yield an EXECUTE verdict.
"""

from __future__ import annotations

import pytest

from precheck.interpreter import (
    DEFAULT_BLOCK_REASON,
    DEFAULT_CONFIRM_REASON,
    VerdictAction,
    interpret,
)
from precheck.models import ConfirmationToken, Decision, GovernanceDecision

ARGS = {"amount": 50, "currency": "USD"}


def test_allow_executes_with_original_args():
    verdict = interpret(GovernanceDecision(outcome=Decision.ALLOW), args=ARGS)

    assert verdict.action == VerdictAction.EXECUTE
    assert verdict.should_execute
    assert verdict.decision == Decision.ALLOW
    assert verdict.args == ARGS


def test_allow_with_modified_args_replaces_originals():
    decision = GovernanceDecision(
        outcome=Decision.ALLOW,
        modified_payload={"args": {"amount": 10, "currency": "USD"}},
    )
    verdict = interpret(decision, args=ARGS)
    assert verdict.args == {"amount": 10, "currency": "USD"}


def test_allow_with_modified_messages_replaces_originals():
    original = [{"role": "user", "content": "my SSN is 123-45-6789"}]
    redacted = [{"role": "user", "content": "my SSN is [REDACTED]"}]
    decision = GovernanceDecision(outcome=Decision.ALLOW, modified_payload={"messages": redacted})

    assert interpret(decision, messages=original).messages == redacted


def test_modification_of_the_wrong_shape_is_ignored():
    decision = GovernanceDecision(outcome=Decision.ALLOW, modified_payload={"args": "nope"})
    assert interpret(decision, args=ARGS).args == ARGS


def test_confirm_defers_with_token():
    token = ConfirmationToken(url="https://approve.test/c/9", confirmation_id="c-9")
    verdict = interpret(
        GovernanceDecision(outcome=Decision.CONFIRM, reasons=["Over limit"], confirmation=token),
        args=ARGS,
    )

    assert verdict.action == VerdictAction.DEFER
    assert not verdict.should_execute
    assert verdict.confirmation == token
    assert verdict.reasons == ["Over limit"]
    assert verdict.args is None


def test_confirm_without_reasons_gets_default():
    token = ConfirmationToken(url="https://approve.test/c/9")
    verdict = interpret(GovernanceDecision(outcome=Decision.CONFIRM, confirmation=token))
    assert verdict.reasons == [DEFAULT_CONFIRM_REASON]


@pytest.mark.parametrize("reasons, expected", [
    (["Budget exceeded"], ["Budget exceeded"]),
    ([], [DEFAULT_BLOCK_REASON]),
])
def test_block_denies(reasons, expected):
    verdict = interpret(GovernanceDecision(outcome=Decision.BLOCK, reasons=reasons), args=ARGS)

    assert verdict.action == VerdictAction.DENY
    assert not verdict.should_execute
    assert verdict.reasons == expected
