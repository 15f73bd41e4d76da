"""
Precheck Error Taxonomy

Every failure the gate can report to a caller is one of these. Decision-path
failures never reach the caller as exceptions: the Decision Client turns them
into BLOCK decisions tagged with the ``category`` below.
"""

from __future__ import annotations


# Failure categories the gate assigns when it blocks on its own behalf
CONNECTION_FAILED = "connection_failed"
TIMEOUT = "timeout"
AUTHORITY_ERROR = "authority_error"
MALFORMED_RESPONSE = "malformed_response"
AUDIT_UNAVAILABLE = "audit_unavailable"
POLICY_UNAVAILABLE = "policy_unavailable"
AUTHORITY_BLOCK = "authority_block"

# Short caller-facing reasons, one per category. Exception detail stays in logs.
FAILURE_REASONS: dict[str, str] = {
    CONNECTION_FAILED: "Precheck service connection failed - request blocked for security",
    TIMEOUT: "Precheck service timed out - request blocked for security",
    AUTHORITY_ERROR: "Precheck service rejected the request - request blocked for security",
    MALFORMED_RESPONSE: "Precheck service returned an invalid decision - request blocked for security",
    AUDIT_UNAVAILABLE: "Audit spine unavailable - request blocked for security",
    POLICY_UNAVAILABLE: "No governance policy available - request blocked for security",
}


class PrecheckError(Exception):
    """Base class for all gate errors."""


class ActionValidationError(PrecheckError, ValueError):
    """A caller action is malformed and was rejected before any remote call."""


class DecisionUnavailable(PrecheckError):
    """The DecisionAuthority could not produce a usable decision."""

    def __init__(self, category: str, message: str = ""):
        self.category = category
        super().__init__(message or FAILURE_REASONS.get(category, category))


class UnknownTool(PrecheckError):
    """No executor is registered under the requested tool name."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")


class ExecutorError(PrecheckError):
    """A tool executor failed while running an already-approved call."""

    def __init__(self, tool_name: str, details: str):
        self.tool_name = tool_name
        self.details = details
        super().__init__(f"Tool '{tool_name}' failed: {details}")
