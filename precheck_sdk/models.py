"""
Precheck SDK: Data Models
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class ToolCallResult(BaseModel):
    """Result of a POST /mcp call."""
    success: bool
    status_code: int
    decision: Optional[str] = None     # ALLOW | CONFIRM | BLOCK, None if rejected
    reasons: list[str] = []
    data: Any = None
    confirmation_url: Optional[str] = None
    correlation_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    raw: dict                          # full response body

    @property
    def needs_confirmation(self) -> bool:
        return self.decision == "CONFIRM"


class ChatPrecheckResult(ToolCallResult):
    """Result of a POST /chat/precheck call."""

    @property
    def messages(self) -> list[dict[str, Any]]:
        if self.decision != "ALLOW" or not isinstance(self.data, dict):
            return []
        return self.data.get("messages", [])
