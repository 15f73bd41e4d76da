"""
Precheck Data Models

Canonical shapes passed between the gate's components and over the wire to
the DecisionAuthority. Requests are created per caller action and discarded
once the decision call has consumed them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Decision(str, Enum):
    ALLOW = "ALLOW"
    CONFIRM = "CONFIRM"
    BLOCK = "BLOCK"


class ScopeClass(str, Enum):
    INTERNAL = "internal"
    NET_INTERNAL = "net.internal"
    NET_EXTERNAL = "net.external"


class BudgetType(str, Enum):
    USER = "user"
    ORG = "org"


class BudgetSource(str, Enum):
    ACCOUNTING = "accounting"   # fresh from the accounting service
    CACHED = "cached"           # last confirmed snapshot, reused on failure
    FALLBACK = "fallback"       # configured default, nothing confirmed yet


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

class BudgetSubject(BaseModel):
    user_id: str
    org_id: Optional[str] = None
    api_key_hash: Optional[str] = None


class BudgetContext(BaseModel):
    monthly_limit: float
    current_spend: float
    remaining_budget: float
    budget_type: BudgetType = BudgetType.USER
    subject: BudgetSubject
    llm_spend: Optional[float] = None
    purchase_spend: Optional[float] = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: BudgetSource = BudgetSource.ACCOUNTING

    @classmethod
    def compute(
        cls,
        subject: BudgetSubject,
        monthly_limit: float,
        current_spend: float,
        **kwargs: Any,
    ) -> "BudgetContext":
        """Build a snapshot whose remaining budget is derived, not supplied."""
        return cls(
            subject=subject,
            monthly_limit=monthly_limit,
            current_spend=current_spend,
            remaining_budget=round(monthly_limit - current_spend, 2),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Action payloads (tagged by kind)
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""


class ChatPayload(BaseModel):
    kind: Literal["chat"] = "chat"
    messages: list[ChatMessage]
    provider: str


class ToolPayload(BaseModel):
    kind: Literal["tool"] = "tool"
    tool: str
    args: dict[str, Any] = {}


ActionPayload = Annotated[Union[ChatPayload, ToolPayload], Field(discriminator="kind")]


class PolicyConfig(BaseModel):
    """Per-request policy override; opaque to the gate."""
    model_config = ConfigDict(extra="allow")


class ToolConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    scope: Optional[ScopeClass] = None
    metadata: dict[str, Any] = {}


class PurchaseMetadata(BaseModel):
    """Spend details lifted out of a financial tool's arguments."""
    purchase_amount: float
    amount: float
    currency: str = "USD"
    description: str = "Payment transaction"


class PlatformPolicy(BaseModel):
    """The active policy and per-tool metadata published by the platform.

    ``policy`` is None when the platform has none (or could not be reached);
    the gate blocks every action in that case.
    """
    policy: Optional[PolicyConfig] = None
    tool_metadata: dict[str, ToolConfig] = {}
    policy_id: Optional[str] = None
    org_id: Optional[str] = None

    def tool_config_for(self, action_name: str) -> Optional[ToolConfig]:
        config = self.tool_metadata.get(action_name)
        return config.model_copy(deep=True) if config is not None else None


# ---------------------------------------------------------------------------
# Request / decision
# ---------------------------------------------------------------------------

class GovernanceRequest(BaseModel):
    action_name: str = Field(min_length=1)
    scope_class: ScopeClass
    raw_text: str = ""
    payload: ActionPayload
    tags: set[str] = set()
    correlation_id: str
    policy_config_override: Optional[PolicyConfig] = None
    tool_config_override: Optional[ToolConfig] = None
    budget_context: Optional[BudgetContext] = None

    def to_wire(self) -> dict[str, Any]:
        """Render the request in the DecisionAuthority's field names."""
        wire: dict[str, Any] = {
            "tool": self.action_name,
            "scope": self.scope_class.value,
            "raw_text": self.raw_text,
            "payload": self.payload.model_dump(mode="json", exclude={"kind"}),
            "tags": sorted(self.tags),
            "corr_id": self.correlation_id,
        }
        if self.policy_config_override is not None:
            wire["policy_config"] = self.policy_config_override.model_dump(mode="json")
        if self.tool_config_override is not None:
            wire["tool_config"] = self.tool_config_override.model_dump(
                mode="json", exclude_none=True,
            )
        if self.budget_context is not None:
            wire["budget_context"] = self.budget_context.model_dump(
                mode="json", exclude_none=True,
            )
        return wire


class ConfirmationToken(BaseModel):
    url: str = Field(min_length=1)
    confirmation_id: Optional[str] = None
    expires_at: Optional[str] = None


class GovernanceDecision(BaseModel):
    outcome: Decision
    reasons: list[str] = []
    modified_payload: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = {}
    confirmation: Optional[ConfirmationToken] = None
    # Set only when the gate blocks on its own behalf; never read from the wire
    failure_category: Optional[str] = None

    @model_validator(mode="after")
    def _confirm_needs_token(self) -> "GovernanceDecision":
        if self.outcome == Decision.CONFIRM and self.confirmation is None:
            raise ValueError("CONFIRM decision carries no confirmation URL")
        return self

    @property
    def error_type(self) -> Optional[str]:
        return self.failure_category


class ToolCall(BaseModel):
    tool_name: Optional[str] = None
    args: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Caller-facing result
# ---------------------------------------------------------------------------

class GateResult(BaseModel):
    success: bool
    decision: Optional[Decision] = None
    reasons: list[str] = []
    data: Any = None
    confirmation_url: Optional[str] = None
    correlation_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
