"""
Platform Policy Client

Retrieves the organisation's active governance policy, and the per-tool
metadata that goes with it, from the platform. These are the only sources of
the policy and tool-config overrides sent to the DecisionAuthority; callers
of the gateway cannot supply them.

Unlike the budget snapshot, a missing policy is not degraded around: when
the platform has no policy, or cannot be reached, the gate blocks.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from precheck.models import BudgetSubject, PlatformPolicy, PolicyConfig, ToolConfig
from precheck.tools import ToolRegistry

logger = logging.getLogger(__name__)

POLICIES_PATH = "/api/v1/policies"
TOOL_REGISTRATION_PATH = "/api/v1/tools/register"

_EMPTY_PARAMETERS = {"type": "object", "properties": {}, "required": []}


class PolicyUnavailable(Exception):
    """The platform gave no usable policy. Never leaves this module."""


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def parse_platform_policy(body: Any) -> PlatformPolicy:
    """Validate a platform policies listing; the first policy is the active one."""
    if not isinstance(body, dict) or not isinstance(body.get("policies"), list):
        raise PolicyUnavailable("unexpected policies body")
    if not body["policies"]:
        raise PolicyUnavailable("no policy configured on the platform")

    raw = body["policies"][0]
    if not isinstance(raw, dict):
        raise PolicyUnavailable("policy entry is not an object")

    policy = dict(raw)
    tool_metadata = policy.pop("toolMetadata", None) or policy.pop("tool_metadata", None) or {}
    try:
        return PlatformPolicy(
            policy=PolicyConfig.model_validate(policy),
            tool_metadata={
                name: ToolConfig.model_validate(config)
                for name, config in tool_metadata.items()
            },
            policy_id=_optional_str(policy.get("id")),
            org_id=_optional_str(policy.get("orgId") or policy.get("org_id")),
        )
    except (AttributeError, ValidationError) as exc:
        raise PolicyUnavailable(f"malformed policy: {exc}") from exc


class PlatformPolicyClient:
    """Client for the platform's policy and tool-registration endpoints."""

    def __init__(
        self,
        platform_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        agent_id: str = "precheck-gateway",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.platform_url = platform_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.agent_id = agent_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {"X-Governs-Key": self.api_key} if self.api_key else {}

    async def fetch(self, subject: BudgetSubject, correlation_id: str = "") -> PlatformPolicy:
        """Return the active policy. A policy of None means: block everything."""
        try:
            return await self._fetch_remote(subject)
        except PolicyUnavailable as exc:
            logger.error(
                "No governance policy for %s (corr=%s): %s; blocking",
                subject.user_id, correlation_id, exc,
            )
            return PlatformPolicy(policy=None, org_id=subject.org_id)

    async def _fetch_remote(self, subject: BudgetSubject) -> PlatformPolicy:
        params = {"user_id": subject.user_id}
        if subject.org_id:
            params["org_id"] = subject.org_id

        try:
            resp = await self._client.get(
                f"{self.platform_url}{POLICIES_PATH}",
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise PolicyUnavailable(f"transport error: {exc.__class__.__name__}") from exc

        if resp.status_code != 200:
            raise PolicyUnavailable(f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise PolicyUnavailable("response is not JSON") from exc
        return parse_platform_policy(body)

    async def register_tools(self, registry: ToolRegistry) -> bool:
        """Publish the registry's tools to the platform. Best effort."""
        tools = [
            {
                "type": "function",
                "function": {
                    "name": spec.name,
                    "description": spec.description,
                    "parameters": _EMPTY_PARAMETERS,
                    "category": spec.category,
                    "scope": spec.scope.value,
                },
            }
            for spec in registry
        ]
        try:
            resp = await self._client.post(
                f"{self.platform_url}{TOOL_REGISTRATION_PATH}",
                json={"agent_id": self.agent_id, "tools": tools},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Could not register tools with the platform: %s", exc.__class__.__name__)
            return False

        if not resp.is_success:
            logger.warning("Tool registration rejected by the platform: HTTP %d", resp.status_code)
            return False
        logger.info("Registered %d tools with the platform as %s", len(tools), self.agent_id)
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
