"""
Precheck SDK: Client
Thin synchronous wrapper over the Precheck Gateway, for agents that want
their tool calls and chat turns governed before they run.
"""

from __future__ import annotations

from typing import Any, Optional, Type, TypeVar

import httpx

from precheck_sdk.models import ChatPrecheckResult, ToolCallResult

ResultT = TypeVar("ResultT", bound=ToolCallResult)


class PrecheckGatewayClient:
    """
    Client for the Precheck Gateway.

    Sends tool calls and chat turns for governance on behalf of one user.
    A reply that is not JSON, or not a 2xx, is never reported as success.
    """

    def __init__(
        self,
        gateway_url: str,
        user_id: str,
        org_id: str | None = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            gateway_url: Base URL of the gateway (e.g. "http://localhost:8000")
            user_id: Subject the actions are taken for
            org_id: Optional organisation of the subject
            timeout: HTTP request timeout in seconds
            client: Pre-configured httpx client (tests, custom transports)
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.user_id = user_id
        self.org_id = org_id
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"X-Governs-User-Id": self.user_id}
        if self.org_id:
            headers["X-Governs-Org-Id"] = self.org_id
        return headers

    @staticmethod
    def _parse(resp: httpx.Response, model: Type[ResultT]) -> ResultT:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {"error": f"Gateway returned a non-JSON response (HTTP {resp.status_code})"}

        return model(
            success=bool(body.get("success")) and resp.is_success,
            status_code=resp.status_code,
            decision=body.get("decision"),
            reasons=body.get("reasons", []),
            data=body.get("data"),
            confirmation_url=body.get("confirmation_url"),
            correlation_id=body.get("correlation_id"),
            error=body.get("error") or body.get("detail"),
            error_type=body.get("error_type"),
            raw=body,
        )

    def call_tool(
        self,
        tool: str,
        args: dict[str, Any] | None = None,
        messages: list[dict[str, Any]] | None = None,
    ) -> ToolCallResult:
        """
        Submit a tool call to the gateway; it runs only if the gate allows it.

        Args:
            tool: Registered tool name (e.g. "weather_current")
            args: Tool arguments
            messages: Conversation that led to the call, for intent screening

        Returns:
            ToolCallResult with decision, reasons and the tool's data.
        """
        resp = self._client.post(
            f"{self.gateway_url}/mcp",
            json={"tool": tool, "args": args or {}, "messages": messages or []},
            headers=self._headers(),
        )
        return self._parse(resp, ToolCallResult)

    def precheck_chat(
        self,
        messages: list[dict[str, Any]],
        provider: str,
    ) -> ChatPrecheckResult:
        """Ask whether a chat turn may be sent to *provider*."""
        resp = self._client.post(
            f"{self.gateway_url}/chat/precheck",
            json={"messages": messages, "provider": provider},
            headers=self._headers(),
        )
        return self._parse(resp, ChatPrecheckResult)

    def list_tools(self) -> dict:
        """List the tools the gateway can dispatch via GET /mcp."""
        resp = self._client.get(f"{self.gateway_url}/mcp")
        resp.raise_for_status()
        return resp.json()

    def health(self) -> dict:
        """Check gateway health via GET /health."""
        resp = self._client.get(f"{self.gateway_url}/health")
        return resp.json()

    def close(self) -> None:
        self._client.close()
