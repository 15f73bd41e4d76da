"""Client for the Precheck Gateway."""

from precheck_sdk.client import PrecheckGatewayClient
from precheck_sdk.models import ChatPrecheckResult, ToolCallResult

__all__ = ["PrecheckGatewayClient", "ChatPrecheckResult", "ToolCallResult"]
