"""
Tool Dispatcher

Runs an approved tool call against the registry. The gate decides *whether*
a tool may run; once it runs, the tool's own failures are reported as data
and never alter the decision that preceded them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from precheck.errors import ExecutorError, UnknownTool
from precheck.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    tool_name: str
    ok: bool
    data: Any

    @property
    def error(self) -> str | None:
        if isinstance(self.data, dict) and "error" in self.data:
            return str(self.data["error"])
        return None


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def dispatch(self, tool_name: str, args: dict[str, Any], correlation_id: str = "") -> ToolOutcome:
        """Execute *tool_name* with *args*. Raises UnknownTool for unregistered names."""
        spec = self.registry.get(tool_name)
        if spec is None:
            raise UnknownTool(tool_name)

        try:
            result = await spec.executor.execute(args)
        except Exception as exc:
            failure = ExecutorError(tool_name, str(exc) or exc.__class__.__name__)
            logger.warning("Tool execution failed (corr=%s): %s", correlation_id, failure)
            return ToolOutcome(
                tool_name=tool_name,
                ok=False,
                data={"error": f"Tool '{tool_name}' failed", "details": failure.details},
            )

        # Tools may also report their own errors as data
        ok = not (isinstance(result, dict) and "error" in result)
        return ToolOutcome(tool_name=tool_name, ok=ok, data=result)
