"""ToolExecutor: dispatches model tool calls to registered handlers.

Provides a single ``execute()`` method that looks up the tool by name,
invokes its handler with the provided arguments, and returns a structured
``ToolResult``. Handler failures are reported back to the model rather
than raised, so one bad tool call never aborts an iteration.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Sequence

from canopy.toolkit.models import ToolResult

if TYPE_CHECKING:
    from canopy.toolkit.models import ToolDefinition

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Executes tool calls against a fixed set of tool definitions.

    Usage::

        executor = ToolExecutor([search_tool.definition()])
        result = executor.execute("web_search", {"query": "solar costs"})
    """

    def __init__(self, tools: Sequence[ToolDefinition]) -> None:
        self._tools: dict[str, ToolDefinition] = {tool.name: tool for tool in tools}

    def schemas(self) -> list[dict]:
        """OpenAI-format schemas for every registered tool."""
        return [tool.to_openai() for tool in self._tools.values()]

    def available_tools(self) -> list[str]:
        return list(self._tools.keys())

    def execute(self, tool_name: str, arguments: dict | str | None) -> ToolResult:
        """Execute a tool by name with the given arguments.

        Args:
            tool_name: Name of the tool to execute.
            arguments: Dict of arguments, or the raw JSON string the model
                sent.

        Returns:
            ToolResult with success/failure status and output/error.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolResult(
                tool_name=tool_name,
                success=False,
                error=f"Unknown tool: {tool_name}",
            )

        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as exc:
                return ToolResult(
                    tool_name=tool_name,
                    success=False,
                    error=f"Invalid JSON arguments: {exc}",
                )
        if not isinstance(arguments, dict):
            arguments = {}

        try:
            result = tool.handler(**arguments)
        except Exception as exc:
            logger.debug("Tool %s failed: %s", tool_name, exc, exc_info=True)
            return ToolResult(
                tool_name=tool_name,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
            )
        output = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False)
        return ToolResult(tool_name=tool_name, success=True, output=output)
