"""Tool registry for managing and dispatching tools."""

import logging
from typing import Any

from .base import Tool, ToolResult

logger = logging.getLogger(__name__)


class ToolNotFoundError(Exception):
    """Raised when the model calls a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"tool not found: {tool_name}")


class ToolRegistry:
    """Registry for available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_tools_schema(self) -> list[dict[str, Any]]:
        """Schemas for all tools (for function calling)."""
        return [tool.get_schema() for tool in self._tools.values()]

    async def dispatch(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        """Dispatch a tool call by name.

        Raises:
            ToolNotFoundError: If no tool with that name is registered.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise ToolNotFoundError(tool_name)

        valid, error = tool.validate_args(args)
        if not valid:
            return ToolResult(success=False, output="", error=error)

        try:
            return await tool.execute(**args)
        except Exception as e:
            logger.warning("Tool %s failed: %s", tool_name, e)
            return ToolResult(
                success=False,
                output="",
                error=f"Tool execution failed: {e}",
            )
