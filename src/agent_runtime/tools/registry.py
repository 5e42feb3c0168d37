"""
Tool registry for managing available tools.
"""

import time
from typing import Any, Union

import structlog

from ..llm.base import ToolDefinition
from .base import BaseTool, Tool, ToolAuthContext, ToolResult

logger = structlog.get_logger()


class ToolRegistry:
    """Name-keyed registry of tools with timed, auth-scoped dispatch."""

    def __init__(self):
        self._tools: dict[str, Union[BaseTool, Tool]] = {}
        self._definitions: list[ToolDefinition] | None = None

    def register(self, tool: Union[BaseTool, Tool]) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        self._definitions = None
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            self._definitions = None
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Union[BaseTool, Tool, None]:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM (cached until the set changes)."""
        if self._definitions is None:
            self._definitions = [tool.definition() for tool in self._tools.values()]
        return self._definitions

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        auth: ToolAuthContext | None = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Unknown tools and exceptions raised by a tool come back as error
        results. The duration is attached to every result.
        """
        start = time.perf_counter()
        tool = self.get(name)
        if tool is None:
            result = ToolResult.error(f"unknown tool: {name}", error_type="unknown_tool")
        else:
            try:
                result = await tool.execute(arguments, auth)
            except Exception as e:
                logger.error("Tool execution error", tool_name=name, error=str(e))
                result = ToolResult.error(str(e), error_type="exception")

        result.duration_ms = int((time.perf_counter() - start) * 1000)
        return result
