"""
Tools module: the tool contract, auth context and dispatch registry.
"""

from .base import BaseTool, Tool, ToolAuthContext, ToolParameter, ToolResult
from .registry import ToolRegistry
from .memory_tool import create_memory_tools

__all__ = [
    "BaseTool",
    "Tool",
    "ToolAuthContext",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
    "create_memory_tools",
]
