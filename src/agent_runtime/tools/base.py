"""
Base classes for tools.

Every tool returns the same ToolResult envelope and receives the caller's
ToolAuthContext as an explicit argument, separate from its declared input.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from ..llm.base import ToolDefinition


@dataclass
class ToolResult:
    """Result from a tool execution."""

    content: str
    is_error: bool = False
    status_code: int | None = None
    bytes: int = 0
    duration_ms: int | None = None
    error_type: str | None = None

    @classmethod
    def success(cls, content: str) -> "ToolResult":
        return cls(content=content, status_code=0, bytes=len(content.encode("utf-8")))

    @classmethod
    def error(cls, content: str, error_type: str | None = None) -> "ToolResult":
        return cls(
            content=content,
            is_error=True,
            status_code=1,
            bytes=len(content.encode("utf-8")),
            error_type=error_type,
        )


@dataclass(frozen=True)
class ToolAuthContext:
    """Caller identity attached to every tool invocation."""

    caller_channel: str
    caller_chat_id: int
    control_chat_ids: tuple[int, ...] = field(default_factory=tuple)

    def is_control_chat(self) -> bool:
        """Whether the caller is a control chat with cross-chat access."""
        return self.caller_chat_id in self.control_chat_ids

    def can_access_chat(self, target_chat_id: int) -> bool:
        """Whether the caller may act on target_chat_id."""
        return self.is_control_chat() or self.caller_chat_id == target_chat_id


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    The handler is called as ``handler(auth, **input)``.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.get_parameters_schema(),
        )

    async def execute(self, input: dict[str, Any], auth: ToolAuthContext | None) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(auth, **input)


class BaseTool(ABC):
    """Base class for class-based tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    @abstractmethod
    async def execute(self, input: dict[str, Any], auth: ToolAuthContext | None) -> ToolResult:
        """Execute the tool with given input."""
        pass

    def definition(self) -> ToolDefinition:
        """Convert to a tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.parameters,
        )
