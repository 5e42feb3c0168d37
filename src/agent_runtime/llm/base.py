"""
Provider-neutral conversation model and the base class for LLM providers.

A message's content is either a plain string or a list of content blocks,
never both. The block dict shape (``{"type": "text", ...}``) is also the
persisted session format.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Literal, Union


@dataclass
class TextBlock:
    """Plain text."""

    text: str
    type: ClassVar[str] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ImageBlock:
    """Inline base64 image. Only present while a model call is in flight."""

    media_type: str
    data: str
    type: ClassVar[str] = "image"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }


@dataclass
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool_use"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    """The result of a tool invocation, referencing its ToolUseBlock id."""

    tool_use_id: str
    content: str
    is_error: bool = False
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            data["is_error"] = True
        return data


ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock]
Content = Union[str, list[ContentBlock]]


def block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Decode one block from its dict form."""
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=data.get("text", ""))
    if block_type == "image":
        source = data.get("source") or {}
        return ImageBlock(media_type=source.get("media_type", ""), data=source.get("data", ""))
    if block_type == "tool_use":
        return ToolUseBlock(id=data.get("id", ""), name=data.get("name", ""), input=data.get("input") or {})
    if block_type == "tool_result":
        content = data.get("content", "")
        if isinstance(content, list):
            content = "\n".join(b.get("text", "") for b in content if isinstance(b, dict))
        return ToolResultBlock(
            tool_use_id=data.get("tool_use_id", ""),
            content=content,
            is_error=bool(data.get("is_error", False)),
        )
    raise ValueError(f"Unknown content block type: {block_type!r}")


@dataclass
class Message:
    """A conversation turn."""

    role: Literal["user", "assistant"]
    content: Content

    @property
    def is_blocks(self) -> bool:
        return isinstance(self.content, list)

    @property
    def blocks(self) -> list[ContentBlock]:
        """Content as blocks; plain text becomes a single TextBlock."""
        if isinstance(self.content, list):
            return self.content
        return [TextBlock(self.content)] if self.content else []

    @property
    def text(self) -> str:
        """Visible text, joining text blocks with newlines."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock) and b.text)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [b.to_dict() for b in self.content]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        content = data.get("content")
        if content is None:
            content = ""
        if isinstance(content, list):
            content = [block_from_dict(b) for b in content]
        elif not isinstance(content, str):
            content = str(content)
        return cls(role=data["role"], content=content)


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    input_schema: dict[str, Any]


class StopReason(str, Enum):
    """Why the model stopped generating."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str | None) -> "StopReason":
        """Normalize provider-specific stop reasons."""
        mapping = {
            "end_turn": cls.END_TURN,
            "stop": cls.END_TURN,
            "stop_sequence": cls.END_TURN,
            "tool_use": cls.TOOL_USE,
            "tool_calls": cls.TOOL_USE,
            "max_tokens": cls.MAX_TOKENS,
            "length": cls.MAX_TOKENS,
        }
        return mapping.get(raw or "", cls.OTHER)


@dataclass
class Usage:
    """Token counts for one model call."""

    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: list[ContentBlock] = field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: Usage | None = None
    model: str = ""
    raw_stop_reason: str | None = None

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock) and b.text)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def to_content(self, include_tool_uses: bool = True) -> Content:
        """Content for the assistant message recording this response.

        Terminal turns pass include_tool_uses=False: a tool_use that will
        never get a result must not enter the history.
        """
        kept_types = (TextBlock, ToolUseBlock) if include_tool_uses else (TextBlock,)
        blocks = [b for b in self.content if isinstance(b, kept_types)]
        if len(blocks) == 1 and isinstance(blocks[0], TextBlock):
            return blocks[0].text
        if not blocks:
            return ""
        return blocks


DeltaCallback = Callable[[str], Awaitable[None]]


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def send(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Send a request and return the complete response."""
        pass

    @abstractmethod
    async def send_stream(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        on_delta: DeltaCallback,
    ) -> LLMResponse:
        """Stream a request, awaiting on_delta for each text chunk.

        Returns the same final shape as send().
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
