"""
LLM module: the provider-neutral content model and provider adapters.

Providers:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import (
    BaseLLM,
    Content,
    ContentBlock,
    ImageBlock,
    LLMResponse,
    Message,
    StopReason,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .sanitize import sanitize_messages
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "Content",
    "ContentBlock",
    "ImageBlock",
    "LLMResponse",
    "Message",
    "StopReason",
    "TextBlock",
    "ToolDefinition",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "sanitize_messages",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
