"""
Anthropic Claude LLM provider.
"""

from typing import Any

import anthropic
import structlog

from ..errors import ProviderError, RateLimitedError
from .base import (
    BaseLLM,
    ContentBlock,
    DeltaCallback,
    LLMResponse,
    Message,
    StopReason,
    TextBlock,
    ToolDefinition,
    ToolUseBlock,
    Usage,
)

logger = structlog.get_logger()


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to Anthropic format.

        The block dict shape already matches the Messages API.
        """
        return [msg.to_dict() for msg in messages]

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    def _build_kwargs(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._convert_messages(messages),
        }

        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        return kwargs

    def _convert_response(self, response: Any) -> LLMResponse:
        content: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                content.append(ToolUseBlock(
                    id=block.id,
                    name=block.name,
                    input=dict(block.input) if isinstance(block.input, dict) else {},
                ))

        usage = None
        if response.usage is not None:
            usage = Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        return LLMResponse(
            content=content,
            stop_reason=StopReason.parse(response.stop_reason),
            usage=usage,
            model=response.model,
            raw_stop_reason=response.stop_reason,
        )

    async def send(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Generate a response from Claude."""
        kwargs = self._build_kwargs(system, messages, tools)

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            logger.warning("Anthropic rate limited", error=str(e))
            raise RateLimitedError(str(e), provider=self.provider_name, status_code=429) from e
        except anthropic.APIStatusError as e:
            logger.error("Anthropic API error", status_code=e.status_code, error=str(e))
            raise ProviderError(str(e), provider=self.provider_name, status_code=e.status_code) from e
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise ProviderError(str(e), provider=self.provider_name) from e

        return self._convert_response(response)

    async def send_stream(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        on_delta: DeltaCallback,
    ) -> LLMResponse:
        """Stream a response from Claude."""
        kwargs = self._build_kwargs(system, messages, tools)

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    await on_delta(text)
                response = await stream.get_final_message()
        except anthropic.RateLimitError as e:
            logger.warning("Anthropic rate limited", error=str(e))
            raise RateLimitedError(str(e), provider=self.provider_name, status_code=429) from e
        except anthropic.APIStatusError as e:
            logger.error("Anthropic streaming error", status_code=e.status_code, error=str(e))
            raise ProviderError(str(e), provider=self.provider_name, status_code=e.status_code) from e
        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise ProviderError(str(e), provider=self.provider_name) from e

        return self._convert_response(response)
