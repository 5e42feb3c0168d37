"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any

import openai
import structlog

from ..errors import ProviderError, RateLimitedError
from .base import (
    BaseLLM,
    ContentBlock,
    DeltaCallback,
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

logger = structlog.get_logger()


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Tool call arguments are not valid JSON", arguments=raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to OpenAI chat format.

        Tool results become separate "tool" role messages; tool_use blocks
        become assistant tool_calls.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if isinstance(msg.content, str):
                converted.append({"role": msg.role, "content": msg.content})
                continue

            if msg.role == "assistant":
                tool_calls = [
                    {
                        "id": b.id,
                        "type": "function",
                        "function": {"name": b.name, "arguments": json.dumps(b.input)},
                    }
                    for b in msg.content
                    if isinstance(b, ToolUseBlock)
                ]
                entry: dict[str, Any] = {"role": "assistant", "content": msg.text or None}
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                converted.append(entry)
                continue

            parts: list[dict[str, Any]] = []
            for b in msg.content:
                if isinstance(b, ToolResultBlock):
                    converted.append({
                        "role": "tool",
                        "tool_call_id": b.tool_use_id,
                        "content": b.content,
                    })
                elif isinstance(b, TextBlock):
                    parts.append({"type": "text", "text": b.text})
                elif isinstance(b, ImageBlock):
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": f"data:{b.media_type};base64,{b.data}"},
                    })
            if parts:
                converted.append({"role": "user", "content": parts})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]

    def _build_kwargs(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
    ) -> dict[str, Any]:
        converted_messages = self._convert_messages(messages)

        if system:
            converted_messages.insert(0, {"role": "system", "content": system})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted_messages,
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        return kwargs

    def _wrap_error(self, e: openai.APIError) -> ProviderError:
        if isinstance(e, openai.RateLimitError):
            logger.warning("OpenAI rate limited", error=str(e))
            return RateLimitedError(str(e), provider=self.provider_name, status_code=429)
        status_code = getattr(e, "status_code", None)
        logger.error("OpenAI API error", status_code=status_code, error=str(e))
        return ProviderError(str(e), provider=self.provider_name, status_code=status_code)

    async def send(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Generate a response from GPT."""
        kwargs = self._build_kwargs(system, messages, tools)

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            raise self._wrap_error(e) from e

        choice = response.choices[0]
        message = choice.message

        content: list[ContentBlock] = []
        if message.content:
            content.append(TextBlock(text=message.content))
        for tc in message.tool_calls or []:
            content.append(ToolUseBlock(
                id=tc.id,
                name=tc.function.name,
                input=_parse_arguments(tc.function.arguments),
            ))

        usage = None
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )

        return LLMResponse(
            content=content,
            stop_reason=StopReason.parse(choice.finish_reason),
            usage=usage,
            model=response.model,
            raw_stop_reason=choice.finish_reason,
        )

    async def send_stream(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        on_delta: DeltaCallback,
    ) -> LLMResponse:
        """Stream a response from GPT, assembling tool calls from deltas."""
        kwargs = self._build_kwargs(system, messages, tools)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        text_parts: list[str] = []
        calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage = None
        model = self.model

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                model = chunk.model or model
                if chunk.usage:
                    usage = Usage(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                delta = choice.delta
                if delta.content:
                    text_parts.append(delta.content)
                    await on_delta(delta.content)
                for tc in delta.tool_calls or []:
                    call = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        call["id"] = tc.id
                    if tc.function and tc.function.name:
                        call["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        call["arguments"] += tc.function.arguments
        except openai.APIError as e:
            raise self._wrap_error(e) from e

        content: list[ContentBlock] = []
        if text_parts:
            content.append(TextBlock(text="".join(text_parts)))
        for index in sorted(calls):
            call = calls[index]
            content.append(ToolUseBlock(
                id=call["id"],
                name=call["name"],
                input=_parse_arguments(call["arguments"]),
            ))

        return LLMResponse(
            content=content,
            stop_reason=StopReason.parse(finish_reason),
            usage=usage,
            model=model,
            raw_stop_reason=finish_reason,
        )
