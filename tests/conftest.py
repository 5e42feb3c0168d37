"""
Shared fixtures: a temporary SQLite store, settings and a scripted LLM.
"""

import pytest
import pytest_asyncio

from agent_runtime.config import Settings
from agent_runtime.llm.base import (
    BaseLLM,
    LLMResponse,
    Message,
    StopReason,
    TextBlock,
    ToolUseBlock,
    Usage,
)
from agent_runtime.store import SQLStore


class ScriptedLLM(BaseLLM):
    """Returns queued responses in order and records every call."""

    def __init__(self, responses=None, error: Exception | None = None):
        super().__init__(api_key="test", model="mock-model")
        self.responses = list(responses or [])
        self.error = error
        self.calls: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "mock"

    async def send(self, system, messages, tools=None):
        self.calls.append({"system": system, "messages": list(messages), "tools": tools})
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise AssertionError("ScriptedLLM ran out of responses")
        response = self.responses.pop(0)
        return response(messages) if callable(response) else response

    async def send_stream(self, system, messages, tools, on_delta):
        response = await self.send(system, messages, tools)
        if response.text:
            await on_delta(response.text)
        return response


def text_response(text: str, stop_reason: StopReason = StopReason.END_TURN) -> LLMResponse:
    content = [TextBlock(text)] if text else []
    return LLMResponse(
        content=content,
        stop_reason=stop_reason,
        usage=Usage(input_tokens=10, output_tokens=5),
        model="mock-model",
        raw_stop_reason=stop_reason.value,
    )


def tool_response(tool_id: str, name: str, tool_input: dict) -> LLMResponse:
    return LLMResponse(
        content=[ToolUseBlock(id=tool_id, name=name, input=tool_input)],
        stop_reason=StopReason.TOOL_USE,
        usage=Usage(input_tokens=10, output_tokens=5),
        model="mock-model",
        raw_stop_reason="tool_use",
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        database_url=f"sqlite+aiosqlite:///{tmp_path}/agent.db",
        bot_username="testbot",
        control_chat_ids="",
    )


@pytest_asyncio.fixture
async def store(tmp_path):
    sql_store = await SQLStore.create(f"sqlite+aiosqlite:///{tmp_path}/agent.db")
    yield sql_store
    await sql_store.close()

