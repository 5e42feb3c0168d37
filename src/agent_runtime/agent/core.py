"""
Core agent implementation: the per-turn model/tool loop.

For one inbound turn the agent:
1. Loads the chat's session (or rebuilds history from stored messages)
2. Compacts the history when it has grown past the configured ceiling
3. Builds a system prompt with relevance-ranked memories
4. Calls the LLM, dispatching requested tools until it produces an answer
5. Persists the session, only once the turn has reached a terminal state
"""

from dataclasses import dataclass

import structlog

from ..config import Settings, get_settings
from ..errors import SessionDecodeError
from ..llm import BaseLLM, LLMResponse, Message, StopReason, TextBlock, create_llm, sanitize_messages
from ..llm.base import ContentBlock, ImageBlock, ToolDefinition, ToolResultBlock, Usage
from ..logging_setup import preview
from ..store import Store
from ..tools import ToolAuthContext, ToolRegistry
from .compaction import CompactionConfig, archive_conversation, compact_messages
from .events import (
    EventStream,
    FinalResponseEvent,
    IterationEvent,
    TextDeltaEvent,
    ToolResultEvent,
    ToolStartEvent,
)
from .history import history_to_messages, load_messages_from_store, strip_thinking
from .memory_context import build_memory_context
from .session import SessionManager
from .system_prompt import build_system_prompt, load_soul_content

logger = structlog.get_logger()

REMEMBER_PREFIX = "/remember:"
EMPTY_REPLY_NUDGE = "Please provide a visible text answer to the user's request."
TRUNCATED_NOTICE = "(Response truncated due to max_tokens limit)"


@dataclass
class AgentRequest:
    """Who is asking: the channel and chat a turn belongs to."""

    caller_channel: str
    chat_id: int
    chat_type: str = "private"


@dataclass
class ImageData:
    """An image attached to the inbound user turn."""

    media_type: str
    base64: str


def last_user_text(messages: list[Message]) -> str:
    for msg in reversed(messages):
        if msg.role == "user":
            return msg.text
    return ""


class Agent:
    """Runs conversational turns against an LLM with tool support.

    The agent holds no per-chat lock: callers must not run two turns for
    the same chat concurrently.
    """

    def __init__(
        self,
        store: Store,
        llm: BaseLLM | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm or create_llm(settings=self.settings)
        self.store = store
        self.tool_registry = tool_registry or ToolRegistry()
        self.sessions = SessionManager(store)
        self.max_tool_iterations = self.settings.max_tool_iterations

        self.compaction_config = CompactionConfig(
            keep_recent_messages=self.settings.compact_keep_recent,
            timeout_secs=self.settings.compaction_timeout_secs,
        )

    async def process_message(
        self,
        request: AgentRequest,
        override_prompt: str | None = None,
        image: ImageData | None = None,
        events: EventStream | None = None,
    ) -> str:
        """Run one turn and return the reply text.

        The inbound user message must already be stored, unless an
        override_prompt (scheduler-driven) is given. Provider errors
        propagate; the session then keeps its last persisted state. The
        event stream, when given, is closed on every exit path.
        """
        try:
            return await self._run_turn(request, override_prompt, image, events)
        finally:
            if events is not None:
                events.close()

    async def _run_turn(
        self,
        request: AgentRequest,
        override_prompt: str | None,
        image: ImageData | None,
        events: EventStream | None,
    ) -> str:
        log = logger.bind(chat_id=request.chat_id, channel=request.caller_channel)

        if override_prompt is None:
            remembered = await self._handle_explicit_remember(request)
            if remembered is not None:
                return remembered

        messages = await self._load_messages(request, override_prompt)

        if image is not None:
            self._attach_image(messages, image)

        messages = sanitize_messages(messages)

        if len(messages) > self.settings.max_session_messages:
            messages = await self._compact(request, messages)

        query = last_user_text(messages)
        memory_context = await build_memory_context(
            self.store, request.chat_id, query, self.settings.memory_token_budget
        )
        system_prompt = build_system_prompt(
            self.settings.bot_username,
            request.caller_channel,
            memory_context.text,
            request.chat_id,
            load_soul_content(self.settings, request.chat_id),
        )

        auth = ToolAuthContext(
            caller_channel=request.caller_channel,
            caller_chat_id=request.chat_id,
            control_chat_ids=tuple(self.settings.control_chat_ids_list),
        )

        log.info("Processing turn", message_count=len(messages), user_query=preview(query))

        tools = self.tool_registry.get_definitions()
        empty_reply_retried = False

        for iteration in range(self.max_tool_iterations):
            if events is not None:
                await events.send(IterationEvent(iteration))

            log.info(
                "Calling LLM",
                iteration=iteration,
                message_count=len(messages),
                provider=self.llm.provider_name,
                model=self.llm.model,
            )
            response = await self._call_llm(system_prompt, messages, tools, events, log, iteration)
            await self._log_usage(request, response.usage, "agent_loop")

            if response.stop_reason == StopReason.TOOL_USE and response.tool_uses:
                messages.append(Message(role="assistant", content=self._assistant_blocks(response)))
                result_blocks = await self._run_tools(response, auth, events, log)
                messages.append(Message(role="user", content=result_blocks))
                continue

            text = strip_thinking(response.text)

            if response.stop_reason == StopReason.MAX_TOKENS:
                if not text:
                    text = TRUNCATED_NOTICE
                log.warning("Response hit max_tokens", iteration=iteration)
            else:
                if response.stop_reason != StopReason.END_TURN:
                    log.warning(
                        "Unexpected stop reason, treating as end_turn",
                        stop_reason=response.raw_stop_reason,
                        tool_use_count=len(response.tool_uses),
                    )

                if not text and not empty_reply_retried:
                    empty_reply_retried = True
                    log.info("Empty visible reply, asking for an answer", iteration=iteration)
                    messages.append(Message(role="assistant", content=response.to_content(include_tool_uses=False)))
                    messages.append(Message(role="user", content=EMPTY_REPLY_NUDGE))
                    continue

            log.info("Turn complete", iteration=iteration, response=preview(text))
            messages.append(Message(role="assistant", content=response.to_content(include_tool_uses=False)))
            return await self._finish(request, messages, text, events)

        notice = (
            f"Reached maximum tool iterations ({self.max_tool_iterations}). "
            "The task may be partially complete."
        )
        log.warning("Max tool iterations reached", max_iterations=self.max_tool_iterations)
        return await self._finish(request, messages, notice, events)

    async def _finish(
        self,
        request: AgentRequest,
        messages: list[Message],
        text: str,
        events: EventStream | None,
    ) -> str:
        await self.sessions.save(request.chat_id, messages)
        if events is not None:
            await events.send(FinalResponseEvent(text))
        return text

    async def _handle_explicit_remember(self, request: AgentRequest) -> str | None:
        """Store `/remember: ...` messages directly as memories, skipping the model."""
        recent = await self.store.get_recent_messages(request.chat_id, 1)
        if not recent:
            return None
        last = recent[-1]
        if last.is_from_bot or not last.content.lower().startswith(REMEMBER_PREFIX):
            return None

        content = last.content[len(REMEMBER_PREFIX):].strip()
        if not content:
            return None

        await self.store.insert_memory(
            request.chat_id, content, category="KNOWLEDGE", source="user_explicit", confidence=0.95
        )
        logger.info("Explicit memory stored", chat_id=request.chat_id)
        return "Remembered."

    async def _load_messages(self, request: AgentRequest, override_prompt: str | None) -> list[Message]:
        """Resume the persisted session, or rebuild history from stored messages."""
        try:
            session = await self.sessions.load(request.chat_id)
        except SessionDecodeError as e:
            logger.error("Session load error, rebuilding from history", chat_id=request.chat_id, error=str(e))
            session = None

        if session is not None and session.messages:
            messages = session.messages
            logger.info(
                "Loaded session",
                chat_id=request.chat_id,
                message_count=len(messages),
                updated_at=session.updated_at.isoformat(),
            )
            if override_prompt is not None:
                messages.append(Message(role="user", content=override_prompt))
            else:
                new_messages = await self.store.get_new_user_messages_since(
                    request.chat_id, session.updated_at, self.settings.max_history_messages
                )
                if new_messages:
                    messages.extend(history_to_messages(new_messages))
                    logger.info("Appended new user messages", chat_id=request.chat_id, count=len(new_messages))
            return messages

        messages = await load_messages_from_store(
            self.store, request.chat_id, request.chat_type, self.settings.max_history_messages
        )
        logger.info("No session, built from stored history", chat_id=request.chat_id, message_count=len(messages))
        if override_prompt is not None:
            messages.append(Message(role="user", content=override_prompt))
        return messages

    @staticmethod
    def _attach_image(messages: list[Message], image: ImageData) -> None:
        if not messages or messages[-1].role != "user":
            return
        last = messages[-1]
        image_block = ImageBlock(media_type=image.media_type, data=image.base64)
        if isinstance(last.content, str):
            blocks: list[ContentBlock] = [image_block, TextBlock(last.content)]
        else:
            blocks = [image_block] + last.content
        messages[-1] = Message(role="user", content=blocks)

    async def _compact(self, request: AgentRequest, messages: list[Message]) -> list[Message]:
        try:
            archive_conversation(self.settings.data_dir, request.caller_channel, request.chat_id, messages)
        except OSError as e:
            logger.warning("Failed to archive conversation", chat_id=request.chat_id, error=str(e))

        compacted, result = await compact_messages(self.llm, messages, self.compaction_config)
        await self._log_usage(request, result.usage, "compaction")
        if not result.success:
            logger.error("Compaction error", chat_id=request.chat_id, error=result.error)
        return compacted

    async def _call_llm(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        events: EventStream | None,
        log,
        iteration: int,
    ) -> LLMResponse:
        outbound = sanitize_messages(messages)
        try:
            if events is not None:
                async def on_delta(delta: str) -> None:
                    await events.send(TextDeltaEvent(delta))

                return await self.llm.send_stream(system_prompt, outbound, tools or None, on_delta)
            return await self.llm.send(system_prompt, outbound, tools or None)
        except Exception as e:
            log.error("LLM error", iteration=iteration, error=str(e))
            raise

    @staticmethod
    def _assistant_blocks(response: LLMResponse) -> list[ContentBlock]:
        return [
            b for b in response.content
            if not (isinstance(b, TextBlock) and not b.text)
        ]

    async def _run_tools(
        self,
        response: LLMResponse,
        auth: ToolAuthContext,
        events: EventStream | None,
        log,
    ) -> list[ContentBlock]:
        """Dispatch tool calls one at a time, in the order the model issued them."""
        tool_uses = response.tool_uses
        log.info("Executing tools", tools=[tu.name for tu in tool_uses])

        result_blocks: list[ContentBlock] = []
        for tool_use in tool_uses:
            if events is not None:
                await events.send(ToolStartEvent(tool_use.name))

            log.info("Executing tool", tool_name=tool_use.name, input=preview(str(tool_use.input), 300))
            result = await self.tool_registry.execute(tool_use.name, tool_use.input, auth)

            result_preview = preview(result.content, 300)
            log.info(
                "Tool executed",
                tool_name=tool_use.name,
                is_error=result.is_error,
                duration_ms=result.duration_ms,
                result=result_preview,
            )

            if events is not None:
                await events.send(ToolResultEvent(
                    name=tool_use.name,
                    is_error=result.is_error,
                    preview=result_preview,
                    duration_ms=result.duration_ms or 0,
                    status_code=result.status_code,
                    bytes=result.bytes,
                    error_type=result.error_type,
                ))

            result_blocks.append(ToolResultBlock(
                tool_use_id=tool_use.id,
                content=result.content,
                is_error=result.is_error,
            ))

        return result_blocks

    async def _log_usage(self, request: AgentRequest, usage: Usage | None, kind: str) -> None:
        if usage is None:
            return
        try:
            await self.store.log_llm_usage(
                request.chat_id,
                request.caller_channel,
                self.llm.provider_name,
                self.llm.model,
                usage.input_tokens,
                usage.output_tokens,
                kind,
            )
        except Exception as e:
            logger.warning("Failed to log LLM usage", chat_id=request.chat_id, error=str(e))
