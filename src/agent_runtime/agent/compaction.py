"""
Conversation Compaction - replace older turns with a model-written summary.

When a session grows past its ceiling, everything except the most recent
messages is summarized by the LLM and swapped for a two-message exchange:
the summary as a user turn and a short assistant acknowledgment. Compaction
is best-effort: if summarization fails the history is returned untouched.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from ..errors import CompactionError
from ..llm.base import BaseLLM, Message, TextBlock, Usage

logger = structlog.get_logger()

# Approximate characters per token
CHARS_PER_TOKEN = 4

DEFAULT_KEEP_RECENT = 20
DEFAULT_TIMEOUT_SECS = 180

SUMMARY_SYSTEM_PROMPT = "You are a concise summarizer. Summarize the conversation preserving key context."
SUMMARY_ACK = "Understood, I have the context from our previous conversation. Let's continue."


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    keep_recent_messages: int = DEFAULT_KEEP_RECENT
    timeout_secs: int = DEFAULT_TIMEOUT_SECS
    enabled: bool = True


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    original_message_count: int
    compacted_message_count: int
    summary: str
    tokens_saved_estimate: int
    success: bool
    error: str | None = None
    usage: Usage | None = None


def estimate_tokens(messages: list[Message]) -> int:
    """Estimate token count for a list of messages."""
    total_chars = sum(len(m.text) for m in messages)
    # Add overhead for role markers and formatting
    overhead = len(messages) * 20
    return (total_chars + overhead) // CHARS_PER_TOKEN


def _unchanged(messages: list[Message], error: str | None = None) -> CompactionResult:
    return CompactionResult(
        original_message_count=len(messages),
        compacted_message_count=len(messages),
        summary="",
        tokens_saved_estimate=0,
        success=error is None,
        error=error,
    )


def _build_summary_prompt(messages: list[Message]) -> str:
    lines = ["Summarize the following conversation concisely, preserving key facts, decisions, and context:", ""]
    for msg in messages:
        text = msg.text
        if text:
            lines.append(f"[{msg.role}]: {text}")
    return "\n".join(lines) + "\n"


async def _generate_summary(
    llm: BaseLLM,
    messages: list[Message],
    timeout_secs: int,
) -> tuple[str, Usage | None]:
    """Ask the LLM for a summary of messages."""
    prompt = _build_summary_prompt(messages)
    try:
        response = await asyncio.wait_for(
            llm.send(SUMMARY_SYSTEM_PROMPT, [Message(role="user", content=prompt)], None),
            timeout=timeout_secs,
        )
    except asyncio.TimeoutError as e:
        raise CompactionError(f"summarization timed out after {timeout_secs}s") from e
    except Exception as e:
        raise CompactionError(f"compaction LLM call: {e}") from e

    return "".join(b.text for b in response.content if isinstance(b, TextBlock)), response.usage


async def compact_messages(
    llm: BaseLLM,
    messages: list[Message],
    config: CompactionConfig | None = None,
) -> tuple[list[Message], CompactionResult]:
    """Compact a conversation by summarizing older messages.

    Returns the input list itself when it holds at most keep_recent
    messages, when compaction is disabled, or when summarization fails or
    comes back empty. Otherwise the result is the summary exchange followed
    by the last keep_recent messages.
    """
    config = config or CompactionConfig()
    keep_recent = max(0, config.keep_recent_messages)

    if not config.enabled or len(messages) <= keep_recent:
        return messages, _unchanged(messages)

    split_point = len(messages) - keep_recent
    old_messages = messages[:split_point]
    recent_messages = messages[split_point:]

    logger.info(
        "Starting conversation compaction",
        message_count=len(messages),
        summarizing=len(old_messages),
        keep_recent=keep_recent,
    )

    try:
        summary, usage = await _generate_summary(llm, old_messages, config.timeout_secs)
    except CompactionError as e:
        logger.error("Compaction summarization failed, keeping history", error=str(e))
        return messages, _unchanged(messages, error=str(e))

    if not summary:
        logger.warning("Compaction produced an empty summary, keeping history")
        result = _unchanged(messages)
        result.usage = usage
        return messages, result

    compacted = [
        Message(
            role="user",
            content=f"[Previous conversation summary]\n{summary}\n[End of summary - conversation continues below]",
        ),
        Message(role="assistant", content=SUMMARY_ACK),
    ] + recent_messages

    result = CompactionResult(
        original_message_count=len(messages),
        compacted_message_count=len(compacted),
        summary=summary[:500],
        tokens_saved_estimate=max(0, estimate_tokens(messages) - estimate_tokens(compacted)),
        success=True,
        usage=usage,
    )

    logger.info(
        "Compaction complete",
        original=result.original_message_count,
        compacted=result.compacted_message_count,
        tokens_saved=result.tokens_saved_estimate,
    )

    return compacted, result


def archive_conversation(
    data_dir: str | Path,
    channel: str,
    chat_id: int,
    messages: list[Message],
) -> Path:
    """Write the full pre-compaction history to a markdown archive file."""
    directory = Path(data_dir).expanduser() / "runtime" / "groups" / str(chat_id) / "archives"
    directory.mkdir(parents=True, exist_ok=True)

    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    path = directory / f"archive_{stamp}.md"

    parts = [
        "# Conversation Archive\n\n"
        f"Channel: {channel}\nChat ID: {chat_id}\nArchived: {stamp}\n\n---\n\n"
    ]
    for msg in messages:
        parts.append(f"**{msg.role}**\n\n{msg.text}\n\n---\n\n")

    path.write_text("".join(parts), encoding="utf-8")
    logger.info("Conversation archived", chat_id=chat_id, path=str(path), message_count=len(messages))
    return path
