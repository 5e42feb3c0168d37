"""
Rebuilding conversation history from stored chat messages.
"""

from ..llm.base import ImageBlock, Message
from ..llm.sanitize import sanitize_messages
from ..models import StoredMessage
from ..store import Store

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


def is_group_chat(chat_type: str) -> bool:
    return chat_type == "group" or chat_type.endswith("_group")


def history_to_messages(history: list[StoredMessage]) -> list[Message]:
    """Convert stored chat messages to conversation messages.

    Bot messages become assistant turns; everything else is a user turn,
    prefixed with the sender's name when known. Adjacent same-role turns
    are merged.
    """
    messages = []
    for stored in history:
        if stored.is_from_bot:
            messages.append(Message(role="assistant", content=stored.content))
            continue
        content = stored.content
        if stored.sender_name:
            content = f"[{stored.sender_name}]: {content}"
        messages.append(Message(role="user", content=content))

    return sanitize_messages(messages)


async def load_messages_from_store(
    store: Store,
    chat_id: int,
    chat_type: str,
    max_history: int,
) -> list[Message]:
    """Build history for a chat that has no persisted session."""
    if is_group_chat(chat_type):
        history = await store.get_messages_since_last_bot_response(chat_id, max_history, max_history)
    else:
        history = await store.get_recent_messages(chat_id, max_history)

    return history_to_messages(history)


def strip_thinking(text: str) -> str:
    """Remove <think>...</think> spans. An unclosed tag drops the rest of the text."""
    while True:
        start = text.find(THINK_OPEN)
        if start == -1:
            break
        end = text.find(THINK_CLOSE, start)
        if end == -1:
            text = text[:start]
            break
        text = text[:start] + text[end + len(THINK_CLOSE):]
    return text.strip()


def strip_images_for_session(messages: list[Message]) -> list[Message]:
    """Drop image blocks so base64 payloads are never persisted."""
    result = []
    for msg in messages:
        if isinstance(msg.content, str):
            result.append(msg)
            continue
        kept = [b for b in msg.content if not isinstance(b, ImageBlock)]
        if not kept:
            result.append(Message(role=msg.role, content="[image]"))
        else:
            result.append(Message(role=msg.role, content=kept))
    return result
