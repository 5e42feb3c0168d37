"""
Session management for conversations.

A session is the JSON-encoded message list for one chat. Image payloads are
stripped before anything is written.
"""

import json
from dataclasses import dataclass
from datetime import datetime

import structlog

from ..errors import SessionDecodeError
from ..llm.base import Message
from ..store import Store
from .history import strip_images_for_session

logger = structlog.get_logger()


def encode_messages(messages: list[Message]) -> str:
    """Serialize messages for persistence, without image blocks."""
    stripped = strip_images_for_session(messages)
    return json.dumps([m.to_dict() for m in stripped], ensure_ascii=False)


def decode_messages(data: str) -> list[Message]:
    try:
        raw = json.loads(data)
        if not isinstance(raw, list):
            raise ValueError("session payload is not a list")
        return [Message.from_dict(item) for item in raw]
    except (ValueError, KeyError, TypeError) as e:
        raise SessionDecodeError(f"unmarshalling session: {e}") from e



async def fork_session(
    store: Store,
    source_chat_id: int,
    target_chat_id: int,
    fork_point: int | None = None,
) -> list[Message]:
    """Branch a conversation: copy the first fork_point messages of a session.

    The new session records its parent and fork point. Without a fork
    point the whole history is copied. Raises KeyError when the source
    chat has no session.
    """
    record = await store.load_session(source_chat_id)
    if record is None:
        raise KeyError(f"no session for chat {source_chat_id}")
    messages = decode_messages(record.messages_json)

    if fork_point is None:
        fork_point = len(messages)
    fork_point = max(0, min(fork_point, len(messages)))
    branched = messages[:fork_point]

    await store.save_session(
        target_chat_id,
        encode_messages(branched),
        parent_session_key=str(source_chat_id),
        fork_point=fork_point,
    )
    logger.info(
        "Session forked",
        source_chat_id=source_chat_id,
        target_chat_id=target_chat_id,
        fork_point=fork_point,
    )
    return branched


@dataclass
class LoadedSession:
    """A decoded session."""

    messages: list[Message]
    updated_at: datetime
    parent_session_key: str | None = None
    fork_point: int | None = None


class SessionManager:
    """Loads, saves and forks chat sessions through the store."""

    def __init__(self, store: Store):
        self.store = store

    async def load(self, chat_id: int) -> LoadedSession | None:
        """Load a chat's session, or None if there is none.

        Raises SessionDecodeError when the stored payload is corrupt.
        """
        record = await self.store.load_session(chat_id)
        if record is None:
            return None
        return LoadedSession(
            messages=decode_messages(record.messages_json),
            updated_at=record.updated_at,
            parent_session_key=record.parent_session_key,
            fork_point=record.fork_point,
        )

    async def save(self, chat_id: int, messages: list[Message]) -> None:
        await self.store.save_session(chat_id, encode_messages(messages))
        logger.debug("Session saved", chat_id=chat_id, message_count=len(messages))

    async def fork(
        self,
        source_chat_id: int,
        target_chat_id: int,
        fork_point: int | None = None,
    ) -> list[Message]:
        return await fork_session(self.store, source_chat_id, target_chat_id, fork_point)

    async def clear(self, chat_id: int) -> None:
        """Drop a chat's session; the next turn rebuilds from stored messages."""
        await self.store.delete_session(chat_id)
        logger.info("Session cleared", chat_id=chat_id)
