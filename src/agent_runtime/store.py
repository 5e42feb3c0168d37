"""
Persistence layer consumed by the agent loop.

Store is the contract; SQLStore implements it with the SQLAlchemy async ORM.
All writes go through a single lock so concurrent turns cannot interleave a
session record; reads run concurrently.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .models import (
    Base,
    LLMUsageLog,
    MemoryInjectionLog,
    MemoryRecord,
    SessionRecord,
    StoredMessage,
    as_naive_utc,
    utcnow,
)

logger = structlog.get_logger()

MIN_CONTEXT_CONFIDENCE = 0.45


@dataclass
class SessionData:
    """A persisted session as returned by the store."""

    chat_id: int
    messages_json: str
    updated_at: datetime
    parent_session_key: str | None = None
    fork_point: int | None = None


class Store(Protocol):
    """Persistence operations used by the agent runtime."""

    async def load_session(self, chat_id: int) -> SessionData | None: ...

    async def save_session(
        self,
        chat_id: int,
        messages_json: str,
        parent_session_key: str | None = None,
        fork_point: int | None = None,
    ) -> None: ...

    async def delete_session(self, chat_id: int) -> None: ...

    async def list_sessions(self, limit: int = 50) -> list[SessionData]: ...

    async def store_message(
        self,
        chat_id: int,
        content: str,
        sender_name: str = "",
        is_from_bot: bool = False,
        timestamp: datetime | None = None,
        external_id: str | None = None,
    ) -> StoredMessage: ...

    async def get_recent_messages(self, chat_id: int, limit: int) -> list[StoredMessage]: ...

    async def get_new_user_messages_since(
        self, chat_id: int, since: datetime, limit: int
    ) -> list[StoredMessage]: ...

    async def get_messages_since_last_bot_response(
        self, chat_id: int, max_messages: int, fallback: int
    ) -> list[StoredMessage]: ...

    async def get_memories_for_context(self, chat_id: int, limit: int) -> list[MemoryRecord]: ...

    async def insert_memory(
        self,
        chat_id: int | None,
        content: str,
        category: str = "KNOWLEDGE",
        source: str = "tool",
        confidence: float = 0.8,
    ) -> int: ...

    async def search_memories(
        self, chat_id: int, query: str, limit: int, include_archived: bool = False
    ) -> list[MemoryRecord]: ...

    async def archive_memory(self, memory_id: int) -> None: ...

    async def log_memory_injection(
        self, chat_id: int, method: str, candidates: int, selected: int, omitted: int, tokens_est: int
    ) -> None: ...

    async def log_llm_usage(
        self,
        chat_id: int,
        channel: str,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        kind: str,
    ) -> None: ...


class SQLStore:
    """Store backed by SQLAlchemy async (aiosqlite by default)."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        self._write_lock = asyncio.Lock()

    @classmethod
    async def create(cls, database_url: str) -> "SQLStore":
        """Open the database, creating tables if needed."""
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(database_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized", backend=url.get_backend_name())
        return cls(engine)

    async def close(self) -> None:
        await self.engine.dispose()

    # --- Sessions ---

    async def load_session(self, chat_id: int) -> SessionData | None:
        async with self._sessionmaker() as db:
            record = await db.get(SessionRecord, chat_id)
            if record is None:
                return None
            return SessionData(
                chat_id=record.chat_id,
                messages_json=record.messages_json,
                updated_at=record.updated_at,
                parent_session_key=record.parent_session_key,
                fork_point=record.fork_point,
            )

    async def save_session(
        self,
        chat_id: int,
        messages_json: str,
        parent_session_key: str | None = None,
        fork_point: int | None = None,
    ) -> None:
        """Upsert a session. Lineage fields already stored are kept when not given."""
        async with self._write_lock, self._sessionmaker() as db:
            record = await db.get(SessionRecord, chat_id)
            if record is None:
                record = SessionRecord(chat_id=chat_id, messages_json=messages_json)
                db.add(record)
            record.messages_json = messages_json
            record.updated_at = utcnow()
            if parent_session_key is not None:
                record.parent_session_key = parent_session_key
            if fork_point is not None:
                record.fork_point = fork_point
            await db.commit()

    async def delete_session(self, chat_id: int) -> None:
        async with self._write_lock, self._sessionmaker() as db:
            await db.execute(delete(SessionRecord).where(SessionRecord.chat_id == chat_id))
            await db.commit()

    async def list_sessions(self, limit: int = 50) -> list[SessionData]:
        """Sessions ordered by most recently updated."""
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(SessionRecord).order_by(SessionRecord.updated_at.desc()).limit(limit)
            )
            return [
                SessionData(
                    chat_id=r.chat_id,
                    messages_json=r.messages_json,
                    updated_at=r.updated_at,
                    parent_session_key=r.parent_session_key,
                    fork_point=r.fork_point,
                )
                for r in result.scalars().all()
            ]

    # --- Messages ---

    async def store_message(
        self,
        chat_id: int,
        content: str,
        sender_name: str = "",
        is_from_bot: bool = False,
        timestamp: datetime | None = None,
        external_id: str | None = None,
    ) -> StoredMessage:
        message = StoredMessage(
            chat_id=chat_id,
            content=content,
            sender_name=sender_name,
            is_from_bot=is_from_bot,
            timestamp=as_naive_utc(timestamp) if timestamp else utcnow(),
            external_id=external_id,
        )
        async with self._write_lock, self._sessionmaker() as db:
            db.add(message)
            await db.commit()
        return message

    async def get_recent_messages(self, chat_id: int, limit: int) -> list[StoredMessage]:
        """The most recent messages, in chronological order."""
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(StoredMessage)
                .where(StoredMessage.chat_id == chat_id)
                .order_by(StoredMessage.timestamp.desc(), StoredMessage.id.desc())
                .limit(limit)
            )
            messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def get_new_user_messages_since(
        self, chat_id: int, since: datetime, limit: int
    ) -> list[StoredMessage]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(StoredMessage)
                .where(
                    StoredMessage.chat_id == chat_id,
                    StoredMessage.timestamp > as_naive_utc(since),
                    StoredMessage.is_from_bot == False,  # noqa: E712
                )
                .order_by(StoredMessage.timestamp, StoredMessage.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_messages_since_last_bot_response(
        self, chat_id: int, max_messages: int, fallback: int
    ) -> list[StoredMessage]:
        """Group catch-up: everything after the bot's last reply.

        Falls back to the most recent `fallback` messages when the bot has
        never replied.
        """
        async with self._sessionmaker() as db:
            last_bot = await db.execute(
                select(StoredMessage.timestamp)
                .where(StoredMessage.chat_id == chat_id, StoredMessage.is_from_bot == True)  # noqa: E712
                .order_by(StoredMessage.timestamp.desc())
                .limit(1)
            )
            last_bot_ts = last_bot.scalar_one_or_none()

            if last_bot_ts is not None:
                result = await db.execute(
                    select(StoredMessage)
                    .where(StoredMessage.chat_id == chat_id, StoredMessage.timestamp > last_bot_ts)
                    .order_by(StoredMessage.timestamp, StoredMessage.id)
                    .limit(max_messages)
                )
                return list(result.scalars().all())

        return await self.get_recent_messages(chat_id, fallback)

    # --- Memories ---

    async def get_memories_for_context(self, chat_id: int, limit: int) -> list[MemoryRecord]:
        """Active chat-scoped or global memories above the confidence floor."""
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(MemoryRecord)
                .where(
                    MemoryRecord.is_archived == False,  # noqa: E712
                    MemoryRecord.confidence >= MIN_CONTEXT_CONFIDENCE,
                    (MemoryRecord.chat_id == chat_id) | (MemoryRecord.chat_id.is_(None)),
                )
                .order_by(MemoryRecord.updated_at.desc(), MemoryRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def insert_memory(
        self,
        chat_id: int | None,
        content: str,
        category: str = "KNOWLEDGE",
        source: str = "tool",
        confidence: float = 0.8,
    ) -> int:
        memory = MemoryRecord(
            chat_id=chat_id,
            content=content,
            category=category,
            source=source,
            confidence=confidence,
        )
        async with self._write_lock, self._sessionmaker() as db:
            db.add(memory)
            await db.commit()
        return memory.id

    async def search_memories(
        self, chat_id: int, query: str, limit: int, include_archived: bool = False
    ) -> list[MemoryRecord]:
        """Substring search over memories visible to a chat."""
        conditions = [
            (MemoryRecord.chat_id == chat_id) | (MemoryRecord.chat_id.is_(None)),
            MemoryRecord.content.ilike(f"%{query}%"),
        ]
        if not include_archived:
            conditions.append(MemoryRecord.is_archived == False)  # noqa: E712

        async with self._sessionmaker() as db:
            result = await db.execute(
                select(MemoryRecord)
                .where(*conditions)
                .order_by(MemoryRecord.updated_at.desc(), MemoryRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def archive_memory(self, memory_id: int) -> None:
        async with self._write_lock, self._sessionmaker() as db:
            await db.execute(
                update(MemoryRecord)
                .where(MemoryRecord.id == memory_id)
                .values(is_archived=True, archived_at=utcnow())
            )
            await db.commit()

    # --- Observability ---

    async def log_memory_injection(
        self, chat_id: int, method: str, candidates: int, selected: int, omitted: int, tokens_est: int
    ) -> None:
        async with self._write_lock, self._sessionmaker() as db:
            db.add(MemoryInjectionLog(
                chat_id=chat_id,
                retrieval_method=method,
                candidate_count=candidates,
                selected_count=selected,
                omitted_count=omitted,
                tokens_est=tokens_est,
            ))
            await db.commit()

    async def get_memory_injection_logs(self, chat_id: int, limit: int = 50) -> list[MemoryInjectionLog]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(MemoryInjectionLog)
                .where(MemoryInjectionLog.chat_id == chat_id)
                .order_by(MemoryInjectionLog.created_at.desc(), MemoryInjectionLog.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def log_llm_usage(
        self,
        chat_id: int,
        channel: str,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        kind: str,
    ) -> None:
        async with self._write_lock, self._sessionmaker() as db:
            db.add(LLMUsageLog(
                chat_id=chat_id,
                caller_channel=channel,
                provider=provider,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
                request_kind=kind,
            ))
            await db.commit()

    async def get_llm_usage(self, chat_id: int) -> list[LLMUsageLog]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(LLMUsageLog)
                .where(LLMUsageLog.chat_id == chat_id)
                .order_by(LLMUsageLog.id)
            )
            return list(result.scalars().all())
