"""
Tests for the SQLAlchemy-backed store.
"""

from datetime import datetime, timedelta

import pytest

from agent_runtime.models import utcnow


@pytest.mark.asyncio
async def test_session_upsert(store):
    """Test saving a session twice updates it in place."""
    assert await store.load_session(1) is None

    await store.save_session(1, "[]")
    first = await store.load_session(1)
    await store.save_session(1, '[{"role": "user", "content": "hi"}]')
    second = await store.load_session(1)

    assert second.messages_json == '[{"role": "user", "content": "hi"}]'
    assert second.updated_at >= first.updated_at


@pytest.mark.asyncio
async def test_session_lineage_kept_on_plain_save(store):
    """Test a plain save keeps fork lineage."""
    await store.save_session(2, "[]", parent_session_key="1", fork_point=3)
    await store.save_session(2, "[]")

    session = await store.load_session(2)
    assert session.parent_session_key == "1"
    assert session.fork_point == 3


@pytest.mark.asyncio
async def test_delete_and_list_sessions(store):
    """Test deleting and listing sessions."""
    await store.save_session(1, "[]")
    await store.save_session(2, "[]")

    await store.delete_session(1)

    assert await store.load_session(1) is None
    assert [s.chat_id for s in await store.list_sessions()] == [2]


@pytest.mark.asyncio
async def test_recent_messages_chronological(store):
    """Test recent messages come back oldest first."""
    base = datetime(2026, 1, 1, 12, 0, 0)
    for i in range(5):
        await store.store_message(1, f"m{i}", sender_name="alice", timestamp=base + timedelta(seconds=i))
    await store.store_message(2, "other chat", timestamp=base)

    recent = await store.get_recent_messages(1, 3)

    assert [m.content for m in recent] == ["m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_new_user_messages_since(store):
    """Test fetching user messages after a timestamp."""
    base = datetime(2026, 1, 1, 12, 0, 0)
    await store.store_message(1, "old", timestamp=base)
    await store.store_message(1, "bot reply", is_from_bot=True, timestamp=base + timedelta(seconds=2))
    await store.store_message(1, "new", timestamp=base + timedelta(seconds=3))

    messages = await store.get_new_user_messages_since(1, base + timedelta(seconds=1), 10)

    assert [m.content for m in messages] == ["new"]


@pytest.mark.asyncio
async def test_messages_since_last_bot_response(store):
    """Test catch-up from the last bot reply."""
    base = datetime(2026, 1, 1, 12, 0, 0)
    await store.store_message(1, "before", timestamp=base)
    await store.store_message(1, "bot", is_from_bot=True, timestamp=base + timedelta(seconds=1))
    await store.store_message(1, "after 1", timestamp=base + timedelta(seconds=2))
    await store.store_message(1, "after 2", timestamp=base + timedelta(seconds=3))

    messages = await store.get_messages_since_last_bot_response(1, 10, 10)

    assert [m.content for m in messages] == ["after 1", "after 2"]


@pytest.mark.asyncio
async def test_messages_since_last_bot_response_fallback(store):
    """Test catch-up falls back to recent messages when the bot never replied."""
    base = datetime(2026, 1, 1, 12, 0, 0)
    for i in range(4):
        await store.store_message(3, f"m{i}", timestamp=base + timedelta(seconds=i))

    messages = await store.get_messages_since_last_bot_response(3, 10, 2)

    assert [m.content for m in messages] == ["m2", "m3"]


@pytest.mark.asyncio
async def test_memories_visibility_and_archive(store):
    """Test memory visibility per chat and archiving."""
    own = await store.insert_memory(1, "own fact")
    await store.insert_memory(None, "global fact")
    await store.insert_memory(2, "someone else's fact")

    visible = await store.get_memories_for_context(1, 10)
    assert {m.content for m in visible} == {"own fact", "global fact"}

    await store.archive_memory(own)
    visible = await store.get_memories_for_context(1, 10)
    assert [m.content for m in visible] == ["global fact"]

    assert await store.search_memories(1, "own", 10) == []
    archived = await store.search_memories(1, "own", 10, include_archived=True)
    assert archived[0].is_archived is True


@pytest.mark.asyncio
async def test_search_memories_case_insensitive(store):
    """Test memory search ignores case."""
    await store.insert_memory(1, "Prefers DARK mode")

    found = await store.search_memories(1, "dark", 10)

    assert [m.content for m in found] == ["Prefers DARK mode"]


@pytest.mark.asyncio
async def test_llm_usage_log(store):
    """Test recording LLM usage."""
    await store.log_llm_usage(1, "telegram", "anthropic", "claude", 100, 20, "agent_loop")

    usage = await store.get_llm_usage(1)

    assert len(usage) == 1
    assert usage[0].total_tokens == 120
    assert usage[0].request_kind == "agent_loop"


def test_utcnow_is_naive():
    """Test utcnow returns a naive UTC datetime."""
    assert utcnow().tzinfo is None
