"""
Tests for relevance-ranked memory injection.
"""

from unittest.mock import AsyncMock

import pytest

from agent_runtime.agent.memory_context import (
    build_memory_context,
    estimate_memory_tokens,
    rank_memories,
    score_memory,
    select_within_budget,
)
from agent_runtime.models import MemoryRecord


def _memory(id: int, content: str, confidence: float = 0.5, chat_id: int | None = 1) -> MemoryRecord:
    return MemoryRecord(id=id, chat_id=chat_id, content=content, category="KNOWLEDGE", confidence=confidence)


def test_score_memory_term_matches():
    """Test keyword scoring."""
    memory = _memory(1, "User prefers Python over Go", confidence=0.5)

    assert score_memory(memory, []) == pytest.approx(0.5)
    assert score_memory(memory, ["python"]) == pytest.approx(0.8)
    # Terms shorter than three characters never count
    assert score_memory(memory, ["go"]) == pytest.approx(0.5)


def test_score_memory_high_confidence_boost():
    """Test the high confidence bonus."""
    assert score_memory(_memory(1, "fact", confidence=0.9), []) == pytest.approx(1.1)


def test_rank_memories_ties_keep_input_order():
    """Test equal scores keep their fetch order."""
    memories = [_memory(i, f"unrelated fact {i}") for i in range(5)]

    assert [m.id for m in rank_memories(memories, "nothing matches")] == [0, 1, 2, 3, 4]


def test_rank_memories_relevance_first():
    """Test ranking puts relevant memories first."""
    memories = [
        _memory(1, "Lives in Berlin"),
        _memory(2, "Favourite language is Python"),
        _memory(3, "Has a dog"),
    ]

    ranked = rank_memories(memories, "Which python version?")

    assert ranked[0].id == 2
    assert [m.id for m in ranked[1:]] == [1, 3]


def test_select_within_budget_respects_budget():
    """Test selection stays within the token budget."""
    memories = [_memory(i, "x" * 40) for i in range(10)]  # 10 tokens each

    selected, omitted, tokens = select_within_budget(memories, 35)

    assert len(selected) == 3
    assert omitted == 7
    assert tokens == 30
    assert tokens <= 35


def test_select_within_budget_first_always_admitted():
    """Test the top memory is taken even when over budget."""
    memories = [_memory(1, "y" * 400), _memory(2, "short")]

    selected, omitted, tokens = select_within_budget(memories, 10)

    assert [m.id for m in selected] == [1]
    assert omitted == 1
    assert tokens == estimate_memory_tokens("y" * 400)


def test_select_within_budget_skips_large_but_takes_later_small():
    """Test an oversized memory is skipped without stopping selection."""
    memories = [_memory(1, "a" * 40), _memory(2, "b" * 400), _memory(3, "c" * 20)]

    selected, omitted, tokens = select_within_budget(memories, 20)

    assert [m.id for m in selected] == [1, 3]
    assert omitted == 1
    assert tokens == 15


@pytest.mark.asyncio
async def test_zero_budget_skips_store():
    """Test a zero budget never queries the store."""
    store = AsyncMock()

    context = await build_memory_context(store, 1, "hello", 0)

    assert context.text == ""
    store.get_memories_for_context.assert_not_called()
    store.log_memory_injection.assert_not_called()


@pytest.mark.asyncio
async def test_build_memory_context_formats_and_logs(store):
    """Test context formatting and the injection log row."""
    await store.insert_memory(1, "User's favourite language is Python", confidence=0.9)
    await store.insert_memory(None, "Office closes at 6pm", confidence=0.7)
    await store.insert_memory(2, "Other chat's secret", confidence=0.9)
    await store.insert_memory(1, "Low-confidence guess", confidence=0.2)

    context = await build_memory_context(store, 1, "python please", 1500)

    assert context.candidates == 2
    assert context.text.startswith("<structured_memories>")
    assert "- [KNOWLEDGE][chat] User's favourite language is Python" in context.text
    assert "- [KNOWLEDGE][global] Office closes at 6pm" in context.text
    assert "secret" not in context.text
    assert "Low-confidence" not in context.text

    logs = await store.get_memory_injection_logs(1)
    assert len(logs) == 1
    assert logs[0].candidate_count == 2
    assert logs[0].selected_count == 2
    assert logs[0].omitted_count == 0


@pytest.mark.asyncio
async def test_build_memory_context_no_candidates_still_logged(store):
    """Test an empty result is still logged."""
    context = await build_memory_context(store, 5, "anything", 1500)

    assert context.text == ""
    logs = await store.get_memory_injection_logs(5)
    assert len(logs) == 1
    assert logs[0].candidate_count == 0


@pytest.mark.asyncio
async def test_injection_log_failure_is_not_fatal():
    """Test that a failed injection log does not break context building."""
    store = AsyncMock()
    store.get_memories_for_context.return_value = [_memory(1, "fact")]
    store.log_memory_injection.side_effect = RuntimeError("db locked")

    context = await build_memory_context(store, 1, "fact", 100)

    assert "fact" in context.text
