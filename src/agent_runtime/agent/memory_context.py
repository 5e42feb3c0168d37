"""
Relevance-ranked memory injection.

Picks the stored facts most relevant to the latest user query that fit a
token budget and formats them for the system prompt.
"""

from dataclasses import dataclass, field

import structlog

from ..models import MemoryRecord
from ..store import Store

logger = structlog.get_logger()

MAX_CANDIDATES = 100
MIN_TERM_LENGTH = 3
TERM_MATCH_BOOST = 0.3
HIGH_CONFIDENCE = 0.8
HIGH_CONFIDENCE_BOOST = 0.2
RETRIEVAL_METHOD = "keyword"


@dataclass
class MemoryContext:
    """Selected memories plus the counts recorded for audit."""

    text: str = ""
    candidates: int = 0
    selected: list[MemoryRecord] = field(default_factory=list)
    omitted: int = 0
    tokens_used: int = 0


def estimate_memory_tokens(text: str) -> int:
    """Coarse token estimate: four characters per token."""
    return len(text) // 4


def score_memory(memory: MemoryRecord, query_terms: list[str]) -> float:
    """Confidence plus a boost per query term found in the fact."""
    score = memory.confidence
    content = memory.content.lower()
    for term in query_terms:
        if len(term) >= MIN_TERM_LENGTH and term in content:
            score += TERM_MATCH_BOOST
    if memory.confidence >= HIGH_CONFIDENCE:
        score += HIGH_CONFIDENCE_BOOST
    return score


def rank_memories(memories: list[MemoryRecord], query: str) -> list[MemoryRecord]:
    """Order memories by descending score; equal scores keep their input order."""
    terms = query.lower().split()
    scored = [(score_memory(m, terms), m) for m in memories]
    # sorted() is stable, so ties stay in fetch order.
    scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
    return [m for _, m in scored]


def select_within_budget(
    ranked: list[MemoryRecord], token_budget: int
) -> tuple[list[MemoryRecord], int, int]:
    """Greedily take memories while they fit the budget.

    The first memory is always taken, even when it alone is over budget.
    Returns (selected, omitted_count, tokens_used).
    """
    selected: list[MemoryRecord] = []
    omitted = 0
    tokens_used = 0

    for memory in ranked:
        estimate = estimate_memory_tokens(memory.content)
        if selected and tokens_used + estimate > token_budget:
            omitted += 1
            continue
        selected.append(memory)
        tokens_used += estimate

    return selected, omitted, tokens_used


def format_memories(memories: list[MemoryRecord]) -> str:
    lines = ["<structured_memories>"]
    for memory in memories:
        scope = "global" if memory.chat_id is None else "chat"
        lines.append(f"- [{memory.category}][{scope}] {memory.content}")
    lines.append("</structured_memories>")
    return "\n".join(lines)


async def build_memory_context(
    store: Store,
    chat_id: int,
    query: str,
    token_budget: int,
) -> MemoryContext:
    """Select and format the memories to inject for this turn.

    Every call that reaches the store records candidate/selected/omitted
    counts via log_memory_injection. Returns an empty context when the
    budget is not positive or there are no candidates.
    """
    if token_budget <= 0:
        return MemoryContext()

    memories = await store.get_memories_for_context(chat_id, MAX_CANDIDATES)

    context = MemoryContext(candidates=len(memories))
    if memories:
        ranked = rank_memories(memories, query)
        context.selected, context.omitted, context.tokens_used = select_within_budget(ranked, token_budget)
        context.text = format_memories(context.selected)

    try:
        await store.log_memory_injection(
            chat_id,
            RETRIEVAL_METHOD,
            context.candidates,
            len(context.selected),
            context.omitted,
            context.tokens_used,
        )
    except Exception as e:
        logger.warning("Failed to log memory injection", chat_id=chat_id, error=str(e))

    logger.debug(
        "Memory context built",
        chat_id=chat_id,
        candidates=context.candidates,
        selected=len(context.selected),
        omitted=context.omitted,
        tokens_used=context.tokens_used,
    )
    return context
