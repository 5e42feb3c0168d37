"""
Agent module - the per-turn conversation runtime.

Includes:
- Agent: the model/tool loop for one turn
- SessionManager: persisted per-chat message history
- Compaction: summarizing older turns
- Memory context: relevance-ranked memory injection
- EventStream: live progress events
"""

from .core import Agent, AgentRequest, ImageData
from .session import SessionManager, fork_session
from .compaction import CompactionConfig, compact_messages
from .events import AgentEvent, EventStream
from .memory_context import MemoryContext, build_memory_context

__all__ = [
    "Agent",
    "AgentRequest",
    "ImageData",
    "SessionManager",
    "fork_session",
    "CompactionConfig",
    "compact_messages",
    "AgentEvent",
    "EventStream",
    "MemoryContext",
    "build_memory_context",
]
