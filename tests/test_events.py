"""
Tests for the agent event stream.
"""

import asyncio

import pytest

from agent_runtime.agent.events import EventStream, FinalResponseEvent, IterationEvent, ToolStartEvent


@pytest.mark.asyncio
async def test_stream_yields_events_then_stops():
    """Test events come out in order and iteration ends on close."""
    stream = EventStream()
    await stream.send(IterationEvent(0))
    await stream.send(ToolStartEvent("echo"))
    stream.close()

    events = [event async for event in stream]

    assert [e.type for e in events] == ["iteration", "tool_start"]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_drops_late_events():
    """Test closing twice and emitting after close."""
    stream = EventStream()
    stream.close()
    stream.close()
    await stream.send(FinalResponseEvent("late"))

    assert stream.closed
    assert [event async for event in stream] == []


@pytest.mark.asyncio
async def test_close_on_full_queue_still_terminates():
    """Test close does not block on a full queue."""
    stream = EventStream(maxsize=2)
    await stream.send(IterationEvent(0))
    await stream.send(IterationEvent(1))
    stream.close()

    events = [event async for event in stream]

    assert [e.iteration for e in events] == [0, 1]


@pytest.mark.asyncio
async def test_consumer_waits_for_producer():
    """Test a consumer blocks until events arrive."""
    stream = EventStream()

    async def produce():
        await asyncio.sleep(0.01)
        await stream.send(FinalResponseEvent("done"))
        stream.close()

    task = asyncio.create_task(produce())
    events = [event async for event in stream]
    await task

    assert events == [FinalResponseEvent("done")]
