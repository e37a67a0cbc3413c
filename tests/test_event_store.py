"""Tests for the in-memory resumable event store."""

import pytest
from mcp.server.streamable_http import EventMessage
from mcp.types import JSONRPCMessage, JSONRPCRequest

from whatsapp_mcp.server.event_store import InMemoryEventStore


def ping(request_id: int) -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=request_id, method="ping"))


class Collector:
    def __init__(self) -> None:
        self.events: list[EventMessage] = []

    async def __call__(self, event: EventMessage) -> None:
        self.events.append(event)

    @property
    def ids(self) -> list[str | None]:
        return [event.event_id for event in self.events]


class TestInMemoryEventStore:
    """Test event storage and replay."""

    @pytest.mark.asyncio
    async def test_event_ids_are_monotonic(self) -> None:
        """Test every stored event gets a larger id."""
        store = InMemoryEventStore()

        ids = [await store.store_event("stream-a", ping(n)) for n in range(3)]

        assert ids == ["1", "2", "3"]
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_replay_after_event(self) -> None:
        """Test replay sends the later events of the same stream in order."""
        store = InMemoryEventStore(session_id="abc")
        e1 = await store.store_event("stream-a", ping(1))
        e2 = await store.store_event("stream-a", ping(2))
        e3 = await store.store_event("stream-a", ping(3))
        collector = Collector()

        stream_id = await store.replay_events_after(e1, collector)

        assert stream_id == "stream-a"
        assert collector.ids == [e2, e3]
        assert collector.events[0].message == ping(2)

    @pytest.mark.asyncio
    async def test_unknown_event_replays_nothing(self) -> None:
        """Test an unknown id yields no stream."""
        store = InMemoryEventStore()
        await store.store_event("stream-a", ping(1))
        collector = Collector()

        assert await store.replay_events_after("999", collector) is None
        assert collector.events == []

    @pytest.mark.asyncio
    async def test_streams_are_isolated(self) -> None:
        """Test replay never crosses into another stream."""
        store = InMemoryEventStore()
        a1 = await store.store_event("stream-a", ping(1))
        await store.store_event("stream-b", ping(2))
        a3 = await store.store_event("stream-a", ping(3))
        collector = Collector()

        await store.replay_events_after(a1, collector)

        assert collector.ids == [a3]

    @pytest.mark.asyncio
    async def test_priming_events_are_not_replayed(self) -> None:
        """Test events without a message are skipped on replay."""
        store = InMemoryEventStore()
        first = await store.store_event("stream-a", None)
        await store.store_event("stream-a", None)
        last = await store.store_event("stream-a", ping(1))
        collector = Collector()

        await store.replay_events_after(first, collector)

        assert collector.ids == [last]

    @pytest.mark.asyncio
    async def test_eviction_bounds_history(self) -> None:
        """Test the oldest events are dropped once the session is full."""
        store = InMemoryEventStore(max_events=2)
        e1 = await store.store_event("stream-a", ping(1))
        e2 = await store.store_event("stream-a", ping(2))
        e3 = await store.store_event("stream-a", ping(3))
        collector = Collector()

        assert len(store) == 2
        assert await store.replay_events_after(e1, collector) is None

        await store.replay_events_after(e2, collector)
        assert collector.ids == [e3]

    @pytest.mark.asyncio
    async def test_bound_applies_across_streams(self) -> None:
        """Test one event on each of many streams still respects the bound."""
        store = InMemoryEventStore(max_events=10)

        ids = [await store.store_event(f"stream-{n}", ping(n)) for n in range(2000)]

        assert len(store) == 10
        assert len(store._streams) == 10
        assert set(store._streams) == {f"stream-{n}" for n in range(1990, 2000)}
        assert await store.replay_events_after(ids[0], Collector()) is None

    @pytest.mark.asyncio
    async def test_eviction_keeps_newer_events_of_older_streams(self) -> None:
        """Test eviction removes the session's oldest event, whatever its stream."""
        store = InMemoryEventStore(max_events=3)
        a1 = await store.store_event("stream-a", ping(1))
        a2 = await store.store_event("stream-a", ping(2))
        await store.store_event("stream-b", ping(3))
        a4 = await store.store_event("stream-a", ping(4))
        collector = Collector()

        assert await store.replay_events_after(a1, collector) is None
        assert await store.replay_events_after(a2, collector) == "stream-a"
        assert collector.ids == [a4]

    @pytest.mark.asyncio
    async def test_zero_means_unbounded(self) -> None:
        """Test a zero limit keeps every event."""
        store = InMemoryEventStore(max_events=0)

        for n in range(50):
            await store.store_event(f"stream-{n % 5}", ping(n))

        assert len(store) == 50
