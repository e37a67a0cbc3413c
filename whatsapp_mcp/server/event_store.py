"""
In-memory event store for resumable streamable-HTTP sessions.

One store is created per session. Every message written to a stream gets a
monotonically increasing event id; a client reconnecting with
`Last-Event-ID: <id>` is replayed the events of that id's stream strictly
after it, in order.

The history is bounded across the whole session: once `max_events` is
reached the oldest event of any stream is evicted, and a stream whose
last event is evicted is forgotten.
"""

import logging
from collections import deque
from dataclasses import dataclass

from mcp.server.streamable_http import (
    EventCallback,
    EventId,
    EventMessage,
    EventStore,
    StreamId,
)
from mcp.types import JSONRPCMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredEvent:
    """A stored stream event."""

    sequence: int
    stream_id: StreamId
    message: JSONRPCMessage | None

    @property
    def event_id(self) -> EventId:
        return str(self.sequence)


class InMemoryEventStore(EventStore):
    """Append-only per-session event history.

    Attributes:
        session_id: Owning session (for log context)
        max_events: Events kept across all streams of the session (0 = unbounded)
    """

    def __init__(self, session_id: str | None = None, max_events: int = 1000) -> None:
        self.session_id = session_id
        self.max_events = max_events
        self._sequence = 0
        self._events: deque[StoredEvent] = deque()
        self._streams: dict[StreamId, deque[StoredEvent]] = {}
        self._index: dict[EventId, StoredEvent] = {}

    def __len__(self) -> int:
        return len(self._index)

    async def store_event(self, stream_id: StreamId, message: JSONRPCMessage | None) -> EventId:
        """Append a message to a stream and return its event id."""
        self._sequence += 1
        event = StoredEvent(sequence=self._sequence, stream_id=stream_id, message=message)

        self._events.append(event)
        self._streams.setdefault(stream_id, deque()).append(event)
        self._index[event.event_id] = event

        if self.max_events:
            while len(self._events) > self.max_events:
                self._evict_oldest()
        return event.event_id

    def _evict_oldest(self) -> None:
        evicted = self._events.popleft()
        # sequences grow monotonically, so the session's oldest event heads its stream
        stream = self._streams[evicted.stream_id]
        stream.popleft()
        if not stream:
            del self._streams[evicted.stream_id]
        del self._index[evicted.event_id]

    async def replay_events_after(
        self,
        last_event_id: EventId,
        send_callback: EventCallback,
    ) -> StreamId | None:
        """Send every event of last_event_id's stream that came after it.

        Returns:
            The replayed stream id, or None if the id is unknown (or evicted)
        """
        anchor = self._index.get(last_event_id)
        if anchor is None:
            logger.warning(
                "Event id %s not found, nothing to replay",
                last_event_id,
                extra={"session_id": self.session_id},
            )
            return None

        replayed = 0
        for event in list(self._streams[anchor.stream_id]):
            if event.sequence <= anchor.sequence or event.message is None:
                continue
            await send_callback(EventMessage(event.message, event.event_id))
            replayed += 1

        logger.info(
            "Replayed %s events after %s on stream %s",
            replayed,
            last_event_id,
            anchor.stream_id,
            extra={"session_id": self.session_id},
        )
        return anchor.stream_id


__all__ = ["InMemoryEventStore", "StoredEvent"]
