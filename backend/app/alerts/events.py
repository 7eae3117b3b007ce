"""
events.py — Change feed emitted by the Alert Store.

Every committed Store change produces exactly one AlertEvent. Dashboards
consume them two ways:

    Poll       GET /api/v1/alerts/events?since=<sequence>
               served from a bounded ring buffer (oldest events fall off)

    Subscribe  ``async for event in feed.subscribe()``
               in-process fan-out through bounded asyncio queues; a slow
               subscriber loses its oldest undelivered events, never
               blocks the writer
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Deque, Dict, List, Set

logger = logging.getLogger(__name__)


class AlertEventType(str, Enum):
    CREATED    = "AlertCreated"
    MERGED     = "AlertMerged"
    SCORED     = "AlertScored"
    LOCATED    = "AlertLocated"
    PLANNED    = "AlertPlanned"
    DISPATCHED = "AlertDispatched"
    FAILED     = "AlertFailed"
    RESOLVED   = "AlertResolved"


@dataclass(frozen=True)
class AlertEvent:
    """One Store transition: the alert id, its new state and changed fields."""
    sequence: int
    event_type: AlertEventType
    alert_id: str
    state: str
    fields: Dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event": self.event_type.value,
            "alert_id": self.alert_id,
            "state": self.state,
            "fields": self.fields,
            "emitted_at": self.emitted_at.isoformat(),
        }


class ChangeFeed:
    """Sequence-numbered event log with poll and subscribe access."""

    def __init__(self, buffer_size: int = 1000, subscriber_queue_size: int = 256):
        self._buffer: Deque[AlertEvent] = deque(maxlen=buffer_size)
        self._subscribers: Set[asyncio.Queue] = set()
        self._queue_size = subscriber_queue_size
        self._counter = itertools.count(1)

    def next_sequence(self) -> int:
        return next(self._counter)

    @property
    def last_sequence(self) -> int:
        return self._buffer[-1].sequence if self._buffer else 0

    def publish(self, event: AlertEvent) -> None:
        """Append to the log and fan out. Never blocks."""
        self._buffer.append(event)
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("Subscriber lagging, dropped oldest event")
            queue.put_nowait(event)

    def since(self, sequence: int = 0, limit: int = 100) -> List[AlertEvent]:
        """Events with sequence > ``sequence``, oldest first."""
        events = [e for e in self._buffer if e.sequence > sequence]
        return events[:limit]

    async def subscribe(self) -> AsyncIterator[AlertEvent]:
        """Yield events published after subscription until cancelled."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
