# trafficwatch/services/events.py
from __future__ import annotations

from collections import deque
from typing import Deque, List

from trafficwatch.core.contracts import ControllerEvent, EventRecord, EventsResponse
from trafficwatch.core.settings import settings


class EventLog:
    """
    Bounded buffer of controller events for polling clients.
    Sequence numbers are monotonically increasing; old events fall off the end.
    """

    def __init__(self, maxlen: int | None = None) -> None:
        self._items: Deque[EventRecord] = deque(maxlen=max(1, int(maxlen or settings.event_log_size)))
        self._seq = 0

    def __call__(self, event: ControllerEvent) -> None:
        self._seq += 1
        self._items.append(EventRecord(seq=self._seq, data=event))

    @property
    def last_seq(self) -> int:
        return self._seq

    def since(self, after: int = 0) -> EventsResponse:
        items: List[EventRecord] = [r for r in self._items if r.seq > after]
        return EventsResponse(last_seq=self._seq, items=items)
