"""Append-only event log with an explicit drain cursor."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

Event = dict[str, Any]


class EventLog:
    """Durable ordered log plus the index of the last drained event.

    Events are kept in arrival order. Events whose `event_id` is already in
    the log are ignored, so reapplying a payload never duplicates entries.
    """

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._event_ids: set[str] = set()
        self._drained = 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def append(self, event: Event) -> bool:
        """Append one event; return False when it was already logged."""

        event_id = event.get("event_id")
        if isinstance(event_id, str) and event_id:
            if event_id in self._event_ids:
                return False
            self._event_ids.add(event_id)
        self._events.append(event)
        return True

    def extend(self, events: Iterable[Event]) -> int:
        """Append events in order and return how many were new."""

        return sum(1 for event in events if self.append(event))

    def contains(self, event_id: str) -> bool:
        return event_id in self._event_ids

    def pending(self) -> list[Event]:
        """Return events appended since the last drain."""

        return self._events[self._drained :]

    def drain(self) -> list[Event]:
        """Return pending events and advance the drain cursor past them."""

        pending = self.pending()
        self._drained = len(self._events)
        return pending

    def newest_first(self) -> list[Event]:
        return list(reversed(self._events))
