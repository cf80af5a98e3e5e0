"""Ordered progress-event delivery with buffer-then-flush semantics."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from .logging import get_logger

Event = Dict[str, Any]
Subscriber = Callable[[Event], None]

TERMINAL_EVENTS = frozenset({"complete", "cleanup_complete", "error"})


class EventChannel:
    """Delivers a session's events to at most one subscriber at a time.

    Events published while nobody is attached are buffered in order. Attaching
    flushes the buffer to the new subscriber before any live event, then clears
    it, so a second attach never sees the same event twice. Detaching only stops
    delivery; later events buffer again. Once the channel is closed, events that
    find no subscriber are dropped.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._buffer: List[Event] = []
        self._subscriber: Optional[Subscriber] = None
        self._closed = False
        self._lock = threading.RLock()
        self._logger = get_logger("events")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def attached(self) -> bool:
        return self._subscriber is not None

    def pending(self) -> List[Event]:
        with self._lock:
            return list(self._buffer)

    def publish(self, event: Event) -> None:
        with self._lock:
            subscriber = self._subscriber
            if subscriber is not None and self._deliver(subscriber, event):
                return
            if self._closed:
                self._logger.debug("Dropping %s event for closed channel %s", event.get("type"), self.name)
                return
            self._buffer.append(event)

    def attach(self, subscriber: Subscriber) -> None:
        with self._lock:
            buffered, self._buffer = self._buffer, []
            self._subscriber = subscriber
            for index, event in enumerate(buffered):
                if not self._deliver(subscriber, event):
                    # Subscriber went away mid-flush; keep the undelivered tail.
                    self._buffer = buffered[index:] + self._buffer
                    return
            if buffered:
                self._logger.debug("Flushed %d buffered events on %s", len(buffered), self.name)

    def detach(self, subscriber: Optional[Subscriber] = None) -> None:
        with self._lock:
            if subscriber is None or self._subscriber == subscriber:
                self._subscriber = None

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def _deliver(self, subscriber: Subscriber, event: Event) -> bool:
        try:
            subscriber(event)
        except Exception as exc:
            self._logger.warning("Subscriber on %s failed; detaching: %s", self.name, exc)
            if self._subscriber == subscriber:
                self._subscriber = None
            return False
        return True


__all__ = ["Event", "EventChannel", "Subscriber", "TERMINAL_EVENTS"]
