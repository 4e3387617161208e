"""
Event sinks — how bootstrap events reach an observer.

The bootstrap service only knows ``EventSink.emit(event)``.  What sits
behind it (a callback, a queue drained by a CLI, the SSE event bus) is
the host application's choice.

Sinks may raise; the service catches and logs delivery failures so a
closed channel can never break a bootstrap run.
"""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

from envboot.core.models.bootstrap import BootstrapEvent

if TYPE_CHECKING:
    from envboot.core.services.event_bus import EventBus


class EventSink(ABC):
    """One observer channel."""

    @abstractmethod
    def emit(self, event: BootstrapEvent) -> None:
        """Deliver ``event`` to the observer."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class NullSink(EventSink):
    """Discards everything (headless callers that only want the result)."""

    def emit(self, event: BootstrapEvent) -> None:
        return None


class CallbackSink(EventSink):
    """Calls ``fn(event)`` for every event."""

    def __init__(self, fn: Callable[[BootstrapEvent], None]) -> None:
        self._fn = fn

    def emit(self, event: BootstrapEvent) -> None:
        self._fn(event)


class QueueSink(EventSink):
    """Pushes events into a ``queue.Queue`` for another thread to drain."""

    def __init__(self, q: queue.Queue | None = None) -> None:
        self.queue: queue.Queue = q if q is not None else queue.Queue()

    def emit(self, event: BootstrapEvent) -> None:
        self.queue.put_nowait(event)


class BusSink(EventSink):
    """Publishes events on an ``EventBus`` (fan-out to SSE clients)."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    def emit(self, event: BootstrapEvent) -> None:
        self._bus.publish_event(event)
