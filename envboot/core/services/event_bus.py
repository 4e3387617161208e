"""
EventBus — thread-safe, in-process pub/sub with bounded replay.

Bootstrap events published through ``BusSink`` land here and are pushed
to every connected SSE client.  On reconnect, the bus replays missed
events from a bounded ring buffer, or starts the client over with the
latest state snapshot if it was away too long.

Thread safety model
───────────────────
- ``_lock`` protects ``_seq``, ``_buffer``, ``_subscribers``,
  ``_latest_state`` (all writes go through the lock).
- Each subscriber gets its own ``queue.Queue`` — the publisher
  pushes into all queues under the lock; each SSE generator
  consumes from its own queue independently.

Message standard (v1)
─────────────────────
Every envelope is a dict with these fields::

    {
        "v": 1,                     # schema version
        "ts": 1739648400.123,       # server timestamp
        "seq": 47,                  # monotonic sequence
        "type": "env:stage",        # env:state | env:log | env:stage | sys:*
        "data": { ... },            # the event's JSON form
    }
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Any, Generator

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1


class EventBus:
    """Thread-safe, in-process pub/sub with bounded replay buffer.

    Parameters
    ----------
    buffer_size : int
        Maximum number of envelopes kept for replay.  Clients whose
        ``Last-Event-Id`` has been evicted get the latest state instead.
    subscriber_queue_size : int
        Maximum backlog per SSE client.  A client that can't keep up
        is dropped.
    """

    def __init__(
        self,
        *,
        buffer_size: int = 500,
        subscriber_queue_size: int = 1000,
    ) -> None:
        self._lock = threading.Lock()
        self._seq: int = 0
        self._buffer: deque[dict] = deque(maxlen=buffer_size)
        self._subscribers: list[queue.Queue[dict]] = []
        self._subscriber_queue_size = subscriber_queue_size
        self._latest_state: dict[str, Any] | None = None

    @property
    def seq(self) -> int:
        """Current sequence number (monotonically increasing)."""
        with self._lock:
            return self._seq

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def latest_state(self) -> dict[str, Any] | None:
        """JSON form of the last published bootstrap state, if any."""
        with self._lock:
            return self._latest_state

    # ── Publishing ──────────────────────────────────────────────

    def publish_event(self, event: BaseModel) -> dict:
        """Publish a bootstrap event (``StateSnapshot``, ``LogAppended``, ``StageChanged``)."""
        data = event.model_dump(mode="json")
        return self.publish(f"env:{data['type']}", data=data)

    def publish(self, event_type: str, *, data: dict[str, Any] | None = None) -> dict:
        """Broadcast an envelope to all subscribers and the replay buffer."""
        with self._lock:
            self._seq += 1
            envelope: dict[str, Any] = {
                "v": _SCHEMA_VERSION,
                "ts": time.time(),
                "seq": self._seq,
                "type": event_type,
                "data": data or {},
            }
            if event_type != "sys:heartbeat":
                self._buffer.append(envelope)
            if event_type == "env:state" and data:
                self._latest_state = data.get("state")

            dead: list[queue.Queue[dict]] = []
            for q in self._subscribers:
                try:
                    q.put_nowait(envelope)
                except queue.Full:
                    dead.append(q)
            for q in dead:
                self._subscribers.remove(q)
                logger.info("Dropped unresponsive SSE subscriber (queue full)")

        if event_type not in ("sys:heartbeat", "env:state"):
            logger.debug("event %s seq=%d", event_type, envelope["seq"])
        return envelope

    # ── Subscribing ─────────────────────────────────────────────

    def subscribe(
        self,
        *,
        since: int = 0,
        heartbeat_interval: float = 30.0,
    ) -> Generator[dict, None, None]:
        """Yield envelopes for one client.  Blocks between events.

        Parameters
        ----------
        since : int
            Resume after this sequence number (``Last-Event-Id``).  If 0
            or already evicted, the client gets the latest state first.
        heartbeat_interval : float
            Seconds between heartbeats when idle.
        """
        q: queue.Queue[dict] = queue.Queue(maxsize=self._subscriber_queue_size)
        need_snapshot = True

        with self._lock:
            if 0 < since <= self._seq and self._buffer and since >= self._buffer[0]["seq"] - 1:
                need_snapshot = False
                for envelope in self._buffer:
                    if envelope["seq"] > since:
                        try:
                            q.put_nowait(envelope)
                        except queue.Full:
                            need_snapshot = True
                            while not q.empty():
                                q.get_nowait()
                            break
            snapshot = self._make_snapshot() if need_snapshot else None
            self._subscribers.append(q)

        logger.info(
            "SSE client connected (since=%d, snapshot=%s, subscribers=%d)",
            since, need_snapshot, self.subscriber_count,
        )

        try:
            if snapshot is not None:
                yield snapshot
            while True:
                try:
                    yield q.get(timeout=heartbeat_interval)
                except queue.Empty:
                    yield self.publish("sys:heartbeat")
        finally:
            with self._lock:
                if q in self._subscribers:
                    self._subscribers.remove(q)
            logger.info("SSE client disconnected (subscribers=%d)", self.subscriber_count)

    def _make_snapshot(self) -> dict | None:
        """Per-client ``env:state`` envelope with the latest state (caller holds the lock)."""
        if self._latest_state is None:
            return None
        return {
            "v": _SCHEMA_VERSION,
            "ts": time.time(),
            "seq": self._seq,
            "type": "env:state",
            "data": {"type": "state", "state": self._latest_state},
        }
