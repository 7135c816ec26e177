"""
Fire-and-forget progress channel.

Job bodies publish small payloads on named topics; interested consumers either
register a callback (invoked inline on the publishing thread) or subscribe with
a bounded queue. Delivery is at most once per subscriber and a publisher never
waits for anyone: callback failures are suppressed and full queues drop the
event.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

LOGGER = logging.getLogger(__name__)

JOB_STATE = "job.state"
REFRESH_PROGRESS = "refresh.progress"
CATEGORIZE_PROGRESS = "categorize.progress"
MOVE_OUTCOME = "move.outcome"
MOVE_SUMMARY = "move.summary"
TRAIN_PROGRESS = "train.progress"

ProgressCallback = Callable[["ProgressEvent"], Any]


@dataclass(frozen=True)
class ProgressEvent:
    """A single published message."""

    topic: str
    payload: dict[str, Any]
    job_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


class Subscription:
    """Bounded queue receiving events for a set of topics."""

    def __init__(self, channel: "ProgressChannel", topics: frozenset[str] | None, maxsize: int) -> None:
        self._channel = channel
        self.topics = topics
        self._queue: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def accepts(self, topic: str) -> bool:
        return self.topics is None or topic in self.topics

    def offer(self, event: ProgressEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Return the next event, or None when nothing arrives within ``timeout``."""
        try:
            if timeout is None:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ProgressEvent]:
        events: list[ProgressEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._channel.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ProgressChannel:
    """Publishes progress events to callbacks and queue subscriptions."""

    def __init__(self, default_maxsize: int = 1000) -> None:
        if default_maxsize < 1:
            raise ValueError("default_maxsize must be at least 1")
        self._default_maxsize = default_maxsize
        self._lock = threading.Lock()
        self._callbacks: list[tuple[ProgressCallback, frozenset[str] | None]] = []
        self._subscriptions: list[Subscription] = []

    def publish(self, topic: str, payload: dict[str, Any] | None = None, *, job_id: str | None = None) -> None:
        event = ProgressEvent(topic=topic, payload=dict(payload or {}), job_id=job_id)
        with self._lock:
            callbacks = list(self._callbacks)
            subscriptions = list(self._subscriptions)

        for callback, topics in callbacks:
            if topics is not None and topic not in topics:
                continue
            with contextlib.suppress(Exception):
                callback(event)

        for subscription in subscriptions:
            if subscription.accepts(topic) and not subscription.offer(event):
                LOGGER.debug("Dropped %s event for a full subscriber queue", topic)

    def register_callback(self, callback: ProgressCallback, topics: Iterable[str] | None = None) -> None:
        """Register a callback to be invoked for events on ``topics`` (all when None)."""
        selected = frozenset(topics) if topics is not None else None
        with self._lock:
            if all(existing != callback for existing, _ in self._callbacks):
                self._callbacks.append((callback, selected))

    def unregister_callback(self, callback: ProgressCallback) -> None:
        with self._lock:
            self._callbacks = [(existing, topics) for existing, topics in self._callbacks if existing != callback]

    def subscribe(self, topics: Iterable[str] | None = None, maxsize: int | None = None) -> Subscription:
        selected = frozenset(topics) if topics is not None else None
        subscription = Subscription(self, selected, maxsize or self._default_maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._callbacks) + len(self._subscriptions)
