"""Topic-based event bus with one dispatch thread per subscriber.

``publish`` only enqueues.  Each :class:`Subscription` drains its own FIFO
queue on a daemon thread, so a handler that raises or blocks holds up
nobody but itself, and the publisher (the sampler) never waits on a
consumer.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

_STOP = object()
_ids = itertools.count(1)


class Subscription:
    """A registered handler plus the queue and thread that feed it."""

    def __init__(
        self,
        bus: EventBus,
        topic: str,
        handler: Handler,
        name: str | None = None,
        max_pending: int = 0,
    ) -> None:
        self.topic = topic
        self.name = name or f"{topic}-{next(_ids)}"
        self.error_count = 0
        self.dropped_count = 0
        self.delivered_count = 0
        self._bus = bus
        self._handler = handler
        self._max_pending = max_pending
        self._pending: deque[Any] = deque()
        self._cond = threading.Condition()
        self._busy = False
        self._closed = False
        self._thread = threading.Thread(
            target=self._run, name=f"bus-{self.name}", daemon=True,
        )
        self._thread.start()

    @property
    def active(self) -> bool:
        return not self._closed

    def _enqueue(self, item: Any) -> bool:
        with self._cond:
            if self._closed:
                # a publish that snapshotted us before unsubscribe still
                # delivers, as long as the stop marker is not yet consumed
                if not self._pending or self._pending[-1] is not _STOP:
                    return False
                self._pending.insert(len(self._pending) - 1, item)
                self._cond.notify_all()
                return True
            if self._max_pending and len(self._pending) >= self._max_pending:
                self._pending.popleft()
                self.dropped_count += 1
                logger.warning(
                    "Subscriber %s is behind; dropped oldest pending event", self.name,
                )
            self._pending.append(item)
            self._cond.notify_all()
            return True

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending:
                    self._cond.wait()
                item = self._pending.popleft()
                self._busy = item is not _STOP
            if item is _STOP:
                break
            try:
                self._handler(item)
                self.delivered_count += 1
            except Exception:
                self.error_count += 1
                logger.exception("Subscriber %s failed on topic %s", self.name, self.topic)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()
        with self._cond:
            self._cond.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued event has been handled."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._busy or any(item is not _STOP for item in self._pending):
                if not self._thread.is_alive():
                    return False
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def unsubscribe(self, timeout: float | None = None) -> None:
        """Stop receiving events.  Events already queued are still handled."""
        self._bus._remove(self)
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._pending.append(_STOP)
            self._cond.notify_all()
        if timeout is not None and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def __repr__(self) -> str:
        return f"Subscription(topic={self.topic!r}, name={self.name!r})"


class EventBus:
    """Publish/subscribe hub keyed by topic name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[str, list[Subscription]] = {}

    def subscribe(
        self,
        topic: str,
        handler: Handler,
        name: str | None = None,
        max_pending: int = 0,
    ) -> Subscription:
        """Register *handler* for *topic*.

        *max_pending* bounds the subscriber's backlog; when it is reached
        the oldest undelivered event is discarded.  0 means unbounded.
        """
        sub = Subscription(self, topic, handler, name=name, max_pending=max_pending)
        with self._lock:
            self._subs.setdefault(topic, []).append(sub)
        logger.debug("Subscribed %s to %s", sub.name, topic)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.topic)
            if subs and sub in subs:
                subs.remove(sub)
                if not subs:
                    del self._subs[sub.topic]

    def publish(self, topic: str, payload: Any) -> int:
        """Queue *payload* for every current subscriber of *topic*.

        Returns the number of subscribers it was queued for.
        """
        with self._lock:
            targets = list(self._subs.get(topic, ()))
        delivered = 0
        for sub in targets:
            if sub._enqueue(payload):
                delivered += 1
        return delivered

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subs.get(topic, ()))

    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return [s for subs in self._subs.values() for s in subs]

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until all subscribers have handled their queued events."""
        deadline = None if timeout is None else time.monotonic() + timeout
        ok = True
        for sub in self.subscriptions():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            ok = sub.wait_idle(remaining) and ok
        return ok

    def close(self, timeout: float = 5.0) -> None:
        """Drain and stop every subscription."""
        subs = self.subscriptions()
        deadline = time.monotonic() + timeout
        for sub in subs:
            sub.unsubscribe()
        for sub in subs:
            sub._thread.join(max(0.0, deadline - time.monotonic()))
        logger.info("EventBus closed (%d subscriptions)", len(subs))
