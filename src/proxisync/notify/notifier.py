"""
Topic-scoped change notification (in-process pub/sub).

Stores publish `location:{user_id}`, `friendship:{user_id}` and `presence:{user_id}`
topics whose payload carries only the changed entity's key; consumers re-fetch.
A subscription topic ending in `*` is a prefix pattern (`location:*` sees every
location write).

Delivery contract:
- fire-and-forget: `publish` only dispatches to the worker pool and returns at once,
- handler exceptions are logged on the worker and never reach the publisher,
- a handler running longer than `handler_timeout_seconds` is logged, and its
  subscription is skipped by later publishes until that call returns,
- no ordering or exactly-once guarantee; consumers must be idempotent.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from proxisync.config.settings import NotifierSettings

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], None]


def location_topic(user_id: str) -> str:
    return f"location:{user_id}"


def friendship_topic(user_id: str) -> str:
    return f"friendship:{user_id}"


def presence_topic(user_id: str) -> str:
    return f"presence:{user_id}"


def alert_topic(user_id: str) -> str:
    return f"alert:{user_id}"


@dataclass(frozen=True)
class Subscription:
    id: int
    topic: str
    handler: Handler

    @property
    def is_pattern(self) -> bool:
        return self.topic.endswith("*")


class ChangeNotifier:
    def __init__(self, settings: NotifierSettings | None = None):
        self._settings = settings or NotifierSettings()
        self._subs: dict[str, dict[int, Subscription]] = {}
        self._patterns: dict[str, dict[int, Subscription]] = {}
        self._ids = itertools.count(1)
        self._calls = itertools.count(1)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        # subscription id -> {call id: monotonic start} for handlers currently running
        self._running: dict[int, dict[int, float]] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=int(self._settings.max_workers), thread_name_prefix="proxisync-notify"
        )
        self._closed = False

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        sub = Subscription(id=next(self._ids), topic=topic, handler=handler)
        table = self._patterns if sub.is_pattern else self._subs
        with self._lock:
            table.setdefault(topic, {})[sub.id] = sub
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        table = self._patterns if subscription.is_pattern else self._subs
        with self._lock:
            topic_subs = table.get(subscription.topic)
            if not topic_subs:
                return
            topic_subs.pop(subscription.id, None)
            if not topic_subs:
                table.pop(subscription.topic, None)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._matching_locked(topic))

    def _matching_locked(self, topic: str) -> list[Subscription]:
        subs = list(self._subs.get(topic, {}).values())
        for pattern, by_id in self._patterns.items():
            if topic.startswith(pattern[:-1]):
                subs.extend(by_id.values())
        return subs

    def _overrunning_locked(self, sub_id: int, now: float, timeout: float) -> bool:
        starts = self._running.get(sub_id)
        return bool(starts) and now - min(starts.values()) > timeout

    def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Dispatch `payload` to every handler of `topic`; returns how many were scheduled."""
        timeout = float(self._settings.handler_timeout_seconds)
        now = time.monotonic()
        with self._lock:
            if self._closed:
                logger.debug("notifier closed; dropping %s", topic)
                return 0
            ready: list[Subscription] = []
            for sub in self._matching_locked(topic):
                if self._overrunning_locked(sub.id, now, timeout):
                    logger.warning("handler %s is still busy past %.2fs; skipping %s", sub.id, timeout, topic)
                    continue
                ready.append(sub)
            self._pending += len(ready)

        dispatched = 0
        for sub in ready:
            try:
                self._executor.submit(self._deliver, sub, topic, dict(payload))
                dispatched += 1
            except RuntimeError:
                # close() won the race; the pool no longer accepts work.
                logger.debug("notifier shut down while dispatching %s", topic)
                self._settle(sub.id, None)
        return dispatched

    def _deliver(self, sub: Subscription, topic: str, payload: dict[str, Any]) -> None:
        call_id = next(self._calls)
        started = time.monotonic()
        with self._lock:
            self._running.setdefault(sub.id, {})[call_id] = started
        try:
            sub.handler(topic, payload)
        except Exception:
            logger.exception("handler %s for %s failed", sub.id, topic)
        finally:
            elapsed = time.monotonic() - started
            timeout = float(self._settings.handler_timeout_seconds)
            if elapsed > timeout:
                logger.warning("handler %s for %s took %.2fs (limit %.2fs)", sub.id, topic, elapsed, timeout)
            self._settle(sub.id, call_id)

    def _settle(self, sub_id: int, call_id: int | None) -> None:
        with self._idle:
            calls = self._running.get(sub_id)
            if calls is not None and call_id is not None:
                calls.pop(call_id, None)
                if not calls:
                    self._running.pop(sub_id, None)
            self._pending = max(0, self._pending - 1)
            if self._pending == 0:
                self._idle.notify_all()

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every dispatched handler has returned; False on timeout.

        Must not be called from inside a handler.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def close(self) -> None:
        with self._idle:
            self._closed = True
            self._subs.clear()
            self._patterns.clear()
            self._pending = 0
            self._idle.notify_all()
        self._executor.shutdown(wait=False, cancel_futures=True)
