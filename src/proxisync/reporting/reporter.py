"""
Periodic client-driven location reporting.

Each user gets at most one in-flight upsert. A report that arrives while the previous one
is still being written is dropped rather than queued, which keeps a slow network from
piling up writes. Failed reports are not retried inline: the next interval tick simply
tries again with a fresh position. Ticks never carry a sharing flag: ghost mode lives in
the store and only `set_sharing` changes it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from proxisync.config.settings import ReportingSettings
from proxisync.core.geo import GeoPoint
from proxisync.errors import TransientStorageError
from proxisync.storage.location_store import LocationStore

logger = logging.getLogger(__name__)

# Returns the device's current fix, or None when location permission is denied/unavailable.
PositionProvider = Callable[[], GeoPoint | None]


@dataclass
class _Loop:
    thread: threading.Thread
    stop: threading.Event


class LocationReporter:
    def __init__(self, store: LocationStore, settings: ReportingSettings | None = None):
        self._store = store
        self._settings = settings or ReportingSettings()
        self._in_flight: dict[str, threading.Lock] = {}
        self._loops: dict[str, _Loop] = {}
        self._lock = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._lock:
            return self._in_flight.setdefault(user_id, threading.Lock())

    def report(
        self,
        user_id: str,
        lat: float,
        lng: float,
        is_sharing: bool | None = None,
        *,
        accuracy_m: float | None = None,
    ) -> bool:
        """Write one position; returns False when dropped (busy) or failed.

        Leaving `is_sharing` unset keeps whatever ghost-mode flag is stored.
        """
        lock = self._user_lock(user_id)
        if not lock.acquire(blocking=False):
            logger.debug("dropping report for %s: previous write still in flight", user_id)
            return False
        try:
            self._store.upsert(user_id, lat, lng, is_sharing, accuracy_m=accuracy_m)
            return True
        except (TransientStorageError, ValueError) as exc:
            logger.warning("location report for %s failed: %s", user_id, exc)
            return False
        finally:
            lock.release()

    def tick(self, user_id: str, provider: PositionProvider) -> bool:
        """One interval step: read the device position and report it if available."""
        position = provider()
        if position is None:
            logger.debug("no position available for %s; skipping tick", user_id)
            return False
        return self.report(user_id, position.lat, position.lng)

    def start(self, user_id: str, provider: PositionProvider) -> None:
        with self._lock:
            if user_id in self._loops:
                return
            stop = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(user_id, provider, stop), name=f"proxisync-report:{user_id}", daemon=True
            )
            self._loops[user_id] = _Loop(thread=thread, stop=stop)
        thread.start()

    def _run(self, user_id: str, provider: PositionProvider, stop: threading.Event) -> None:
        interval = float(self._settings.interval_seconds)
        while not stop.is_set():
            try:
                self.tick(user_id, provider)
            except Exception:
                logger.exception("location reporting tick failed for %s", user_id)
            stop.wait(interval)

    def stop(self, user_id: str, *, timeout: float | None = 1.0) -> None:
        with self._lock:
            loop = self._loops.pop(user_id, None)
        if loop is None:
            return
        loop.stop.set()
        loop.thread.join(timeout=timeout)

    def stop_all(self) -> None:
        with self._lock:
            users = list(self._loops)
        for user_id in users:
            self.stop(user_id)

    def running(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._loops
