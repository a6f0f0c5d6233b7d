"""
Durable single-row-per-user location store.

Semantics:
- `upsert` overwrites the user's row (conflict key `user_id`) and stamps the current time.
- `set_sharing` flips ghost mode without touching coordinates, so re-enabling sharing
  instantly restores the previous fix.
- Every successful write publishes `location:{user_id}` so dependent feeds can recompute.

Every backend call runs under a lock acquired with a bounded timeout and is retried with
bounded backoff on transient failures; nothing here blocks indefinitely.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, TypeVar

from proxisync.config.settings import LocationSettings, StorageSettings
from proxisync.core.env import resolve_data_path
from proxisync.core.retry import call_with_retry
from proxisync.core.time import utcnow
from proxisync.domain.models import LocationHistoryEntry, UserLocation
from proxisync.errors import StorageTimeoutError, TransientStorageError
from proxisync.geocoding.resolver import GeocodingResolver
from proxisync.notify.notifier import ChangeNotifier, location_topic
from proxisync.storage.backends import InMemoryLocationBackend, JsonFileLocationBackend, LocationBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_backend(settings: StorageSettings) -> LocationBackend:
    if settings.backend == "json":
        return JsonFileLocationBackend(resolve_data_path(settings.path))
    return InMemoryLocationBackend()


class LocationStore:
    def __init__(
        self,
        backend: LocationBackend | None = None,
        *,
        notifier: ChangeNotifier | None = None,
        resolver: GeocodingResolver | None = None,
        storage_settings: StorageSettings | None = None,
        location_settings: LocationSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._backend = backend or InMemoryLocationBackend()
        self._notifier = notifier
        self._resolver = resolver
        self._storage = storage_settings or StorageSettings()
        self._location = location_settings or LocationSettings()
        self._clock = clock
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        timeout = float(self._storage.timeout_seconds)
        if not self._lock.acquire(timeout=timeout):
            raise StorageTimeoutError(f"location store busy for more than {timeout:.2f}s")
        try:
            yield
        finally:
            self._lock.release()

    def _run(self, fn: Callable[[], T], *, what: str) -> T:
        def attempt() -> T:
            with self._locked():
                return fn()

        return call_with_retry(attempt, retry=self._storage.retry, retry_on=(TransientStorageError,), what=what)

    def _publish(self, user_id: str) -> None:
        if self._notifier:
            self._notifier.publish(location_topic(user_id), {"user_id": user_id})

    def upsert(
        self,
        user_id: str,
        lat: float,
        lng: float,
        is_sharing: bool | None = None,
        *,
        accuracy_m: float | None = None,
    ) -> UserLocation:
        """Overwrite the user's fix.

        `is_sharing=None` keeps the stored ghost-mode flag (True for a brand-new row). The
        flag is read under the store lock, so a concurrent `set_sharing` is never undone.
        """
        def apply() -> UserLocation:
            sharing = is_sharing
            if sharing is None:
                raw = self._backend.read(user_id)
                sharing = bool(raw.get("is_sharing", True)) if raw else True
            row = UserLocation(
                user_id=user_id,
                latitude=lat,
                longitude=lng,
                accuracy_m=accuracy_m,
                is_sharing=sharing,
                updated_at=self._clock(),
            )
            self._backend.write(row.model_dump(mode="json"))
            return row

        row = self._run(apply, what=f"upsert location {user_id}")
        self._record_history(row)
        self._publish(user_id)
        return row

    def set_sharing(self, user_id: str, sharing: bool) -> UserLocation:
        def apply() -> UserLocation:
            raw = self._backend.read(user_id)
            current = UserLocation.model_validate(raw) if raw else None
            if current is None:
                row = UserLocation(user_id=user_id, is_sharing=sharing, updated_at=self._clock())
            else:
                row = current.model_copy(update={"is_sharing": sharing, "updated_at": self._clock()})
            self._backend.write(row.model_dump(mode="json"))
            return row

        row = self._run(apply, what=f"set sharing {user_id}")
        logger.info("user %s sharing=%s", user_id, sharing)
        self._publish(user_id)
        return row

    def get(self, user_id: str) -> UserLocation | None:
        raw = self._run(lambda: self._backend.read(user_id), what=f"read location {user_id}")
        return UserLocation.model_validate(raw) if raw else None

    def get_many(self, user_ids: Iterable[str]) -> dict[str, UserLocation]:
        ids = list(user_ids)
        raw = self._run(lambda: self._backend.read_many(ids), what="read locations")
        return {uid: UserLocation.model_validate(row) for uid, row in raw.items()}

    def delete(self, user_id: str) -> None:
        """Remove the row and trail (account deletion)."""
        self._run(lambda: self._backend.delete(user_id), what=f"delete location {user_id}")
        self._publish(user_id)

    def history(self, user_id: str, limit: int | None = None) -> list[LocationHistoryEntry]:
        raw = self._run(lambda: self._backend.read_history(user_id), what=f"read history {user_id}")
        entries = [LocationHistoryEntry.model_validate(e) for e in raw]
        if limit is not None:
            entries = entries[-int(limit) :] if limit > 0 else []
        return entries

    def is_stale(self, row: UserLocation, *, now: datetime | None = None) -> bool:
        max_age = int(self._location.stale_after_seconds)
        if max_age <= 0:
            return False
        now = now or self._clock()
        return (now - row.updated_at).total_seconds() > max_age

    def _record_history(self, row: UserLocation) -> None:
        if not self._location.history_enabled or not row.has_position:
            return
        name = self._resolver.reverse_geocode(row.latitude, row.longitude) if self._resolver else None
        entry = LocationHistoryEntry(
            user_id=row.user_id,
            latitude=row.latitude,
            longitude=row.longitude,
            location_name=name,
            recorded_at=row.updated_at,
        )
        try:
            with self._locked():
                self._backend.append_history(entry.model_dump(mode="json"), limit=int(self._location.history_limit))
        except TransientStorageError:
            logger.warning("failed to record location history for %s", row.user_id, exc_info=True)
