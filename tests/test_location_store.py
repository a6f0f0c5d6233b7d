import threading
from datetime import timedelta

import pytest

from proxisync.config.settings import LocationSettings, RetrySettings, StorageSettings
from proxisync.errors import StorageTimeoutError, TransientStorageError
from proxisync.geocoding.resolver import GeocodingResolver
from proxisync.notify.notifier import ChangeNotifier
from proxisync.storage.backends import InMemoryLocationBackend, JsonFileLocationBackend
from proxisync.storage.location_store import LocationStore, build_backend

NO_RETRY = StorageSettings(retry=RetrySettings(max_attempts=0, base_delay_seconds=0.0, max_delay_seconds=0.0))


def test_upsert_keeps_one_row_per_user(clock):
    store = LocationStore(storage_settings=NO_RETRY, clock=clock)

    store.upsert("a", 6.5, 3.3)
    clock.now += timedelta(seconds=30)
    store.upsert("a", 6.6, 3.4, accuracy_m=12)

    row = store.get("a")
    assert (row.latitude, row.longitude, row.accuracy_m) == (6.6, 3.4, 12)
    assert row.updated_at == clock.now
    assert list(store.get_many(["a", "missing"])) == ["a"]


def test_upsert_rejects_out_of_range_coordinates():
    store = LocationStore(storage_settings=NO_RETRY)
    with pytest.raises(ValueError):
        store.upsert("a", 91.0, 0.0)
    assert store.get("a") is None


def test_set_sharing_keeps_coordinates():
    store = LocationStore(storage_settings=NO_RETRY)
    store.upsert("a", 6.5244, 3.3792)

    hidden = store.set_sharing("a", False)
    assert hidden.is_sharing is False
    assert (hidden.latitude, hidden.longitude) == (6.5244, 3.3792)

    shown = store.set_sharing("a", True)
    assert shown.is_sharing is True
    assert (shown.latitude, shown.longitude) == (6.5244, 3.3792)


def test_set_sharing_without_row_creates_positionless_row():
    store = LocationStore(storage_settings=NO_RETRY)
    row = store.set_sharing("new", False)
    assert row.has_position is False
    assert store.get("new").is_sharing is False


def test_upsert_without_flag_keeps_ghost_mode():
    store = LocationStore(storage_settings=NO_RETRY)
    assert store.upsert("a", 6.5, 3.3).is_sharing is True

    store.set_sharing("a", False)
    row = store.upsert("a", 6.6, 3.4)
    assert row.is_sharing is False
    assert store.get("a").latitude == 6.6

    assert store.upsert("a", 6.7, 3.5, True).is_sharing is True


def test_sharing_toggle_during_in_flight_upsert_wins():
    class SlowReadBackend(InMemoryLocationBackend):
        def __init__(self):
            super().__init__()
            self.entered = threading.Event()
            self.release = threading.Event()
            self.slow = False

        def read(self, user_id):
            if self.slow:
                self.slow = False
                self.entered.set()
                self.release.wait(5)
            return super().read(user_id)

    backend = SlowReadBackend()
    store = LocationStore(backend, storage_settings=NO_RETRY)
    store.upsert("a", 6.5, 3.3)

    backend.slow = True
    writer = threading.Thread(target=lambda: store.upsert("a", 6.6, 3.4))
    writer.start()
    assert backend.entered.wait(5)
    toggler = threading.Thread(target=lambda: store.set_sharing("a", False))
    toggler.start()

    backend.release.set()
    writer.join(5)
    toggler.join(5)

    row = store.get("a")
    assert row.is_sharing is False
    assert row.latitude == 6.6


def test_writes_publish_location_topic():
    notifier = ChangeNotifier()
    seen: list[tuple[str, dict]] = []
    notifier.subscribe("location:a", lambda topic, payload: seen.append((topic, payload)))
    store = LocationStore(notifier=notifier, storage_settings=NO_RETRY)

    try:
        store.upsert("a", 1.0, 1.0)
        store.set_sharing("a", False)
        store.delete("a")
        assert notifier.flush(5)
    finally:
        notifier.close()

    assert seen == [("location:a", {"user_id": "a"})] * 3
    assert store.get("a") is None


def test_json_backend_survives_restart(tmp_path):
    path = tmp_path / "nested" / "locations.json"
    first = LocationStore(JsonFileLocationBackend(path), storage_settings=NO_RETRY)
    first.upsert("a", 6.5, 3.3)
    first.set_sharing("a", False)

    second = LocationStore(JsonFileLocationBackend(path), storage_settings=NO_RETRY)
    row = second.get("a")
    assert row is not None
    assert (row.latitude, row.longitude, row.is_sharing) == (6.5, 3.3, False)
    assert len(second.history("a")) == 1
    assert not path.with_suffix(".tmp").exists()


def test_build_backend_resolves_relative_path(monkeypatch, tmp_path):
    monkeypatch.setattr("proxisync.storage.location_store.resolve_data_path", lambda p: tmp_path / p)
    backend = build_backend(StorageSettings(backend="json", path="data/locations.json"))
    assert isinstance(backend, JsonFileLocationBackend)
    assert backend.path == tmp_path / "data/locations.json"
    assert isinstance(build_backend(StorageSettings()), InMemoryLocationBackend)


def test_busy_store_times_out_instead_of_blocking():
    settings = NO_RETRY.model_copy(update={"timeout_seconds": 0.05})
    store = LocationStore(storage_settings=settings)

    store._lock.acquire()
    try:
        with pytest.raises(StorageTimeoutError):
            store.get("a")
    finally:
        store._lock.release()


def test_transient_failures_are_retried(monkeypatch):
    class FlakyBackend(InMemoryLocationBackend):
        def __init__(self):
            super().__init__()
            self.failures = 2

        def write(self, row):
            if self.failures:
                self.failures -= 1
                raise TransientStorageError("connection reset")
            super().write(row)

    sleeps: list[float] = []
    monkeypatch.setattr("proxisync.core.retry.time.sleep", lambda s: sleeps.append(s))

    settings = StorageSettings(retry=RetrySettings(max_attempts=3, base_delay_seconds=0.1, max_delay_seconds=2.0))
    store = LocationStore(FlakyBackend(), storage_settings=settings)
    store.upsert("a", 1.0, 2.0)

    assert store.get("a").latitude == 1.0
    assert sleeps == [0.1, 0.2]


def test_retries_are_bounded(monkeypatch):
    class DownBackend(InMemoryLocationBackend):
        def read(self, user_id):
            raise TransientStorageError("unreachable")

    monkeypatch.setattr("proxisync.core.retry.time.sleep", lambda s: None)
    settings = StorageSettings(retry=RetrySettings(max_attempts=2, base_delay_seconds=0.0, max_delay_seconds=0.0))
    store = LocationStore(DownBackend(), storage_settings=settings)

    with pytest.raises(TransientStorageError, match="unreachable"):
        store.get("a")


def test_history_records_named_fixes_and_is_trimmed(clock):
    store = LocationStore(
        resolver=GeocodingResolver(),
        storage_settings=NO_RETRY,
        location_settings=LocationSettings(history_limit=2),
        clock=clock,
    )
    store.upsert("a", 6.5244, 3.3792)
    store.upsert("a", 6.5074, 3.3722)
    store.upsert("a", 0.0, 0.0)

    history = store.history("a")
    assert [h.location_name for h in history] == ["yaba", None]
    assert [h.location_name for h in store.history("a", limit=1)] == [None]
    assert store.history("a", limit=0) == []


def test_history_skips_positionless_rows():
    store = LocationStore(storage_settings=NO_RETRY)
    store.set_sharing("a", True)
    assert store.history("a") == []


def test_is_stale_uses_configured_age(clock):
    store = LocationStore(
        storage_settings=NO_RETRY, location_settings=LocationSettings(stale_after_seconds=600), clock=clock
    )
    row = store.upsert("a", 1.0, 1.0)

    assert store.is_stale(row) is False
    clock.now += timedelta(seconds=601)
    assert store.is_stale(row) is True

    never = LocationStore(storage_settings=NO_RETRY, location_settings=LocationSettings(stale_after_seconds=0))
    assert never.is_stale(row, now=clock.now + timedelta(days=1)) is False
