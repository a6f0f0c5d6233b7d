from datetime import datetime, timezone

import pytest

from proxisync.config.settings import Settings
from proxisync.engine import ProximityEngine
from proxisync.storage.backends import InMemoryLocationBackend


class FakeClock:
    """Settable UTC clock for stores and feeds."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings() -> Settings:
    return Settings.model_validate(
        {
            "storage": {"retry": {"max_attempts": 0, "base_delay_seconds": 0.0, "max_delay_seconds": 0.0}},
            "notifier": {"handler_timeout_seconds": 2.0},
        }
    )


@pytest.fixture
def engine(settings):
    eng = ProximityEngine(settings, backend=InMemoryLocationBackend())
    yield eng
    eng.close()


@pytest.fixture
def befriend(engine):
    def _befriend(a: str, b: str) -> None:
        engine.graph.request(a, b)
        engine.graph.respond(b, a, accept=True)

    return _befriend


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
