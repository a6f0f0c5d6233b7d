import threading

import pytest

from proxisync.config.settings import AlertSettings
from proxisync.domain.models import LocationReport, Profile
from proxisync.engine import ProximityEngine
from proxisync.feed.alerts import NearbyAlert
from proxisync.storage.backends import InMemoryLocationBackend

LAGOS = (6.5244, 3.3792)
CLOSE_BY = (6.5280, 3.3792)  # ~0.4 km north of LAGOS
YABA = (6.5074, 3.3722)  # ~2 km away
ABUJA = (9.0765, 7.3986)


def _report(engine, user_id, point):
    engine.report_location(LocationReport(user_id=user_id, latitude=point[0], longitude=point[1]))
    assert engine.notifier.flush(5)


@pytest.fixture
def inbox(engine):
    """Collects alert payloads per recipient."""
    received: dict[str, list[dict]] = {}
    lock = threading.Lock()

    def listen(user_id: str) -> list[dict]:
        def handler(topic, payload):
            with lock:
                received[user_id].append(payload)

        received[user_id] = []
        engine.notifier.subscribe(f"alert:{user_id}", handler)
        return received[user_id]

    return listen


def test_friend_entering_radius_gets_one_alert(engine, befriend, inbox):
    befriend("a", "b")
    engine.profiles.put(Profile(user_id="a", display_name="Ada"))
    alerts_for_b = inbox("b")
    _report(engine, "b", LAGOS)
    assert alerts_for_b == []

    _report(engine, "a", CLOSE_BY)

    [alert] = alerts_for_b
    assert alert["type"] == "friend_nearby"
    assert alert["title"] == "Ada is nearby!"
    assert alert["content"] == "Ada is in your area. Say hi!"
    assert alert["data"]["friend_id"] == "a"
    assert alert["data"]["distance_km"] < 1


def test_staying_close_does_not_repeat_and_leaving_rearms(engine, befriend, inbox):
    befriend("a", "b")
    alerts_for_b = inbox("b")
    _report(engine, "b", LAGOS)

    _report(engine, "a", CLOSE_BY)
    _report(engine, "a", LAGOS)
    assert len(alerts_for_b) == 1

    _report(engine, "a", ABUJA)
    assert len(alerts_for_b) == 1

    _report(engine, "a", CLOSE_BY)
    assert len(alerts_for_b) == 2
    assert alerts_for_b[-1]["title"] == "Friend is nearby!"


def test_friend_outside_radius_gets_nothing(engine, befriend, inbox):
    befriend("a", "b")
    alerts_for_b = inbox("b")
    _report(engine, "b", LAGOS)
    _report(engine, "a", YABA)
    assert alerts_for_b == []


def test_ghost_mode_suppresses_alerts(engine, befriend, inbox):
    befriend("a", "b")
    alerts_for_b = inbox("b")
    _report(engine, "b", LAGOS)
    engine.set_sharing("a", False)
    assert engine.notifier.flush(5)

    _report(engine, "a", CLOSE_BY)
    assert alerts_for_b == []

    engine.set_sharing("a", True)
    assert engine.notifier.flush(5)
    assert [p["data"]["friend_id"] for p in alerts_for_b] == ["a"]


def test_only_accepted_friends_are_alerted(engine, befriend, inbox):
    befriend("a", "b")
    engine.graph.request("a", "pending")
    alerts = {uid: inbox(uid) for uid in ("b", "pending", "stranger")}
    for uid in ("b", "pending", "stranger"):
        _report(engine, uid, LAGOS)

    _report(engine, "a", CLOSE_BY)

    assert len(alerts["b"]) == 1
    assert alerts["pending"] == []
    assert alerts["stranger"] == []


def test_check_returns_alerts_in_recipient_order(engine, befriend):
    engine.alerts.detach()
    for uid in ("c", "b"):
        befriend("a", uid)
        _report(engine, uid, LAGOS)
    _report(engine, "a", CLOSE_BY)

    alerts = engine.alerts.check("a")
    assert [a.recipient_id for a in alerts] == ["b", "c"]
    assert all(isinstance(a, NearbyAlert) and a.friend_id == "a" for a in alerts)
    assert engine.alerts.check("a") == []


def test_disabled_alerts_are_not_sent(settings):
    quiet = settings.model_copy(update={"alerts": AlertSettings(enabled=False)})
    engine = ProximityEngine(quiet, backend=InMemoryLocationBackend())
    try:
        engine.graph.request("a", "b")
        engine.graph.respond("b", "a", accept=True)
        engine.report_location(LocationReport(user_id="b", latitude=LAGOS[0], longitude=LAGOS[1]))
        engine.report_location(LocationReport(user_id="a", latitude=CLOSE_BY[0], longitude=CLOSE_BY[1]))
        assert engine.notifier.subscriber_count("alert:b") == 0
        assert engine.notifier.subscriber_count("location:a") == 0
        assert engine.alerts.check("a") == []
    finally:
        engine.close()
