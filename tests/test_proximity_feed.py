from datetime import datetime, timedelta, timezone

import pytest

from proxisync.core.geo import GeoPoint, haversine_km
from proxisync.domain.models import Coordinates, Event, LocationReport, Profile
from proxisync.engine import ProximityEngine
from proxisync.feed.proximity import ProximityFeed
from proxisync.geocoding.gazetteer import Gazetteer
from proxisync.geocoding.resolver import GeocodingResolver
from proxisync.presence.tracker import PresenceTracker
from proxisync.privacy.gate import PrivacyGate
from proxisync.social.graph import EventCatalog, ProfileDirectory, SocialGraph
from proxisync.storage.backends import InMemoryLocationBackend
from proxisync.storage.location_store import LocationStore

LAGOS = (6.5244, 3.3792)
YABA = (6.5074, 3.3722)
ABUJA = (9.0765, 7.3986)
KM_PER_DEGREE = 111.195


def _report(engine: ProximityEngine, user_id: str, point: tuple[float, float], sharing: bool = True) -> None:
    engine.report_location(LocationReport(user_id=user_id, latitude=point[0], longitude=point[1], is_sharing=sharing))


def test_ghost_mode_round_trip_between_two_friends(engine, befriend):
    befriend("a", "b")
    _report(engine, "a", LAGOS)
    _report(engine, "b", YABA)

    [seen] = engine.nearby_friends("b")
    assert seen.id == "a"
    assert seen.coordinates == Coordinates(lat=LAGOS[0], lng=LAGOS[1])
    assert seen.distance_km == round(haversine_km(*YABA, *LAGOS), 2)
    assert seen.location_label == "lagos"
    assert seen.name == "Friend"

    engine.set_sharing("a", False)
    [hidden] = engine.nearby_friends("b")
    assert hidden.id == "a"
    assert hidden.coordinates is None
    assert hidden.distance_km is None
    assert hidden.location_label == "Location hidden"

    engine.set_sharing("a", True)
    [back] = engine.nearby_friends("b")
    assert back.coordinates == Coordinates(lat=LAGOS[0], lng=LAGOS[1])

    assert [r.id for r in engine.nearby_friends("a")] == ["b"]


def test_only_accepted_friends_are_listed(engine, befriend):
    befriend("v", "f")
    engine.graph.request("v", "pending")
    engine.graph.request("rejected", "v")
    engine.graph.respond("v", "rejected", accept=False)
    for uid in ("v", "f", "pending", "rejected", "stranger"):
        _report(engine, uid, LAGOS)

    assert [r.id for r in engine.nearby_friends("v")] == ["f"]
    assert engine.nearby_friends("stranger") == []


@pytest.fixture
def crowd(engine, befriend):
    """Viewer `v` with four friends in different presence/visibility states."""
    _report(engine, "v", LAGOS)
    for uid in ("c", "d", "e", "f"):
        befriend("v", uid)
    _report(engine, "f", (6.53, 3.38))
    _report(engine, "c", ABUJA)
    _report(engine, "d", (6.52, 3.37), sharing=False)
    _report(engine, "e", (6.525, 3.38))
    for uid in ("c", "d", "f"):
        engine.presence.register(uid)
    engine.profiles.put(Profile(user_id="f", display_name="Funmi", avatar_url="https://img.test/f.png"))
    return engine


def test_friends_sorted_by_presence_then_distance(crowd):
    results = crowd.nearby_friends("v")
    assert [r.id for r in results] == ["f", "c", "d", "e"]
    assert [r.status for r in results] == ["online", "online", "online", "offline"]
    assert results[0].name == "Funmi"
    assert results[0].avatar_url == "https://img.test/f.png"
    assert results[1].location_label == "abuja"


def test_offline_friends_ordered_nearest_first_then_by_id(engine, befriend):
    _report(engine, "v", LAGOS)
    for uid in ("far", "near2", "near1", "hidden"):
        befriend("v", uid)
    _report(engine, "far", ABUJA)
    _report(engine, "near2", YABA)
    _report(engine, "near1", YABA)
    _report(engine, "hidden", YABA, sharing=False)

    results = engine.nearby_friends("v")
    assert [r.id for r in results] == ["near1", "near2", "far", "hidden"]
    assert {r.status for r in results} == {"offline"}


def test_radius_filter_keeps_unknown_positions(crowd):
    assert [r.id for r in crowd.nearby_friends("v", radius_km=50)] == ["f", "d", "e"]


@pytest.mark.parametrize(
    "query,expected",
    [("funmi", ["f"]), ("ABUJA", ["c"]), ("hidden", ["d"]), ("", ["f", "c", "d", "e"])],
)
def test_friend_search_matches_name_or_label(crowd, query, expected):
    assert [r.id for r in crowd.nearby_friends("v", query=query)] == expected


def test_viewer_without_position_gets_no_distances(engine, befriend):
    befriend("v", "f")
    _report(engine, "f", LAGOS)
    [item] = engine.nearby_friends("v")
    assert item.coordinates is not None
    assert item.distance_km is None


def test_map_bounds_covers_viewer_and_visible_friends(crowd):
    box = crowd.feed.map_bounds("v")
    assert box.north == ABUJA[0]
    assert box.east == ABUJA[1]
    assert box.south == LAGOS[0]
    assert box.west == LAGOS[1]


def test_map_bounds_empty_is_zero(engine):
    box = engine.feed.map_bounds("nobody")
    assert (box.north, box.south, box.east, box.west) == (0, 0, 0, 0)


def test_stale_positions_are_flagged(clock):
    graph = SocialGraph()
    graph.request("v", "f")
    graph.respond("f", "v", accept=True)
    store = LocationStore(InMemoryLocationBackend(), clock=clock)
    feed = ProximityFeed(
        graph=graph,
        store=store,
        gate=PrivacyGate(graph),
        presence=PresenceTracker(),
        profiles=ProfileDirectory(),
        events=EventCatalog(),
        resolver=GeocodingResolver(),
        clock=clock,
    )
    store.upsert("f", *LAGOS)
    assert feed.nearby_friends("v")[0].is_stale is False

    clock.now += timedelta(minutes=11)
    assert feed.nearby_friends("v")[0].is_stale is True


NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def event_engine(settings):
    gazetteer = Gazetteer(
        entries={
            "near hall": GeoPoint(LAGOS[0] + 5 / KM_PER_DEGREE, LAGOS[1]),
            "far arena": GeoPoint(LAGOS[0] + 35 / KM_PER_DEGREE, LAGOS[1]),
        }
    )
    events = EventCatalog(
        [
            Event(id="e1", title="Afrobeats night", location_text="Near Hall", start_time=NOW + timedelta(days=1), category="music"),
            Event(id="e2", title="Tech meetup", location_text="Far Arena", start_time=NOW + timedelta(hours=3)),
            Event(id="e3", title="Pop-up dinner", location_text="Secret spot", start_time=NOW + timedelta(hours=2)),
            Event(id="e4", title="Private party", location_text="Near Hall", start_time=NOW + timedelta(hours=1), is_public=False),
            Event(id="e5", title="Yesterday's run", location_text="Near Hall", start_time=NOW - timedelta(days=1)),
        ]
    )
    eng = ProximityEngine(
        settings,
        backend=InMemoryLocationBackend(),
        resolver=GeocodingResolver(gazetteer),
        events=events,
    )
    yield eng
    eng.close()


def test_nearby_events_keeps_close_and_unresolved_venues(event_engine):
    _report(event_engine, "v", LAGOS)
    results = event_engine.nearby_events("v", 20, now=NOW)

    assert [e.id for e in results] == ["e3", "e1"]
    unresolved, near = results
    assert unresolved.coordinates is None
    assert unresolved.distance_km is None
    assert near.distance_km == pytest.approx(5.0, abs=0.01)


def test_nearby_events_uses_configured_default_radius(event_engine):
    _report(event_engine, "v", LAGOS)
    assert [e.id for e in event_engine.nearby_events("v", now=NOW)] == ["e3", "e1"]
    assert [e.id for e in event_engine.nearby_events("v", 50, now=NOW)] == ["e3", "e2", "e1"]


def test_nearby_events_without_viewer_position_lists_all_upcoming(event_engine):
    assert [e.id for e in event_engine.nearby_events("v", 20, now=NOW)] == ["e3", "e2", "e1"]


def test_event_search_covers_title_location_and_category(event_engine):
    assert [e.id for e in event_engine.nearby_events("v", query="MUSIC", now=NOW)] == ["e1"]
    assert [e.id for e in event_engine.nearby_events("v", query="secret", now=NOW)] == ["e3"]
    assert [e.id for e in event_engine.nearby_events("v", query="meetup", now=NOW)] == ["e2"]


def test_event_venues_are_geocoded_once(event_engine):
    event_engine.nearby_events("v", now=NOW)
    event_engine.nearby_events("v", now=NOW)
    assert len(event_engine.feed.geocoder) == 3
