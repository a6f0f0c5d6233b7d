from __future__ import annotations

# The proximity feed is the read path behind the map screen. It joins:
# - the social graph (who are my accepted friends?)
# - the location store (where did each of them last report?)
# - the privacy gate (what may I see of that position?)
# - presence (are they connected right now?)
# into ranked per-viewer lists. It keeps no state between calls: every query reads the
# stores again, so repeated or out-of-order recompute triggers are harmless.

import logging
from datetime import datetime
from typing import Callable

from proxisync.config.settings import FeedSettings
from proxisync.core.geo import GeoPoint, bounding_box, haversine_km
from proxisync.core.time import utcnow, ensure_utc
from proxisync.domain.models import BoundingBox, Coordinates, EventResult, ProximityResult
from proxisync.geocoding.resolver import CachedGeocoder, GeocodingResolver
from proxisync.presence.tracker import PresenceTracker
from proxisync.privacy.gate import PrivacyGate
from proxisync.social.graph import EventCatalog, ProfileDirectory, SocialGraph
from proxisync.storage.location_store import LocationStore

logger = logging.getLogger(__name__)

DEFAULT_FRIEND_NAME = "Friend"
LABEL_ON_MAP = "On the map"
LABEL_HIDDEN = "Location hidden"


def _matches(query: str | None, *fields: str | None) -> bool:
    q = (query or "").strip().lower()
    if not q:
        return True
    return any(q in (f or "").lower() for f in fields)


def _friend_sort_key(item: ProximityResult) -> tuple[int, float, str]:
    # Bucket 0 is online with a distance, 1 online without one, 2 offline.
    # Inside every bucket, offline included, nearer friends sort first and ties fall back to id.
    if item.status == "online":
        bucket = 0 if item.distance_km is not None else 1
    else:
        bucket = 2
    distance = item.distance_km if item.distance_km is not None else float("inf")
    return bucket, distance, item.id


class ProximityFeed:
    def __init__(
        self,
        *,
        graph: SocialGraph,
        store: LocationStore,
        gate: PrivacyGate,
        presence: PresenceTracker,
        profiles: ProfileDirectory,
        events: EventCatalog,
        resolver: GeocodingResolver,
        settings: FeedSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._graph = graph
        self._store = store
        self._gate = gate
        self._presence = presence
        self._profiles = profiles
        self._events = events
        self._resolver = resolver
        self._geocoder = CachedGeocoder(resolver)
        self._settings = settings or FeedSettings()
        self._clock = clock

    @property
    def geocoder(self) -> CachedGeocoder:
        return self._geocoder

    def _viewer_point(self, viewer_id: str) -> GeoPoint | None:
        own = self._store.get(viewer_id)
        if own is None or not own.has_position:
            return None
        return GeoPoint(lat=own.latitude, lng=own.longitude)

    def nearby_friends(
        self,
        viewer_id: str,
        *,
        radius_km: float | None = None,
        query: str | None = None,
    ) -> list[ProximityResult]:
        """Accepted friends with gated coordinates, distance and presence, ranked for display."""
        friend_ids = self._graph.accepted_friend_ids(viewer_id)
        if not friend_ids:
            return []

        viewer_point = self._viewer_point(viewer_id)
        rows = self._store.get_many(friend_ids)
        profiles = self._profiles.get_many(friend_ids)
        presence = self._presence.snapshot()
        radius = radius_km if radius_km is not None else self._settings.friend_radius_km
        now = self._clock()

        results: list[ProximityResult] = []
        for friend_id in friend_ids:
            row = rows.get(friend_id)
            coords = self._gate.project(viewer_id, row)

            distance: float | None = None
            if coords is not None and viewer_point is not None:
                distance = round(haversine_km(viewer_point.lat, viewer_point.lng, coords.lat, coords.lng), 2)

            if radius is not None and not self._gate.within_discovery_radius(viewer_point, coords, radius):
                continue

            if coords is not None:
                label = self._resolver.reverse_geocode(coords.lat, coords.lng) or LABEL_ON_MAP
            else:
                label = LABEL_HIDDEN

            profile = profiles.get(friend_id)
            item = ProximityResult(
                id=friend_id,
                name=(profile.display_name if profile and profile.display_name else DEFAULT_FRIEND_NAME),
                avatar_url=profile.avatar_url if profile else None,
                coordinates=coords,
                distance_km=distance,
                status=presence.get(friend_id, "offline"),
                location_label=label,
                is_stale=bool(coords is not None and row is not None and self._store.is_stale(row, now=now)),
            )
            if not _matches(query, item.name, item.location_label):
                continue
            results.append(item)

        results.sort(key=_friend_sort_key)
        logger.debug("nearby_friends viewer=%s candidates=%s returned=%s", viewer_id, len(friend_ids), len(results))
        return results

    def nearby_events(
        self,
        viewer_id: str,
        radius_km: float | None = None,
        *,
        query: str | None = None,
        now: datetime | None = None,
    ) -> list[EventResult]:
        """Upcoming public events within `radius_km`; venues that cannot be resolved are always kept."""
        radius = float(radius_km) if radius_km is not None else float(self._settings.event_radius_km)
        now = ensure_utc(now) if now is not None else self._clock()
        viewer_point = self._viewer_point(viewer_id)

        results: list[EventResult] = []
        for event in self._events.list_events():
            if not event.is_public or ensure_utc(event.start_time) <= now:
                continue
            point = self._geocoder.geocode(event.location_text)
            if point is not None and not self._gate.within_discovery_radius(viewer_point, point, radius):
                continue

            distance: float | None = None
            if point is not None and viewer_point is not None:
                distance = round(haversine_km(viewer_point.lat, viewer_point.lng, point.lat, point.lng), 2)

            item = EventResult(
                id=event.id,
                title=event.title,
                location_text=event.location_text,
                coordinates=Coordinates(lat=point.lat, lng=point.lng) if point is not None else None,
                distance_km=distance,
                start_time=event.start_time,
                category=event.category,
            )
            if not _matches(query, item.title, item.location_text, item.category):
                continue
            results.append(item)

        results.sort(key=lambda e: (ensure_utc(e.start_time), e.id))
        return results

    def map_bounds(self, viewer_id: str) -> BoundingBox:
        """Envelope of the viewer's own fix and every visible friend, for map fitting."""
        points: list[GeoPoint] = []
        own = self._viewer_point(viewer_id)
        if own is not None:
            points.append(own)
        for item in self.nearby_friends(viewer_id):
            if item.coordinates is not None:
                points.append(GeoPoint(lat=item.coordinates.lat, lng=item.coordinates.lng))
        box = bounding_box(points)
        return BoundingBox(north=box.north, south=box.south, east=box.east, west=box.west)
