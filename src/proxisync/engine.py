"""
Engine wiring.

`ProximityEngine` builds the full object graph from `Settings` (or accepts injected parts
in tests) and exposes the write APIs (location report, sharing toggle) and read APIs
(nearby friends/events) consumed by the HTTP layer and the CLI.

Data flow:
    report -> LocationStore.upsert -> ChangeNotifier -> FeedSubscription -> ProximityFeed
                                                    -> NearbyAlerter -> alert:{friend_id}
"""

from __future__ import annotations

import logging
from datetime import datetime

from proxisync.config.settings import Settings, get_settings
from proxisync.domain.models import EventResult, LocationReport, ProximityResult, UserLocation
from proxisync.feed.alerts import NearbyAlerter
from proxisync.feed.proximity import ProximityFeed
from proxisync.geocoding.resolver import GeocodingResolver
from proxisync.notify.notifier import ChangeNotifier
from proxisync.notify.subscription import FeedCallback, FeedSubscription
from proxisync.presence.tracker import PresenceTracker
from proxisync.privacy.gate import PrivacyGate
from proxisync.reporting.reporter import LocationReporter
from proxisync.social.graph import EventCatalog, ProfileDirectory, SocialGraph
from proxisync.storage.backends import LocationBackend
from proxisync.storage.location_store import LocationStore, build_backend

logger = logging.getLogger(__name__)


class ProximityEngine:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        backend: LocationBackend | None = None,
        resolver: GeocodingResolver | None = None,
        profiles: ProfileDirectory | None = None,
        events: EventCatalog | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.notifier = ChangeNotifier(s.notifier)
        self.resolver = resolver or GeocodingResolver(settings=s.geocoding)
        self.graph = SocialGraph(self.notifier)
        self.profiles = profiles or ProfileDirectory()
        self.events = events or EventCatalog()
        self.store = LocationStore(
            backend or build_backend(s.storage),
            notifier=self.notifier,
            resolver=self.resolver,
            storage_settings=s.storage,
            location_settings=s.location,
        )
        self.gate = PrivacyGate(self.graph, s.privacy)
        self.presence = PresenceTracker(self.notifier, s.presence)
        self.feed = ProximityFeed(
            graph=self.graph,
            store=self.store,
            gate=self.gate,
            presence=self.presence,
            profiles=self.profiles,
            events=self.events,
            resolver=self.resolver,
            settings=s.feed,
        )
        self.reporter = LocationReporter(self.store, s.reporting)
        self.alerts = NearbyAlerter(
            graph=self.graph,
            store=self.store,
            gate=self.gate,
            profiles=self.profiles,
            notifier=self.notifier,
            settings=s.alerts,
        )
        if s.alerts.enabled:
            self.alerts.attach()
        self._subscriptions: list[FeedSubscription] = []

    def report_location(self, report: LocationReport) -> UserLocation:
        return self.store.upsert(
            report.user_id,
            report.latitude,
            report.longitude,
            report.is_sharing,
            accuracy_m=report.accuracy_m,
        )

    def set_sharing(self, user_id: str, sharing: bool) -> UserLocation:
        return self.store.set_sharing(user_id, sharing)

    def nearby_friends(
        self, viewer_id: str, *, radius_km: float | None = None, query: str | None = None
    ) -> list[ProximityResult]:
        return self.feed.nearby_friends(viewer_id, radius_km=radius_km, query=query)

    def nearby_events(
        self,
        viewer_id: str,
        radius_km: float | None = None,
        *,
        query: str | None = None,
        now: datetime | None = None,
    ) -> list[EventResult]:
        return self.feed.nearby_events(viewer_id, radius_km, query=query, now=now)

    def open_feed_subscription(self, viewer_id: str, on_update: FeedCallback) -> FeedSubscription:
        sub = FeedSubscription(
            viewer_id, notifier=self.notifier, feed=self.feed, graph=self.graph, on_update=on_update
        )
        self._subscriptions.append(sub)
        return sub

    def close(self) -> None:
        self.reporter.stop_all()
        self.alerts.detach()
        for sub in self._subscriptions:
            sub.close()
        self._subscriptions.clear()
        self.notifier.close()
        logger.info("proximity engine closed")
