"""
Friend-nearby alerts.

When a user's fix changes, each accepted friend who is allowed to see that user and is
within `alerts.radius_km` receives one `alert:{friend_id}` message ("Ada is nearby!").

Alerts are edge-triggered per (mover, friend) pair: staying close does not repeat the
alert; leaving the radius, going into ghost mode or losing the friendship re-arms it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from proxisync.config.settings import AlertSettings
from proxisync.core.geo import haversine_km
from proxisync.feed.proximity import DEFAULT_FRIEND_NAME
from proxisync.notify.notifier import ChangeNotifier, Subscription, alert_topic
from proxisync.privacy.gate import PrivacyGate
from proxisync.social.graph import ProfileDirectory, SocialGraph
from proxisync.storage.location_store import LocationStore

logger = logging.getLogger(__name__)

ALERT_TYPE = "friend_nearby"


@dataclass(frozen=True)
class NearbyAlert:
    recipient_id: str
    friend_id: str
    friend_name: str
    distance_km: float

    @property
    def title(self) -> str:
        return f"{self.friend_name} is nearby!"

    @property
    def content(self) -> str:
        return f"{self.friend_name} is in your area. Say hi!"

    def as_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.recipient_id,
            "type": ALERT_TYPE,
            "title": self.title,
            "content": self.content,
            "data": {"friend_id": self.friend_id, "distance_km": self.distance_km},
        }


class NearbyAlerter:
    def __init__(
        self,
        *,
        graph: SocialGraph,
        store: LocationStore,
        gate: PrivacyGate,
        profiles: ProfileDirectory,
        notifier: ChangeNotifier,
        settings: AlertSettings | None = None,
    ):
        self._graph = graph
        self._store = store
        self._gate = gate
        self._profiles = profiles
        self._notifier = notifier
        self._settings = settings or AlertSettings()
        self._inside: set[tuple[str, str]] = set()
        self._lock = threading.Lock()
        self._subscription: Subscription | None = None

    def attach(self) -> None:
        """Check every location write from now on."""
        if self._subscription is None:
            self._subscription = self._notifier.subscribe("location:*", self._on_location)

    def detach(self) -> None:
        if self._subscription is not None:
            self._notifier.unsubscribe(self._subscription)
            self._subscription = None

    def _on_location(self, topic: str, payload: dict[str, Any]) -> None:
        self.check(payload["user_id"])

    def check(self, user_id: str) -> list[NearbyAlert]:
        """Re-evaluate `user_id` against their friends and publish alerts for new arrivals."""
        if not self._settings.enabled:
            return []

        mover = self._store.get(user_id)
        near: dict[str, float] = {}
        if mover is not None and mover.has_position:
            friend_ids = self._graph.accepted_friend_ids(user_id)
            rows = self._store.get_many(friend_ids)
            for friend_id in friend_ids:
                row = rows.get(friend_id)
                if row is None or not row.has_position:
                    continue
                if not self._gate.is_visible(friend_id, mover):
                    continue
                distance = haversine_km(mover.latitude, mover.longitude, row.latitude, row.longitude)
                if distance <= float(self._settings.radius_km):
                    near[friend_id] = round(distance, 2)

        with self._lock:
            previous = {f for m, f in self._inside if m == user_id}
            entered = sorted(set(near) - previous)
            self._inside.difference_update((user_id, f) for f in previous - set(near))
            self._inside.update((user_id, f) for f in entered)

        if not entered:
            return []

        profile = self._profiles.get(user_id)
        name = profile.display_name if profile and profile.display_name else DEFAULT_FRIEND_NAME
        alerts = [
            NearbyAlert(recipient_id=friend_id, friend_id=user_id, friend_name=name, distance_km=near[friend_id])
            for friend_id in entered
        ]
        for alert in alerts:
            self._notifier.publish(alert_topic(alert.recipient_id), alert.as_payload())
        logger.info("user %s is near %s friend(s): %s", user_id, len(alerts), ", ".join(entered))
        return alerts
