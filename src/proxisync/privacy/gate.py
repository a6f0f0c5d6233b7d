"""
Privacy gate: the single path through which another user's coordinates become visible.

Rules:
- ghost mode (`is_sharing=False`) hides a user from everyone, friends included,
- otherwise only `accepted` friends see the location (pending/rejected never do),
- an optional obfuscation radius replaces the exact fix with a random point in a disk
  (the "fuzzy location" tier).

The gate never caches the sharing flag: every check reads the row it is given, and
callers fetch rows fresh for each feed computation.
"""

from __future__ import annotations

from proxisync.config.settings import PrivacySettings
from proxisync.core.geo import GeoPoint, haversine_km, offset_within_radius
from proxisync.domain.models import Coordinates, UserLocation
from proxisync.social.graph import SocialGraph


class PrivacyGate:
    def __init__(self, graph: SocialGraph, settings: PrivacySettings | None = None):
        self._graph = graph
        self._settings = settings or PrivacySettings()

    def is_visible(self, viewer_id: str, target: UserLocation | None) -> bool:
        if target is None:
            return False
        if target.user_id == viewer_id:
            return True
        if not target.is_sharing:
            return False
        return self._graph.are_friends(viewer_id, target.user_id)

    def project(
        self,
        viewer_id: str,
        target: UserLocation | None,
        radius_m: float | None = None,
    ) -> Coordinates | None:
        """Return what `viewer_id` may see of `target`'s position (exact, jittered or None)."""
        if not self.is_visible(viewer_id, target) or not target.has_position:
            return None
        if target.user_id == viewer_id:
            return Coordinates(lat=target.latitude, lng=target.longitude)

        radius = float(radius_m) if radius_m is not None else float(self._settings.obfuscation_radius_m)
        if radius <= 0:
            return Coordinates(lat=target.latitude, lng=target.longitude)
        fuzzed = offset_within_radius(target.latitude, target.longitude, radius)
        lng = fuzzed.lng if -180 <= fuzzed.lng <= 180 else ((fuzzed.lng + 180) % 360) - 180
        return Coordinates(lat=max(-90.0, min(90.0, fuzzed.lat)), lng=lng)

    @staticmethod
    def within_discovery_radius(
        viewer: GeoPoint | Coordinates | None,
        target: GeoPoint | Coordinates | None,
        radius_km: float,
    ) -> bool:
        """True when both points are known and within `radius_km`, or when either is unknown."""
        if viewer is None or target is None:
            return True
        return haversine_km(viewer.lat, viewer.lng, target.lat, target.lng) <= float(radius_km)
