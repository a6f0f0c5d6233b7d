"""
Name <-> coordinate resolution over the static gazetteer.

`geocode` turns a human-entered venue ("Lekki Phase 1, Lagos") into coordinates;
`reverse_geocode` labels a position with the nearest named place. Both are approximate
by nature and return `None` on a miss; callers show a generic label instead.
"""

from __future__ import annotations

import logging
import threading

from proxisync.config.settings import GeocodingSettings
from proxisync.core.geo import GeoPoint, haversine_km
from proxisync.geocoding.gazetteer import Gazetteer, default_gazetteer, normalize_name

logger = logging.getLogger(__name__)


class GeocodingResolver:
    def __init__(
        self,
        gazetteer: Gazetteer | None = None,
        settings: GeocodingSettings | None = None,
    ):
        self._gazetteer = gazetteer or default_gazetteer()
        self._settings = settings or GeocodingSettings()

    @property
    def gazetteer(self) -> Gazetteer:
        return self._gazetteer

    def geocode(self, text: str | None) -> GeoPoint | None:
        """Resolve free text to coordinates: exact, then substring (either way), then city fallback."""
        if not text:
            return None
        normalized = normalize_name(text)
        if not normalized:
            return None

        exact = self._gazetteer.get(normalized)
        if exact is not None:
            return exact

        for key, point in self._gazetteer.items():
            if key in normalized or normalized in key:
                return point

        for city in self._settings.fallback_cities:
            city_key = normalize_name(city)
            if city_key and city_key in normalized:
                point = self._gazetteer.get(city_key)
                if point is not None:
                    return point

        logger.debug("geocode miss for %r", normalized)
        return None

    def reverse_geocode(self, lat: float, lng: float) -> str | None:
        """Return the nearest gazetteer name if it lies within the cutoff, else None."""
        closest: str | None = None
        best = float("inf")
        for name, point in self._gazetteer.items():
            d = haversine_km(lat, lng, point.lat, point.lng)
            if d < best:
                best = d
                closest = name
        if closest is not None and best < float(self._settings.reverse_cutoff_km):
            return closest
        return None


class CachedGeocoder:
    """Memoizes `geocode` by normalized text, misses included, so each venue is resolved once."""

    _MISS = object()

    def __init__(self, resolver: GeocodingResolver):
        self._resolver = resolver
        self._cache: dict[str, object] = {}
        self._lock = threading.Lock()

    def geocode(self, text: str | None) -> GeoPoint | None:
        key = normalize_name(text or "")
        if not key:
            return None
        with self._lock:
            cached = self._cache.get(key)
        if cached is None:
            point = self._resolver.geocode(key)
            cached = point if point is not None else self._MISS
            with self._lock:
                self._cache.setdefault(key, cached)
        return None if cached is self._MISS else cached  # type: ignore[return-value]

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
