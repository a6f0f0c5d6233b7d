"""
Gazetteer loader.

The gazetteer is a single versioned YAML data asset (`proxisync/geocoding/gazetteer.yaml`)
mapping normalized place names to coordinates. It is read once and shared by every caller.
Entry order is preserved because geocoding is "first match wins".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml

from proxisync.core.geo import GeoPoint


def normalize_name(text: str) -> str:
    """Lower-case and trim a place name."""
    return text.strip().lower()


@dataclass(frozen=True)
class Gazetteer:
    """Read-only ordered `name -> GeoPoint` lookup."""

    entries: Mapping[str, GeoPoint]
    version: str = "unversioned"
    _index: dict[str, GeoPoint] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[str, GeoPoint] = {}
        for name, point in self.entries.items():
            key = normalize_name(name)
            if key and key not in index:
                index[key] = point
        object.__setattr__(self, "_index", index)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._index

    def items(self) -> Iterator[tuple[str, GeoPoint]]:
        return iter(self._index.items())

    def get(self, name: str) -> GeoPoint | None:
        return self._index.get(normalize_name(name))


def _parse_payload(payload: Any, *, source: str) -> Gazetteer:
    if not isinstance(payload, dict):
        raise ValueError(f"Invalid gazetteer root object in {source}; expected a mapping.")
    raw_entries = payload.get("entries") or {}
    if not isinstance(raw_entries, dict):
        raise ValueError(f"Invalid gazetteer entries in {source}; expected a mapping.")

    entries: dict[str, GeoPoint] = {}
    for name, coords in raw_entries.items():
        if not isinstance(coords, dict):
            raise ValueError(f"Gazetteer entry '{name}' in {source} must be a mapping with lat/lng.")
        entries[str(name)] = GeoPoint(lat=float(coords["lat"]), lng=float(coords["lng"]))
    return Gazetteer(entries=entries, version=str(payload.get("version", "unversioned")))


def load_gazetteer(path: str | Path) -> Gazetteer:
    """Load a gazetteer YAML file from disk."""
    text = Path(path).read_text(encoding="utf-8")
    return _parse_payload(yaml.safe_load(text), source=str(path))


@lru_cache
def default_gazetteer() -> Gazetteer:
    """Return the packaged gazetteer (cached)."""
    text = resources.files("proxisync.geocoding").joinpath("gazetteer.yaml").read_text(encoding="utf-8")
    return _parse_payload(yaml.safe_load(text), source="gazetteer.yaml")
