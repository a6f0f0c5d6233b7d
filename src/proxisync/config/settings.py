# src/proxisync/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/proxisync/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `PROXISYNC_LOG_LEVEL`, `PROXISYNC_STORAGE_PATH`)
- an external YAML file via `PROXISYNC_CONFIG_PATH`

Design rule:
- Tuning knobs (radii, cutoffs, intervals) live in YAML, not hard-coded in engine logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal
from proxisync.core.env import load_dotenv_if_present

import yaml
from pydantic import BaseModel, Field


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `proxisync.config`."""
    text = resources.files("proxisync.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "ProxiSync"
    log_level: str = "INFO"


class GeocodingSettings(BaseModel):
    reverse_cutoff_km: float = Field(5.0, gt=0)
    fallback_cities: list[str] = Field(
        default_factory=lambda: ["lagos", "abuja", "ibadan", "kano", "port harcourt"]
    )


class LocationSettings(BaseModel):
    stale_after_seconds: int = Field(600, ge=0)
    history_enabled: bool = True
    history_limit: int = Field(100, ge=1)


class RetrySettings(BaseModel):
    max_attempts: int = Field(3, ge=0)
    base_delay_seconds: float = Field(0.1, ge=0)
    max_delay_seconds: float = Field(2.0, ge=0)


class StorageSettings(BaseModel):
    backend: Literal["memory", "json"] = "memory"
    path: str = ".data/proxisync/locations.json"
    timeout_seconds: float = Field(5.0, gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class PrivacySettings(BaseModel):
    obfuscation_radius_m: float = Field(0.0, ge=0)


class PresenceSettings(BaseModel):
    session_ttl_seconds: int = Field(0, ge=0)


class FeedSettings(BaseModel):
    event_radius_km: float = Field(20.0, gt=0)
    friend_radius_km: float | None = Field(default=None, gt=0)


class AlertSettings(BaseModel):
    enabled: bool = True
    radius_km: float = Field(1.0, gt=0)


class NotifierSettings(BaseModel):
    handler_timeout_seconds: float = Field(5.0, gt=0)
    max_workers: int = Field(4, ge=1)


class ReportingSettings(BaseModel):
    interval_seconds: float = Field(30.0, gt=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    geocoding: GeocodingSettings = Field(default_factory=GeocodingSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)
    log_level = os.getenv("PROXISYNC_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    storage_path = os.getenv("PROXISYNC_STORAGE_PATH")
    if storage_path:
        storage = data.setdefault("storage", {})
        storage["path"] = storage_path
        storage["backend"] = "json"

    radius = os.getenv("PROXISYNC_OBFUSCATION_RADIUS_M")
    if radius:
        data.setdefault("privacy", {})["obfuscation_radius_m"] = float(radius)

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("PROXISYNC_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
