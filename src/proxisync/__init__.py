"""ProxiSync: friend proximity, privacy gating and presence for map-based social apps."""

__version__ = "0.1.0"
