"""
`.env` discovery and data-path resolution.

The JSON location store defaults to a relative path (`.data/proxisync/locations.json`).
The API, the CLI and the test-suite start from different working directories, so relative
paths are anchored to a stable "data root" instead of whatever the CWD happens to be:

1. `PROXISYNC_DATA_DIR`, when set,
2. otherwise the directory holding the `.env` file that was loaded,
3. otherwise the nearest ancestor of the CWD that looks like a checkout.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

_CHECKOUT_MARKERS = (".git", "pyproject.toml")


def _walk_up(start: Path):
    current = start.resolve()
    yield current
    yield from current.parents


def find_env_file() -> Path | None:
    """Locate the `.env` file to load (explicit `PROXISYNC_ENV_FILE` wins)."""
    explicit = os.getenv("PROXISYNC_ENV_FILE")
    if explicit:
        candidate = Path(explicit).expanduser().resolve()
        return candidate if candidate.is_file() else None

    for directory in _walk_up(Path.cwd()):
        candidate = directory / ".env"
        if candidate.is_file():
            return candidate
        # Never read a `.env` from above the current checkout.
        if any((directory / marker).exists() for marker in _CHECKOUT_MARKERS):
            break
    return None


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the discovered `.env` once; existing process variables always win."""
    from dotenv import load_dotenv

    env_path = find_env_file()
    if env_path is None:
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def data_root() -> Path:
    override = os.getenv("PROXISYNC_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()

    env_path = load_dotenv_if_present()
    if env_path is not None:
        return env_path.parent

    for directory in _walk_up(Path.cwd()):
        if any((directory / marker).exists() for marker in _CHECKOUT_MARKERS):
            return directory
    return Path.cwd().resolve()


def resolve_data_path(path: str | Path) -> Path:
    """Absolute paths pass through; relative ones are anchored at `data_root()`."""
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return (data_root() / p).resolve()
