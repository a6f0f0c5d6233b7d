"""
Location storage backends.

Two backends share one small interface:
- `InMemoryLocationBackend`: process-lifetime dicts (tests, single-process demos).
- `JsonFileLocationBackend`: one JSON document on disk, rewritten on every mutation via a
  temporary file + atomic replace so a crash never leaves a partially written file.

Backends store plain JSON-compatible dicts; `LocationStore` owns validation, locking,
retries and change notification.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Protocol

from proxisync.errors import TransientStorageError

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class LocationBackend(Protocol):
    def read(self, user_id: str) -> Row | None: ...

    def read_many(self, user_ids: Iterable[str]) -> dict[str, Row]: ...

    def write(self, row: Row) -> None: ...

    def delete(self, user_id: str) -> None: ...

    def append_history(self, entry: Row, *, limit: int) -> None: ...

    def read_history(self, user_id: str) -> list[Row]: ...


class InMemoryLocationBackend:
    def __init__(self) -> None:
        self._rows: dict[str, Row] = {}
        self._history: dict[str, list[Row]] = {}

    def read(self, user_id: str) -> Row | None:
        row = self._rows.get(user_id)
        return dict(row) if row is not None else None

    def read_many(self, user_ids: Iterable[str]) -> dict[str, Row]:
        return {uid: dict(self._rows[uid]) for uid in user_ids if uid in self._rows}

    def write(self, row: Row) -> None:
        self._rows[row["user_id"]] = dict(row)

    def delete(self, user_id: str) -> None:
        self._rows.pop(user_id, None)
        self._history.pop(user_id, None)

    def append_history(self, entry: Row, *, limit: int) -> None:
        trail = self._history.setdefault(entry["user_id"], [])
        trail.append(dict(entry))
        if len(trail) > limit:
            del trail[: len(trail) - limit]

    def read_history(self, user_id: str) -> list[Row]:
        return [dict(e) for e in self._history.get(user_id, [])]


class JsonFileLocationBackend(InMemoryLocationBackend):
    """In-memory rows mirrored to a JSON file after every mutation."""

    def __init__(self, path: Path):
        super().__init__()
        self._path = path
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise TransientStorageError(f"cannot read {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid location store file {self._path}; expected a JSON object.")
        self._rows = {str(k): v for k, v in (raw.get("locations") or {}).items()}
        self._history = {str(k): list(v) for k, v in (raw.get("history") or {}).items()}
        logger.info("loaded %s location rows from %s", len(self._rows), self._path)

    def _flush(self) -> None:
        payload = {"locations": self._rows, "history": self._history}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise TransientStorageError(f"cannot write {self._path}: {exc}") from exc

    def write(self, row: Row) -> None:
        super().write(row)
        self._flush()

    def delete(self, user_id: str) -> None:
        super().delete(user_id)
        self._flush()

    def append_history(self, entry: Row, *, limit: int) -> None:
        super().append_history(entry, limit=limit)
        self._flush()
