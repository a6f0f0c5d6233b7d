"""
Ephemeral presence: who is connected right now, independent of location.

Each connection (tab, device) registers a session handle. A user is `online` while at
least one handle is live; concurrent register/deregister calls collapse into that
reference count instead of last-write-wins, so closing one tab never flickers a user
offline while another stays open. Nothing is persisted: a restart starts empty.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from proxisync.config.settings import PresenceSettings
from proxisync.domain.models import PresenceStatus
from proxisync.notify.notifier import ChangeNotifier, presence_topic

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    session_id: str
    user_id: str
    last_seen: float


class PresenceTracker:
    def __init__(
        self,
        notifier: ChangeNotifier | None = None,
        settings: PresenceSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._notifier = notifier
        self._settings = settings or PresenceSettings()
        self._clock = clock
        self._sessions: dict[str, _Session] = {}
        self._by_user: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def _publish(self, user_id: str, status: PresenceStatus) -> None:
        logger.debug("presence user=%s -> %s", user_id, status)
        if self._notifier:
            self._notifier.publish(presence_topic(user_id), {"user_id": user_id})

    def register(self, user_id: str, session_id: str | None = None) -> str:
        """Add a live session for `user_id` and return its handle."""
        sid = session_id or uuid.uuid4().hex
        with self._lock:
            existing = self._sessions.get(sid)
            if existing is not None:
                if existing.user_id != user_id:
                    raise ValueError(f"session {sid} already belongs to another user")
                existing.last_seen = self._clock()
                return sid
            self._sessions[sid] = _Session(session_id=sid, user_id=user_id, last_seen=self._clock())
            handles = self._by_user.setdefault(user_id, set())
            handles.add(sid)
            came_online = len(handles) == 1
        if came_online:
            self._publish(user_id, "online")
        return sid

    def deregister(self, session_id: str) -> bool:
        """Drop a session handle; returns False for unknown (already closed) handles."""
        with self._lock:
            went_offline, user_id = self._drop_locked(session_id)
            if user_id is None:
                return False
        if went_offline:
            self._publish(user_id, "offline")
        return True

    def deregister_all(self, user_id: str) -> int:
        with self._lock:
            handles = list(self._by_user.get(user_id, ()))
            for sid in handles:
                self._drop_locked(sid)
        if handles:
            self._publish(user_id, "offline")
        return len(handles)

    def _drop_locked(self, session_id: str) -> tuple[bool, str | None]:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False, None
        handles = self._by_user.get(session.user_id)
        if handles is not None:
            handles.discard(session_id)
            if not handles:
                self._by_user.pop(session.user_id, None)
                return True, session.user_id
        return False, session.user_id

    def touch(self, session_id: str) -> bool:
        """Heartbeat: refresh a session's last-seen time."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.last_seen = self._clock()
            return True

    def expire_idle(self, now: float | None = None) -> list[str]:
        """Drop sessions idle longer than `session_ttl_seconds`; returns users that went offline."""
        ttl = int(self._settings.session_ttl_seconds)
        if ttl <= 0:
            return []
        now = self._clock() if now is None else now
        offline: list[str] = []
        with self._lock:
            stale = [s.session_id for s in self._sessions.values() if now - s.last_seen > ttl]
            for sid in stale:
                went_offline, user_id = self._drop_locked(sid)
                if went_offline and user_id is not None:
                    offline.append(user_id)
        for user_id in offline:
            self._publish(user_id, "offline")
        return offline

    def status(self, user_id: str) -> PresenceStatus:
        with self._lock:
            return "online" if self._by_user.get(user_id) else "offline"

    def is_online(self, user_id: str) -> bool:
        return self.status(user_id) == "online"

    def sessions(self, user_id: str) -> int:
        with self._lock:
            return len(self._by_user.get(user_id, ()))

    def snapshot(self) -> dict[str, PresenceStatus]:
        """Copy of online users; anyone absent from the mapping is offline."""
        with self._lock:
            return {user_id: "online" for user_id, handles in self._by_user.items() if handles}
