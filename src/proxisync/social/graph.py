"""
Social graph, profile directory and event catalog collaborators.

The engine only consumes "is this pair accepted?", "who are my accepted friends?",
"what is this user's display name?" and "which public events exist?". These in-memory
implementations answer those questions; a database-backed collaborator only needs
the same methods.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from proxisync.domain.models import Event, Friendship, FriendshipStatus, Profile
from proxisync.errors import FriendshipPermissionError
from proxisync.notify.notifier import ChangeNotifier, friendship_topic

logger = logging.getLogger(__name__)


def _pair_key(a: str, b: str) -> frozenset[str]:
    return frozenset((a, b))


class SocialGraph:
    """Friendship edges keyed by the unordered pair; either party may read."""

    def __init__(self, notifier: ChangeNotifier | None = None):
        self._edges: dict[frozenset[str], Friendship] = {}
        self._lock = threading.Lock()
        self._notifier = notifier

    def _notify(self, friendship: Friendship) -> None:
        if not self._notifier:
            return
        for user_id in (friendship.requester_id, friendship.addressee_id):
            self._notifier.publish(friendship_topic(user_id), {"user_id": user_id})

    def request(self, requester_id: str, addressee_id: str) -> Friendship:
        """Create a pending edge (or return the existing one for this pair)."""
        friendship = Friendship(requester_id=requester_id, addressee_id=addressee_id)
        key = _pair_key(requester_id, addressee_id)
        with self._lock:
            existing = self._edges.get(key)
            if existing is not None:
                return existing
            self._edges[key] = friendship
        self._notify(friendship)
        return friendship

    def respond(self, actor_id: str, other_id: str, *, accept: bool) -> Friendship:
        """Transition `pending -> accepted/rejected`; only the addressee may do this."""
        key = _pair_key(actor_id, other_id)
        with self._lock:
            existing = self._edges.get(key)
            if existing is None:
                raise FriendshipPermissionError(f"no friendship between {actor_id} and {other_id}")
            if existing.addressee_id != actor_id:
                raise FriendshipPermissionError("only the addressee may respond to a friend request")
            if existing.status != FriendshipStatus.pending:
                raise FriendshipPermissionError(f"friendship is already {existing.status.value}")
            updated = existing.model_copy(
                update={"status": FriendshipStatus.accepted if accept else FriendshipStatus.rejected}
            )
            self._edges[key] = updated
        logger.info("friendship %s <-> %s is now %s", updated.requester_id, updated.addressee_id, updated.status.value)
        self._notify(updated)
        return updated

    def remove(self, a: str, b: str) -> None:
        with self._lock:
            removed = self._edges.pop(_pair_key(a, b), None)
        if removed is not None:
            self._notify(removed)

    def get(self, a: str, b: str) -> Friendship | None:
        with self._lock:
            return self._edges.get(_pair_key(a, b))

    def status(self, a: str, b: str) -> FriendshipStatus | None:
        edge = self.get(a, b)
        return edge.status if edge else None

    def are_friends(self, a: str, b: str) -> bool:
        return self.status(a, b) == FriendshipStatus.accepted

    def accepted_friend_ids(self, user_id: str) -> list[str]:
        with self._lock:
            edges = list(self._edges.values())
        return sorted(
            e.other(user_id)
            for e in edges
            if e.status == FriendshipStatus.accepted and user_id in (e.requester_id, e.addressee_id)
        )


class ProfileDirectory:
    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles: dict[str, Profile] = {p.user_id: p for p in profiles}
        self._lock = threading.Lock()

    def put(self, profile: Profile) -> None:
        with self._lock:
            self._profiles[profile.user_id] = profile

    def get(self, user_id: str) -> Profile | None:
        with self._lock:
            return self._profiles.get(user_id)

    def get_many(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        with self._lock:
            return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}


class EventCatalog:
    def __init__(self, events: Iterable[Event] = ()):
        self._events: dict[str, Event] = {e.id: e for e in events}
        self._lock = threading.Lock()

    def put(self, event: Event) -> None:
        with self._lock:
            self._events[event.id] = event

    def list_events(self) -> list[Event]:
        with self._lock:
            return list(self._events.values())
