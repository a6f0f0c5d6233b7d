"""
Per-session feed invalidation.

A `FeedSubscription` watches every topic that can change a viewer's nearby-friends view
and re-runs the full query on each event instead of patching the previous result.
Recomputation is stateless and idempotent, so duplicate or out-of-order events only cost
an extra query. Events arriving after `close()` are discarded.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from proxisync.domain.models import ProximityResult
from proxisync.feed.proximity import ProximityFeed
from proxisync.notify.notifier import (
    ChangeNotifier,
    Subscription,
    friendship_topic,
    location_topic,
    presence_topic,
)
from proxisync.social.graph import SocialGraph

logger = logging.getLogger(__name__)

FeedCallback = Callable[[list[ProximityResult]], None]


class FeedSubscription:
    def __init__(
        self,
        viewer_id: str,
        *,
        notifier: ChangeNotifier,
        feed: ProximityFeed,
        graph: SocialGraph,
        on_update: FeedCallback,
    ):
        self._viewer_id = viewer_id
        self._notifier = notifier
        self._feed = feed
        self._graph = graph
        self._on_update = on_update
        self._subs: dict[str, Subscription] = {}
        self._lock = threading.RLock()
        self._closed = False
        self._issued = 0
        self._delivered = 0
        self._refresh_topics()

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    @property
    def closed(self) -> bool:
        return self._closed

    def topics(self) -> set[str]:
        with self._lock:
            return set(self._subs)

    def _wanted_topics(self) -> set[str]:
        topics = {location_topic(self._viewer_id), friendship_topic(self._viewer_id)}
        for friend_id in self._graph.accepted_friend_ids(self._viewer_id):
            topics.add(location_topic(friend_id))
            topics.add(presence_topic(friend_id))
        return topics

    def _refresh_topics(self) -> None:
        with self._lock:
            if self._closed:
                return
            wanted = self._wanted_topics()
            for topic in set(self._subs) - wanted:
                self._notifier.unsubscribe(self._subs.pop(topic))
            for topic in wanted - set(self._subs):
                self._subs[topic] = self._notifier.subscribe(topic, self._handle)

    def _handle(self, topic: str, payload: dict[str, Any]) -> None:
        if self._closed:
            logger.debug("discarding %s for closed feed of %s", topic, self._viewer_id)
            return
        if topic.startswith("friendship:"):
            self._refresh_topics()
        self.refresh()

    def refresh(self) -> list[ProximityResult] | None:
        """Recompute the view and hand it to the callback.

        Returns None once closed, or when a recompute that started later has already been
        delivered (handlers run concurrently, so results can finish out of order).
        """
        if self._closed:
            return None
        with self._lock:
            self._issued += 1
            seq = self._issued
        results = self._feed.nearby_friends(self._viewer_id)
        with self._lock:
            if self._closed or seq < self._delivered:
                return None
            self._delivered = seq
            self._on_update(results)
        return results

    def close(self) -> None:
        with self._lock:
            self._closed = True
            subs = list(self._subs.values())
            self._subs.clear()
        for sub in subs:
            self._notifier.unsubscribe(sub)
