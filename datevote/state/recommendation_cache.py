"""In-memory cache of computed recommendations with TTL and LRU eviction."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Optional, Tuple

from datevote.models.events import Recommendation


class RecommendationCache:
    """Recommendations keyed by event id and pinned to the event version.

    An entry is only served while the stored version matches the caller's
    version, so any roster mutation (which bumps the version) invalidates it.
    The planner also evicts explicitly after each write.
    """

    def __init__(self, maxsize: int = 128, ttl: int = 60 * 60) -> None:
        self.maxsize = maxsize
        self.ttl = ttl
        self._data: "OrderedDict[str, Tuple[int, Recommendation, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def _evict_expired(self) -> None:
        now = time.time()
        expired = [eid for eid, (_, _, ts) in self._data.items() if now - ts > self.ttl]
        for eid in expired:
            self._data.pop(eid, None)

    def get(self, event_id: str, version: int) -> Optional[Recommendation]:
        """Return the recommendation for ``event_id`` at ``version`` if fresh."""

        with self._lock:
            self._evict_expired()
            item = self._data.get(event_id)
            if not item:
                return None
            cached_version, rec, _ = item
            if cached_version != version:
                self._data.pop(event_id, None)
                return None
            # mark as recently used
            self._data.move_to_end(event_id)
            return rec

    def set(self, event_id: str, version: int, rec: Recommendation) -> None:
        with self._lock:
            self._evict_expired()
            if event_id in self._data:
                self._data.move_to_end(event_id)
            self._data[event_id] = (version, rec, time.time())
            # LRU eviction
            if len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def evict(self, event_id: str) -> None:
        with self._lock:
            self._data.pop(event_id, None)
