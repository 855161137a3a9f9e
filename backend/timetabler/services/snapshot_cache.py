from __future__ import annotations

import logging
import time
from threading import Lock

from timetabler.services.scheduling_types import SchedulingSnapshot

logger = logging.getLogger(__name__)

CacheKey = tuple[int, tuple[int, ...] | None]


class SnapshotCache:
    """Short-lived memo of scheduling snapshots, keyed by school and class scope.

    Writers must call ``invalidate`` for the school after committing a new
    schedule; the repository does this in ``replace_schedule``.
    """

    def __init__(self, *, ttl_seconds: float = 30.0) -> None:
        self._ttl = ttl_seconds
        self._items: dict[CacheKey, tuple[float, SchedulingSnapshot]] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, school_id: int, class_ids: tuple[int, ...] | None) -> SchedulingSnapshot | None:
        if not self.enabled:
            return None
        key = (school_id, class_ids)
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            stored_at, snapshot = item
            if time.monotonic() - stored_at > self._ttl:
                del self._items[key]
                return None
            return snapshot

    def put(self, snapshot: SchedulingSnapshot, class_ids: tuple[int, ...] | None) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._items[(snapshot.school_id, class_ids)] = (time.monotonic(), snapshot)

    def invalidate(self, school_id: int) -> None:
        with self._lock:
            stale = [key for key in self._items if key[0] == school_id]
            for key in stale:
                del self._items[key]
        if stale:
            logger.debug("Invalidated %d cached snapshot(s) for school %s", len(stale), school_id)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
