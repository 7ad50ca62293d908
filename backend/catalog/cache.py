"""
Read-view cache for public catalog queries.

Entries are keyed by (aggregate, options). Admin saves call `invalidate` with
the aggregate names they touched; nothing expires on its own except through
the optional TTL.

Loaders run outside the lock. Each aggregate carries a generation that
`invalidate` bumps, and a load only stores its value if the generation it
started under is still current; an invalidation that lands mid-load therefore
wins over the (possibly stale) loaded value.
"""
from __future__ import annotations

from collections import defaultdict
import threading
import time
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple


class CatalogCache:
    def __init__(self, ttl_seconds: Optional[float] = None) -> None:
        self._ttl = ttl_seconds
        self._data: Dict[Tuple[str, Hashable], Tuple[float, Any]] = {}
        self._generations: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def get_or_load(self, aggregate: str, options: Hashable, loader: Callable[[], Any]) -> Any:
        key = (aggregate, options)
        now = time.monotonic()
        with self._lock:
            hit = self._data.get(key)
            if hit and (self._ttl is None or now - hit[0] < self._ttl):
                return hit[1]
            generation = self._generations[aggregate]
        value = loader()
        with self._lock:
            if self._generations[aggregate] == generation:
                self._data[key] = (now, value)
        return value

    def invalidate(self, aggregates: Iterable[str]) -> int:
        names = set(aggregates)
        with self._lock:
            for name in names:
                self._generations[name] += 1
            stale = [k for k in self._data if k[0] in names]
            for k in stale:
                del self._data[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            for name in list(self._generations):
                self._generations[name] += 1
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


# Which read views depend on each kind of admin write. A lecture edit changes
# curriculum aggregates too (video counts, durations, thumbnails); category
# names are embedded in every video snapshot.
AFFECTED_AGGREGATES = {
    "lecture": ("lectures", "curriculums"),
    "curriculum": ("curriculums",),
    "category": ("categories", "videos", "lectures", "curriculums"),
}


__all__ = ["CatalogCache", "AFFECTED_AGGREGATES"]
