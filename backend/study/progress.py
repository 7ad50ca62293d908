"""Throttle for persisting player progress."""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Hashable, Optional


class ProgressThrottle:
    """Admit at most one save per key within `interval_seconds`.

    The admit time is recorded before the write happens, so a slow or failing
    write does not cause a burst of retries from the player's timer.

    Keys whose window has closed carry no state worth keeping (the next call
    would be admitted anyway), so `admit` drops them at most once per interval.
    """

    def __init__(self, interval_seconds: float, clock: Optional[Callable[[], float]] = None) -> None:
        self.interval_seconds = float(interval_seconds)
        self._clock = clock or time.monotonic
        self._last: Dict[Hashable, float] = {}
        self._pruned_at: Optional[float] = None
        self._lock = threading.Lock()

    def admit(self, key: Hashable) -> bool:
        now = self._clock()
        with self._lock:
            self._prune_locked(now)
            last = self._last.get(key)
            if last is not None and now - last < self.interval_seconds:
                return False
            self._last[key] = now
            return True

    def mark(self, key: Hashable) -> None:
        with self._lock:
            self._last[key] = self._clock()

    def reset(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._last.clear()
            else:
                self._last.pop(key, None)

    def _prune_locked(self, now: float) -> None:
        if self._pruned_at is not None and now - self._pruned_at < self.interval_seconds:
            return
        self._pruned_at = now
        stale = [k for k, t in self._last.items() if now - t >= self.interval_seconds]
        for k in stale:
            del self._last[k]

    def __len__(self) -> int:
        return len(self._last)


__all__ = ["ProgressThrottle"]
