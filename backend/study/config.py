"""
Configuration for per-user study features (notes, favorites, watch history).

Behavior:
    - WATCH_PROGRESS_THROTTLE_SECONDS controls how often a player may persist
      progress for the same video (default 10 seconds, clamped to 1..300).
    - Completion and list sizes are product constants, not deploy settings.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os


WATCH_COMPLETION_RATIO = 0.9
CONTINUE_WATCHING_LIMIT = 5
NOTE_CONTENT_MAX_LENGTH = 10000
WATCH_PROGRESS_THROTTLE_DEFAULT = 10


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_watch_progress_throttle_seconds() -> int:
    return _parse_int_env("WATCH_PROGRESS_THROTTLE_SECONDS", WATCH_PROGRESS_THROTTLE_DEFAULT, contract_max=300)


__all__ = [
    "WATCH_COMPLETION_RATIO",
    "CONTINUE_WATCHING_LIMIT",
    "NOTE_CONTENT_MAX_LENGTH",
    "WATCH_PROGRESS_THROTTLE_DEFAULT",
    "get_watch_progress_throttle_seconds",
]
