"""
Server-side session store.

Why: The browser only carries an opaque id in the `ganui_session` cookie. The
subject, display name and roles handed over by the auth provider stay here,
so a client can never elevate itself to `admin` by editing a cookie.

Security: Records expire after `ttl_seconds` and are dropped on read. Roles
are lower-cased once at creation; everything downstream compares exact names.

Concurrency: Route handlers run saves in worker threads, so access is guarded
by a lock.
"""
from __future__ import annotations

from dataclasses import dataclass
import secrets
import threading
import time
from typing import Dict, Iterable, Optional


KNOWN_ROLES = ("admin", "user")


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    sub: str
    name: str
    roles: tuple[str, ...]
    expires_at: int

    def is_expired(self, now: Optional[int] = None) -> bool:
        return self.expires_at < (now if now is not None else _now())

    @property
    def primary_role(self) -> str:
        """Role shown in the UI: `admin` wins, everyone else is a `user`."""
        return "admin" if "admin" in self.roles else "user"


def _normalize_roles(roles: Optional[Iterable[str]]) -> tuple[str, ...]:
    out: list[str] = []
    for role in roles or ():
        if not isinstance(role, str):
            continue
        name = role.strip().lower()
        if name in KNOWN_ROLES and name not in out:
            out.append(name)
    return tuple(out)


class SessionStore:
    def __init__(self) -> None:
        self._data: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        *,
        sub: str,
        name: str = "",
        roles: Optional[Iterable[str]] = None,
        ttl_seconds: int = 3600,
    ) -> SessionRecord:
        rec = SessionRecord(
            session_id=secrets.token_urlsafe(24),
            sub=sub,
            name=name,
            roles=_normalize_roles(roles),
            expires_at=_now() + ttl_seconds,
        )
        with self._lock:
            self._data[rec.session_id] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            rec = self._data.get(session_id)
            if rec and rec.is_expired():
                self._data.pop(session_id, None)
                return None
            return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)


__all__ = ["KNOWN_ROLES", "SessionRecord", "SessionStore"]
