"""
User profiles: the application-side record of who is an admin.

Why:
    Supabase Auth knows who a user is, not what they may do here. The
    `public.profiles` row (created on first sign-in with role `user`) carries
    the application role; admins are promoted by an operator, never by a
    claim the client controls.

Security:
    The DB directory reads and creates the caller's own row under RLS
    (`app.current_sub`); promoting a role needs the service DSN used by the
    seed CLI.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import threading
from typing import Dict, Optional, Tuple

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.curation.repo_db import resolve_dsn

from .stores import KNOWN_ROLES
from .tokens import JWKSCache, SupabaseAuthConfig, verify_access_token

PROFILE_ROLES = ("user", "admin")

_PROFILE_COLUMNS = "id, email, name, role"
_PROFILE_KEYS = ("id", "email", "name", "role")


def _check_role(role: str) -> str:
    if role not in PROFILE_ROLES:
        raise ValueError("invalid_role")
    return role


class InMemoryProfileDirectory:
    def __init__(self) -> None:
        self._rows: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def ensure_profile(self, sub: str, *, email: str = "", name: Optional[str] = None) -> dict:
        """Return the caller's profile, creating it with role `user` on first sight."""
        with self._lock:
            row = self._rows.get(sub)
            if row is None:
                row = {
                    "id": sub,
                    "email": email,
                    "name": name,
                    "role": "user",
                    "created_at": datetime.now(timezone.utc).isoformat(),
                }
                self._rows[sub] = row
            return dict(row)

    def set_role(self, sub: str, role: str, *, email: str = "", name: Optional[str] = None) -> dict:
        role = _check_role(role)
        with self._lock:
            row = self._rows.setdefault(sub, {"id": sub, "email": email, "name": name, "role": "user"})
            row["role"] = role
            return dict(row)


class DBProfileDirectory:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBProfileDirectory")
        self._dsn = dsn or resolve_dsn()

    def ensure_profile(self, sub: str, *, email: str = "", name: Optional[str] = None) -> dict:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (sub,))
                cur.execute(
                    "insert into public.profiles (id, email, name) values (%s, %s, %s) on conflict (id) do nothing",
                    (sub, email or "", name),
                )
                cur.execute(f"select {_PROFILE_COLUMNS} from public.profiles where id = %s", (sub,))
                row = cur.fetchone()
                conn.commit()
        if not row:
            raise PermissionError("profile_not_visible")
        return dict(zip(_PROFILE_KEYS, row))

    def set_role(self, sub: str, role: str, *, email: str = "", name: Optional[str] = None) -> dict:
        role = _check_role(role)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.profiles (id, email, name, role) values (%s, %s, %s, %s)
                    on conflict (id) do update set role = excluded.role, updated_at = now()
                    returning {_PROFILE_COLUMNS}
                    """,
                    (sub, email or "", name, role),
                )
                row = cur.fetchone()
                conn.commit()
        return dict(zip(_PROFILE_KEYS, row))


@dataclass(frozen=True)
class Identity:
    sub: str
    name: str
    roles: Tuple[str, ...]
    token_expires_at: int

    @property
    def primary_role(self) -> str:
        return "admin" if "admin" in self.roles else "user"


def _display_name(claims: dict) -> str:
    meta = claims.get("user_metadata")
    if isinstance(meta, dict):
        for key in ("name", "full_name"):
            value = meta.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    email = claims.get("email")
    if isinstance(email, str) and email:
        return email.split("@")[0]
    return "사용자"


def resolve_identity(
    token: str,
    *,
    cfg: SupabaseAuthConfig,
    directory,
    cache: JWKSCache | None = None,
) -> Identity:
    """Verify `token` and attach the application role from the caller's profile.

    Raises AccessTokenVerificationError for bad tokens; directory errors
    propagate unchanged.
    """
    claims = verify_access_token(token=token, cfg=cfg, cache=cache)
    sub = str(claims["sub"])
    email = claims.get("email") if isinstance(claims.get("email"), str) else ""
    name = _display_name(claims)
    profile = directory.ensure_profile(sub, email=email, name=name)
    role = profile.get("role")
    roles = (role,) if role in KNOWN_ROLES else ("user",)
    return Identity(sub=sub, name=profile.get("name") or name, roles=roles, token_expires_at=int(claims["exp"]))


__all__ = [
    "PROFILE_ROLES",
    "InMemoryProfileDirectory",
    "DBProfileDirectory",
    "Identity",
    "resolve_identity",
]
