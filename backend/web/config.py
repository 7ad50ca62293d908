"""
Configuration and startup security checks for ganui.

Why: The admin back-office writes curated content through the shared data
store. A production deployment with a placeholder key or an unencrypted
database link must not come up silently. This module provides a single guard
that enforces minimal production safety constraints without burdening local
development, plus small readers for tunables shared by the web adapters.

Permissions: The caller needs no special privileges. The functions simply read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os


EDIT_SESSION_TTL_DEFAULT = 3600
SESSION_TTL_DEFAULT = 3600


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


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


def get_edit_session_ttl_seconds() -> int:
    """Lifetime of an admin edit session (default one hour, max one day)."""
    return _parse_int_env("EDIT_SESSION_TTL_SECONDS", EDIT_SESSION_TTL_DEFAULT, contract_max=86400)


def get_session_ttl_seconds() -> int:
    """Lifetime of a cookie session opened from an access token (default one hour, max one day)."""
    return _parse_int_env("SESSION_TTL_SECONDS", SESSION_TTL_DEFAULT, contract_max=86400)


def get_catalog_cache_ttl_seconds() -> int | None:
    """Optional TTL for catalog read views; unset means invalidate-on-save only."""
    value = _parse_int_env("CATALOG_CACHE_TTL_SECONDS", 0)
    return value or None


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Supabase Service Role key must be set and not a known dummy placeholder.
    - Database DSNs must not explicitly disable TLS in prod-like envs.
    - DSN user must not be the application role `ganui_limited` (the role is
      NOLOGIN; use an env-specific login that is IN ROLE ganui_limited).
    - SUPABASE_URL must use https.
    """

    env = os.getenv("GANUI_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Supabase Service Role key
    srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    def _parse_user(dsn_value: str) -> str | None:
        try:
            if "://" in dsn_value:
                from urllib.parse import urlparse

                parsed = urlparse(dsn_value)
                return parsed.username
            # Keyword form: host=... user=... dbname=...
            import re

            m = re.search(r"\buser\s*=\s*([^\s]+)", dsn_value)
            return m.group(1) if m else None
        except Exception:
            return None

    for key in ("GANUI_DATABASE_URL", "DATABASE_URL", "SUPABASE_DB_URL"):
        val = os.getenv(key, "")
        if not val:
            continue
        # 2) Postgres TLS: basic guard to avoid explicit disable
        if "sslmode=disable" in val:
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )
        # 3) DSN user must not be the app role in prod-like envs
        user = (_parse_user(val) or "").lower()
        if user == "ganui_limited":
            raise SystemExit(
                f"Refusing to start: {key} authenticates as 'ganui_limited' in production. "
                "Create an environment-specific login role that is IN ROLE ganui_limited and use that instead."
            )

    # 4) Supabase endpoint must use HTTPS in production-like environments
    supabase_url = (os.getenv("SUPABASE_URL") or "").strip().lower()
    if supabase_url.startswith("http://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production (got http).")
