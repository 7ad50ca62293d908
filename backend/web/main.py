"ganui backend"
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import os
import sys
import time

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from backend.identity_access.profiles import Identity, resolve_identity
from backend.identity_access.stores import SessionRecord, SessionStore
from backend.identity_access.tokens import AccessTokenVerificationError, SupabaseAuthConfig

from . import config as _cfg
from . import repo_wiring


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via GANUI_ENABLE_DOTENV (default true outside
      pytest).
    """
    # Under pytest, do not load .env – tests provide their own env.
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("GANUI_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("GANUI_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("ganui.web")
SETTINGS = AuthSettings()
SESSION_COOKIE_NAME = "ganui_session"
# Sessions are opened by exchanging a Supabase access token at /api/auth/session.
SESSION_STORE = SessionStore()

app = FastAPI(title="ganui", description="강의 큐레이션 플랫폼 API", version="0.1.0")

from .routes.admin import admin_router  # noqa: E402
from .routes.catalog import catalog_router  # noqa: E402
from .routes.study import study_router  # noqa: E402
from .routes.security import csrf_guard  # noqa: E402

# --- Auth Helpers & Middleware --------------------------------------------------

_NO_STORE = {"Cache-Control": "private, no-store"}


def _is_public_path(path: str) -> bool:
    return path.startswith("/api/catalog/") or path in ("/health", "/openapi.json", "/docs", "/api/auth/session")


def _set_session_cookie(response: Response, value: str, *, max_age: int) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=True,
        samesite="lax",
        path="/",
        max_age=max_age,
    )


def _bearer_token(request: Request) -> str | None:
    raw = request.headers.get("authorization") or ""
    scheme, _, token = raw.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _identity_from_token(token: str) -> Identity | None:
    """Verify a bearer token off the event loop; None when it is not acceptable.

    Profile lookup failures propagate so callers can answer 503 instead of 401.
    """
    cfg = SupabaseAuthConfig.from_env()
    if cfg is None:
        return None
    try:
        return await asyncio.to_thread(
            resolve_identity, token, cfg=cfg, directory=repo_wiring.get_profile_directory()
        )
    except AccessTokenVerificationError as exc:
        logger.info("Access token rejected: %s", exc.code)
        return None


def _user_context(principal: SessionRecord | Identity) -> dict:
    return {
        "sub": principal.sub,
        "name": principal.name,
        "role": principal.primary_role,
        "roles": list(principal.roles),
    }


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path) or not path.startswith("/api/"):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec: SessionRecord | None = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)
    if rec:
        # Expose minimal, read-only user context for downstream handlers.
        request.state.user = _user_context(rec)
        return await call_next(request)

    token = _bearer_token(request)
    identity = None
    if token:
        try:
            identity = await _identity_from_token(token)
        except Exception as exc:
            logger.warning("Profile lookup failed: %s", exc.__class__.__name__)
            return JSONResponse({"error": "service_unavailable"}, status_code=503, headers=_NO_STORE)
    if not identity:
        headers = {**_NO_STORE, "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    request.state.user = _user_context(identity)
    return await call_next(request)


# --- Session exchange ----------------------------------------------------------


@app.post("/api/auth/session")
async def open_session(request: Request):
    """
    Exchange a Supabase access token for an httpOnly `ganui_session` cookie.

    Behavior:
        - 200 with `{sub, name, roles, expires_at}` and Set-Cookie.
        - 401 when the Authorization bearer token is missing or invalid.
        - 503 when the profile (application role) cannot be read.
    Security:
        Same-origin CSRF guard (strict in prod). The role comes from the
        caller's profile row, never from the token.
    """
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_AUTH")
    if csrf:
        return csrf
    token = _bearer_token(request)
    if not token:
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=_NO_STORE)
    try:
        identity = await _identity_from_token(token)
    except Exception as exc:
        logger.warning("Profile lookup failed: %s", exc.__class__.__name__)
        return JSONResponse({"error": "service_unavailable"}, status_code=503, headers=_NO_STORE)
    if not identity:
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=_NO_STORE)

    old_sid = request.cookies.get(SESSION_COOKIE_NAME)
    if old_sid:
        SESSION_STORE.delete(old_sid)
    # the session never outlives the access token it was opened with
    ttl = max(1, min(_cfg.get_session_ttl_seconds(), identity.token_expires_at - int(time.time())))
    sess = SESSION_STORE.create(sub=identity.sub, name=identity.name, roles=list(identity.roles), ttl_seconds=ttl)
    resp = JSONResponse(_session_view(sess), headers=_NO_STORE)
    _set_session_cookie(resp, sess.session_id, max_age=ttl)
    return resp


@app.delete("/api/auth/session")
async def close_session(request: Request):
    """Drop the server-side session (if any) and expire the cookie; always 200."""
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if sid:
        try:
            SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)
    resp = JSONResponse({"logged_out": True}, headers=_NO_STORE)
    _set_session_cookie(resp, "", max_age=0)
    return resp


def _session_view(rec: SessionRecord) -> dict:
    exp_iso = datetime.fromtimestamp(rec.expires_at, tz=timezone.utc).isoformat(timespec="seconds")
    return {"sub": rec.sub, "name": rec.name, "roles": list(rec.roles), "expires_at": exp_iso}


@app.get("/api/me")
async def get_me(request: Request):
    user = getattr(request.state, "user", None) or {}
    return JSONResponse(
        {"sub": user.get("sub"), "name": user.get("name"), "roles": user.get("roles") or []},
        headers=_NO_STORE,
    )


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # Player embeds and thumbnails come from YouTube; everything else is same-origin.
    csp = (
        "default-src 'self'; script-src 'self'; style-src 'self'; "
        "img-src 'self' data: https://img.youtube.com https://i.ytimg.com; "
        "frame-src https://www.youtube.com https://www.youtube-nocookie.com; "
        "font-src 'self' data:; connect-src 'self';"
    )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(admin_router)
app.include_router(catalog_router)
app.include_router(study_router)


@app.get("/health")
async def health_check():
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
