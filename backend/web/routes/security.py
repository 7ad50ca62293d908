"""
Shared web security helpers for the admin, catalog and study adapters.

Contains the CSRF same-origin check, the role gate and the private JSON
response helpers. Keeping a single implementation avoids security drift
between routers.
"""
from __future__ import annotations

import os
from typing import Any, Tuple
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> Tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _parse_server(request: Request) -> Tuple[str, str, int]:
    """Resolve the server origin; X-Forwarded-* only when GANUI_TRUST_PROXY=true."""
    trust_proxy = (os.getenv("GANUI_TRUST_PROXY", "false") or "").lower() == "true"
    if not trust_proxy:
        scheme = (request.url.scheme or "http").lower()
        host = (request.url.hostname or "").lower()
        port = int(request.url.port) if request.url.port else _default_port(scheme)
        return scheme, host, port

    xf_proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "").split(",")[0].strip()
    xf_host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
    scheme = (xf_proto or request.url.scheme or "http").lower()
    if ":" in xf_host:
        host_only, port_str = xf_host.rsplit(":", 1)
        try:
            port = int(port_str)
        except ValueError:
            port = _default_port(scheme)
        host = host_only.lower()
    else:
        host = (xf_host or (request.url.hostname or "")).lower()
        port = int(request.url.port) if request.url.port else _default_port(scheme)
    xf_port_raw = request.headers.get("x-forwarded-port") or ""
    if xf_port_raw:
        try:
            port = int(xf_port_raw.split(",")[0].strip())
        except ValueError:
            port = _default_port(scheme)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def private_json(payload: Any, *, status_code: int = 200, vary_origin: bool = False) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers."""
    headers = {"Cache-Control": "private, no-store"}
    if vary_origin:
        headers["Vary"] = "Origin"
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


def private_error(error: str, *, status_code: int, detail: str | None = None) -> JSONResponse:
    payload = {"error": error}
    if detail is not None:
        payload["detail"] = detail
    return private_json(payload, status_code=status_code)


def csrf_guard(request: Request, *, strict_env_var: str) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    Behavior:
        - In production or when `strict_env_var` is "true", require that either
          Origin or Referer is present AND same-origin.
        - Otherwise fall back to `_is_same_origin`, which permits requests
          without these headers (server-to-server calls).
        - Violations return 403 with detail=csrf_violation.
    """
    prod_env = (os.getenv("GANUI_ENV", "dev") or "").lower() == "prod"
    strict = prod_env or (os.getenv(strict_env_var, "false") or "").lower() == "true"
    if strict and not (request.headers.get("origin") or request.headers.get("referer")):
        return private_error("forbidden", status_code=403, detail="csrf_violation")
    if not _is_same_origin(request):
        return private_error("forbidden", status_code=403, detail="csrf_violation")
    return None


def current_user(request: Request) -> dict | None:
    return getattr(request.state, "user", None)


def current_sub(request: Request) -> str:
    user = current_user(request) or {}
    sub = user.get("sub")
    return str(sub) if sub else ""


def role_in(user: dict | None, role: str) -> bool:
    if not user:
        return False
    roles = user.get("roles") or []
    if not isinstance(roles, list):
        return False
    return role in roles
