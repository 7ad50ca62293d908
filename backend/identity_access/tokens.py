"""
Access token verification for Supabase Auth.

Why: The browser signs in against Supabase Auth and hands its access token to
this backend, either once to open a cookie session or per request as a bearer
token. Verification stays outside the web adapter so it can be unit tested
without HTTP.

Security: HS256 tokens are checked against the project's JWT secret; RS256 and
ES256 tokens against the project's JWKS. Issuer, audience and expiry are
enforced, any other algorithm (including `none`) is rejected.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
import time
from typing import Dict, Optional

import requests
from jose import jwt
from jose.exceptions import JOSEError


class AccessTokenVerificationError(Exception):
    """Raised when an access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class SupabaseAuthConfig:
    url: str
    jwt_secret: Optional[str] = None
    audience: str = "authenticated"

    @property
    def issuer(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"

    @classmethod
    def from_env(cls) -> Optional["SupabaseAuthConfig"]:
        """Build from SUPABASE_URL / SUPABASE_JWT_SECRET; None when no project is configured."""
        url = (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")
        if not url:
            return None
        secret = (os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None
        audience = (os.getenv("SUPABASE_JWT_AUDIENCE") or "").strip() or "authenticated"
        return cls(url=url, jwt_secret=secret, audience=audience)


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Small in-memory cache for the project's JWKS document."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, cfg: SupabaseAuthConfig) -> Dict[str, object]:
        now = time.time()
        entry = self._entries.get(cfg.jwks_url)
        if entry and entry.expires_at > now:
            return entry.jwks

        jwks = self._fetch(cfg)
        self._entries[cfg.jwks_url] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, cfg: SupabaseAuthConfig) -> Dict[str, object]:
        try:
            resp = requests.get(cfg.jwks_url, timeout=5)
        except requests.RequestException as exc:
            raise AccessTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise AccessTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise AccessTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise AccessTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()

MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
_ASYMMETRIC_ALGS = ("RS256", "ES256")


def verify_access_token(
    *,
    token: str,
    cfg: SupabaseAuthConfig,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a Supabase access token and return its claims.

    Raises
    ------
    AccessTokenVerificationError:
        When the token is malformed, signed with an unexpected algorithm or
        key, or fails issuer/audience/expiry checks, or carries no subject.
    """
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_token") from exc
    alg = header.get("alg")
    if alg == "HS256":
        if not cfg.jwt_secret:
            raise AccessTokenVerificationError("unsupported_alg")
        key: object = cfg.jwt_secret
    elif alg in _ASYMMETRIC_ALGS:
        kid = header.get("kid")
        if not kid:
            raise AccessTokenVerificationError("missing_kid")
        key_dict = _find_key((cache or JWKS_CACHE).get(cfg), kid)
        if not key_dict:
            raise AccessTokenVerificationError("unknown_kid")
        key = key_dict
    else:
        raise AccessTokenVerificationError("unsupported_alg")

    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience=cfg.audience,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AccessTokenVerificationError("missing_sub")
    return claims


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AccessTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_token")


__all__ = [
    "AccessTokenVerificationError",
    "SupabaseAuthConfig",
    "JWKSCache",
    "JWKS_CACHE",
    "MAX_CLOCK_SKEW_SECONDS",
    "verify_access_token",
]
