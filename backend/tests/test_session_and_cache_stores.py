"""Small stores: auth sessions and the catalog read cache."""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

from backend.catalog.cache import AFFECTED_AGGREGATES, CatalogCache
from backend.identity_access.stores import SessionStore
from backend.web import main

pytestmark = pytest.mark.anyio("asyncio")


def test_session_store_drops_expired_records():
    store = SessionStore()
    live = store.create(sub="u1", name="학습자", roles=["user"])
    expired = store.create(sub="u2", ttl_seconds=-10)
    assert store.get(live.session_id) is live
    assert store.get(expired.session_id) is None
    store.delete(live.session_id)
    assert store.get(live.session_id) is None


def test_session_roles_are_normalized_and_unknown_roles_dropped():
    store = SessionStore()
    rec = store.create(sub="u1", roles=[" Admin", "admin", "moderator", 7, "USER"])
    assert rec.roles == ("admin", "user")
    assert rec.primary_role == "admin"
    assert store.create(sub="u2").primary_role == "user"
    assert rec.is_expired(now=rec.expires_at + 1) is True
    assert rec.is_expired(now=rec.expires_at) is False


@pytest.mark.anyio
async def test_mixed_case_admin_role_reaches_admin_api():
    rec = main.SESSION_STORE.create(sub="admin-case", roles=["ADMIN"])
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        client.cookies.set(main.SESSION_COOKIE_NAME, rec.session_id)
        resp = await client.get("/api/admin/lectures")
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_expired_session_cookie_is_unauthenticated():
    expired = main.SESSION_STORE.create(sub="u2", roles=["admin"], ttl_seconds=-1)
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        client.cookies.set(main.SESSION_COOKIE_NAME, expired.session_id)
        resp = await client.get("/api/admin/lectures")
    assert resp.status_code == 401


def test_cache_loads_once_until_invalidated():
    cache = CatalogCache()
    calls = []

    def loader():
        calls.append(1)
        return len(calls)

    assert cache.get_or_load("curriculums", "all", loader) == 1
    assert cache.get_or_load("curriculums", "all", loader) == 1
    assert cache.get_or_load("lectures", "l1", loader) == 2
    assert cache.invalidate(AFFECTED_AGGREGATES["curriculum"]) == 1
    assert cache.get_or_load("curriculums", "all", loader) == 3
    assert cache.get_or_load("lectures", "l1", loader) == 2
    assert cache.invalidate(AFFECTED_AGGREGATES["lecture"]) == 2
    assert len(cache) == 0


def test_cache_ttl_expires_entries(monkeypatch: pytest.MonkeyPatch):
    import types

    from backend.catalog import cache as cache_mod

    now = [100.0]
    monkeypatch.setattr(cache_mod, "time", types.SimpleNamespace(monotonic=lambda: now[0]))
    cache = CatalogCache(ttl_seconds=5)
    assert cache.get_or_load("videos", None, lambda: "a") == "a"
    now[0] = 104.0
    assert cache.get_or_load("videos", None, lambda: "b") == "a"
    now[0] = 105.0
    assert cache.get_or_load("videos", None, lambda: "c") == "c"


def test_loader_errors_are_not_cached():
    cache = CatalogCache()

    def boom():
        raise LookupError("lecture_not_found")

    with pytest.raises(LookupError):
        cache.get_or_load("lectures", "x", boom)
    assert len(cache) == 0


def test_invalidation_during_a_load_is_not_overwritten_by_its_result():
    cache = CatalogCache()
    versions = iter(["stale", "fresh"])

    def loader_racing_an_admin_save():
        value = next(versions)
        if value == "stale":
            cache.invalidate(AFFECTED_AGGREGATES["lecture"])
        return value

    assert cache.get_or_load("lectures", "l1", loader_racing_an_admin_save) == "stale"
    assert len(cache) == 0
    assert cache.get_or_load("lectures", "l1", loader_racing_an_admin_save) == "fresh"
    assert cache.get_or_load("lectures", "l1", lambda: "unused") == "fresh"


def test_invalidating_another_aggregate_mid_load_still_caches():
    cache = CatalogCache()

    def loader():
        cache.invalidate(["categories"])
        return "videos-page"

    assert cache.get_or_load("videos", None, loader) == "videos-page"
    assert len(cache) == 1
