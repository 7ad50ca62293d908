"""
Admin API: lecture/curriculum edit sessions

Covers the full admin flow against the in-memory repos: create a parent, open
an edit session, pick candidates, reorder, remove and save. Also checks the
role/owner guards, CSRF in prod, in-flight save conflicts and that a save
refreshes the public catalog.
"""
from __future__ import annotations

import threading

import httpx
import pytest
from httpx import ASGITransport

from backend.web import main, repo_wiring
from backend.web.routes import admin

pytestmark = pytest.mark.anyio("asyncio")


async def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _login(client: httpx.AsyncClient, *, sub: str = "admin-1", roles: list[str] | None = None) -> None:
    sess = main.SESSION_STORE.create(sub=sub, name="관리자", roles=roles if roles is not None else ["admin"])
    client.cookies.set(main.SESSION_COOKIE_NAME, sess.session_id)


def _seed_videos(*titles: str) -> list[str]:
    repo = repo_wiring.get_curation_repo()
    return [repo.add_video(title=t, youtube_id=f"yt-{i}", duration=60 * (i + 1))["id"] for i, t in enumerate(titles)]


async def _create_lecture(client: httpx.AsyncClient, title: str = "파이썬 입문", **extra) -> dict:
    payload = {"title": title, "difficulty": "beginner", "is_published": True, "is_featured": False, **extra}
    resp = await client.post("/api/admin/lectures", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _open(client: httpx.AsyncClient, segment: str, parent_id: str) -> dict:
    resp = await client.post(f"/api/admin/{segment}/{parent_id}/edit-sessions")
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.anyio
async def test_admin_routes_require_session_and_admin_role():
    async with (await _client()) as client:
        resp = await client.get("/api/admin/lectures")
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthenticated"}
        assert resp.headers.get("Cache-Control") == "private, no-store"

    async with (await _client()) as client:
        _login(client, sub="learner-1", roles=["user"])
        resp = await client.post("/api/admin/lectures", json={"title": "x"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"


@pytest.mark.anyio
async def test_create_parent_validates_fields():
    async with (await _client()) as client:
        _login(client)
        bad = await client.post("/api/admin/lectures", json={"title": "   ", "difficulty": "beginner"})
        assert bad.status_code == 400
        assert bad.json() == {"error": "bad_request", "detail": "invalid_title"}

        missing = await client.post("/api/admin/lectures", json={"title": "강의"})
        assert missing.status_code == 400
        assert missing.json()["detail"] == "missing_difficulty"

        wrong_kind_field = await client.post(
            "/api/admin/lectures",
            json={"title": "강의", "difficulty": "beginner", "is_published": True, "is_featured": False, "learning_goals": "x"},
        )
        assert wrong_kind_field.json()["detail"] == "invalid_field"

        flag = await client.post(
            "/api/admin/curriculums",
            json={"title": "로드맵", "difficulty": "advanced", "is_published": "yes", "is_featured": False},
        )
        assert flag.status_code == 400
        assert flag.json()["detail"] == "invalid_is_published"

        unknown = await client.post("/api/admin/videos", json={"title": "x"})
        assert unknown.status_code == 404

        created = await client.post(
            "/api/admin/curriculums",
            json={
                "title": " 백엔드 로드맵 ",
                "learning_goals": "API 설계",
                "difficulty": "advanced",
                "is_published": False,
                "is_featured": True,
            },
        )
        assert created.status_code == 201
        body = created.json()
        assert body["title"] == "백엔드 로드맵"
        assert body["learning_goals"] == "API 설계"

        listed = await client.get("/api/admin/curriculums")
        assert [c["id"] for c in listed.json()] == [body["id"]]


@pytest.mark.anyio
async def test_full_edit_flow_persists_dense_order():
    v1, v2, v3 = _seed_videos("변수", "조건문", "반복문")
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        session = await _open(client, "lectures", lecture["id"])
        sid = session["session_id"]
        assert session["kind"] == "lecture"
        assert session["items"] == []
        assert session["saving"] is False

        candidates = await client.get(f"/api/admin/edit-sessions/{sid}/candidates")
        assert {c["id"] for c in candidates.json()} == {v1, v2, v3}

        added = await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1, v2, v3]})
        assert added.status_code == 200
        items = added.json()["items"]
        assert [i["child_id"] for i in items] == [v1, v2, v3]
        assert all(i["pending"] and i["id"] is None for i in items)
        assert items[0]["child"]["title"] == "변수"

        after_add = await client.get(f"/api/admin/edit-sessions/{sid}/candidates")
        assert after_add.json() == []

        moved = await client.post(
            f"/api/admin/edit-sessions/{sid}/move", json={"from_index": 2, "to_index": 0, "position": "above"}
        )
        assert [i["child_id"] for i in moved.json()["items"]] == [v3, v1, v2]

        removed = await client.delete(f"/api/admin/edit-sessions/{sid}/items/{items[1]['key']}")
        assert [i["child_id"] for i in removed.json()["items"]] == [v3, v1]

        saved = await client.post(f"/api/admin/edit-sessions/{sid}/save", json={"title": "파이썬 기초"})
        assert saved.status_code == 200, saved.text
        body = saved.json()
        assert body["parent"]["title"] == "파이썬 기초"
        assert body["plan"]["delete"] == []
        assert body["plan"]["insert"] == [{"child_id": v3, "order": 0}, {"child_id": v1, "order": 1}]
        assert [(i["child_id"], i["order"], i["pending"]) for i in body["items"]] == [(v3, 0, False), (v1, 1, False)]
        assert all(i["id"] for i in body["items"])

        # reopen: persisted order matches the working copy
        reopened = await _open(client, "lectures", lecture["id"])
        assert [(i["child_id"], i["order"]) for i in reopened["items"]] == [(v3, 0), (v1, 1)]

        # second save without edits does not insert again
        again = await client.post(f"/api/admin/edit-sessions/{sid}/save")
        assert again.status_code == 200
        assert again.json()["plan"]["insert"] == []
        repo = repo_wiring.get_curation_repo()
        assert len(repo.list_members("lecture", lecture["id"])) == 2


@pytest.mark.anyio
async def test_remove_persisted_item_deletes_member_on_save():
    v1, v2 = _seed_videos("하나", "둘")
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]
        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1, v2]})
        first = (await client.post(f"/api/admin/edit-sessions/{sid}/save")).json()
        keep, drop = first["items"]

        await client.delete(f"/api/admin/edit-sessions/{sid}/items/{drop['id']}")
        second = await client.post(f"/api/admin/edit-sessions/{sid}/save")

        assert second.json()["plan"]["delete"] == [drop["id"]]
        rows = repo_wiring.get_curation_repo().list_members("lecture", lecture["id"])
        assert [(r["id"], r["order"]) for r in rows] == [(keep["id"], 0)]


@pytest.mark.anyio
async def test_item_and_move_validation():
    (v1,) = _seed_videos("하나")
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]

        for payload, detail in (
            ({"child_ids": []}, "invalid_child_ids"),
            ({"child_ids": "abc"}, "invalid_child_ids"),
            ({"child_ids": [v1, v1]}, "duplicate_child_ids"),
            ({"child_ids": ["missing"]}, "unknown_candidate"),
        ):
            resp = await client.post(f"/api/admin/edit-sessions/{sid}/items", json=payload)
            assert resp.status_code == 400
            assert resp.json()["detail"] == detail

        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1]})
        dup = await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1]})
        assert dup.status_code == 400
        assert dup.json()["detail"] == "unknown_candidate"

        for payload, detail in (
            ({"from_index": "0", "to_index": 0, "position": "above"}, "invalid_index"),
            ({"from_index": True, "to_index": 0, "position": "above"}, "invalid_index"),
            ({"from_index": 0, "to_index": 5, "position": "above"}, "invalid_index"),
            ({"from_index": 0, "to_index": 0, "position": "inside"}, "invalid_position"),
        ):
            resp = await client.post(f"/api/admin/edit-sessions/{sid}/move", json=payload)
            assert resp.status_code == 400
            assert resp.json()["detail"] == detail

        noop = await client.post(
            f"/api/admin/edit-sessions/{sid}/move", json={"from_index": 0, "to_index": 0, "position": "below"}
        )
        assert noop.status_code == 200

        missing = await client.delete(f"/api/admin/edit-sessions/{sid}/items/pending-9-9")
        assert missing.status_code == 404

        bad_save = await client.post(f"/api/admin/edit-sessions/{sid}/save", json={"difficulty": "expert"})
        assert bad_save.status_code == 400
        assert bad_save.json()["detail"] == "invalid_difficulty"
        assert repo_wiring.get_curation_repo().list_members("lecture", lecture["id"]) == []


@pytest.mark.anyio
async def test_open_session_for_missing_parent_is_404_with_message():
    async with (await _client()) as client:
        _login(client)
        resp = await client.post("/api/admin/curriculums/does-not-exist/edit-sessions")
        assert resp.status_code == 404
        assert resp.json() == {"error": "not_found", "detail": "커리큘럼을 찾을 수 없습니다"}


@pytest.mark.anyio
async def test_sessions_are_owner_scoped_and_discard_writes_nothing():
    (v1,) = _seed_videos("하나")
    async with (await _client()) as client:
        _login(client, sub="admin-1")
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]
        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1]})

    async with (await _client()) as other:
        _login(other, sub="admin-2")
        assert (await other.get(f"/api/admin/edit-sessions/{sid}")).status_code == 404
        assert (await other.post(f"/api/admin/edit-sessions/{sid}/save")).status_code == 404
        assert (await other.delete(f"/api/admin/edit-sessions/{sid}")).status_code == 404

    async with (await _client()) as client:
        _login(client, sub="admin-1")
        resp = await client.delete(f"/api/admin/edit-sessions/{sid}")
        assert resp.json() == {"discarded": True}
        assert (await client.get(f"/api/admin/edit-sessions/{sid}")).status_code == 404
    assert repo_wiring.get_curation_repo().list_members("lecture", lecture["id"]) == []


@pytest.mark.anyio
async def test_save_conflict_while_in_flight_returns_409():
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]
        session = admin.EDIT_SESSIONS.get(sid)
        assert session is not None
        lock: threading.Lock = session._save_lock
        lock.acquire()
        try:
            view = await client.get(f"/api/admin/edit-sessions/{sid}")
            assert view.json()["saving"] is True
            resp = await client.post(f"/api/admin/edit-sessions/{sid}/save")
            assert resp.status_code == 409
            assert resp.json()["error"] == "conflict"
        finally:
            lock.release()


@pytest.mark.anyio
async def test_edits_while_saving_return_409_and_leave_working_copy_alone():
    v1, v2, v3 = _seed_videos("하나", "둘", "셋")
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]
        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1, v2]})
        before = (await client.get(f"/api/admin/edit-sessions/{sid}")).json()["items"]
        session = admin.EDIT_SESSIONS.get(sid)
        assert session is not None
        lock: threading.Lock = session._save_lock
        lock.acquire()
        try:
            removed = await client.delete(f"/api/admin/edit-sessions/{sid}/items/{before[0]['key']}")
            moved = await client.post(
                f"/api/admin/edit-sessions/{sid}/move", json={"from_index": 1, "to_index": 0, "position": "above"}
            )
            added = await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v3]})
        finally:
            lock.release()
        for resp in (removed, moved, added):
            assert resp.status_code == 409
            assert resp.json()["error"] == "conflict"
        after = (await client.get(f"/api/admin/edit-sessions/{sid}")).json()["items"]
        assert [i["child_id"] for i in after] == [v1, v2]


@pytest.mark.anyio
async def test_save_failure_returns_502_and_keeps_edits():
    v1, v2 = _seed_videos("하나", "둘")
    repo = repo_wiring.get_curation_repo()
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]
        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1, v2]})
        # the second video disappears between picking and saving
        del repo.videos[v2]

        failed = await client.post(f"/api/admin/edit-sessions/{sid}/save")
        assert failed.status_code == 502
        assert failed.json()["error"] == "save_failed"
        assert failed.json()["detail"] == "저장할 항목을 찾을 수 없습니다"

        view = (await client.get(f"/api/admin/edit-sessions/{sid}")).json()
        assert [(i["child_id"], i["pending"]) for i in view["items"]] == [(v1, False), (v2, True)]

        await client.delete(f"/api/admin/edit-sessions/{sid}/items/{view['items'][1]['key']}")
        retried = await client.post(f"/api/admin/edit-sessions/{sid}/save")
        assert retried.status_code == 200
        assert [r["child_id"] for r in repo.list_members("lecture", lecture["id"])] == [v1]


@pytest.mark.anyio
async def test_admin_writes_enforce_csrf_in_prod(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GANUI_ENV", "prod")
    async with (await _client()) as client:
        _login(client)
        payload = {"title": "강의", "difficulty": "beginner", "is_published": False, "is_featured": False}
        no_origin = await client.post("/api/admin/lectures", json=payload)
        assert no_origin.status_code == 403
        assert no_origin.json()["detail"] == "csrf_violation"

        cross = await client.post("/api/admin/lectures", json=payload, headers={"Origin": "https://evil.example"})
        assert cross.status_code == 403

        same = await client.post("/api/admin/lectures", json=payload, headers={"Origin": "http://test"})
        assert same.status_code == 201


@pytest.mark.anyio
async def test_strict_csrf_flag_applies_outside_prod(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STRICT_CSRF_ADMIN", "true")
    async with (await _client()) as client:
        _login(client)
        payload = {"title": "강의", "difficulty": "beginner", "is_published": False, "is_featured": False}
        resp = await client.post("/api/admin/lectures", json=payload)
        assert resp.status_code == 403
        ok = await client.post("/api/admin/lectures", json=payload, headers={"Referer": "http://test/admin"})
        assert ok.status_code == 201


@pytest.mark.anyio
async def test_saving_a_lecture_refreshes_public_catalog():
    v1, v2 = _seed_videos("하나", "둘")
    async with (await _client()) as client:
        _login(client)
        lecture = await _create_lecture(client)
        sid = (await _open(client, "lectures", lecture["id"]))["session_id"]
        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v1]})
        await client.post(f"/api/admin/edit-sessions/{sid}/save")

        before = await client.get(f"/api/catalog/lectures/{lecture['id']}")
        assert [v["id"] for v in before.json()["videos"]] == [v1]

        await client.post(f"/api/admin/edit-sessions/{sid}/items", json={"child_ids": [v2]})
        await client.post(
            f"/api/admin/edit-sessions/{sid}/move", json={"from_index": 1, "to_index": 0, "position": "above"}
        )
        await client.post(f"/api/admin/edit-sessions/{sid}/save")

        after = await client.get(f"/api/catalog/lectures/{lecture['id']}")
        assert [v["id"] for v in after.json()["videos"]] == [v2, v1]
        assert after.json()["total_duration"] == 180
