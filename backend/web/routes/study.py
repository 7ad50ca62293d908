"""
Study API routes: lecture notes, favorites and watch history.

Why:
    Signed-in learners keep Cornell-style notes per lecture, bookmark lectures
    and resume videos where they stopped. All data is owner-scoped: queries
    filter by the caller's `sub` and the DB repo additionally runs under RLS.

Notes:
    - Another user's note is reported as 404, never 403, to avoid an
      existence oracle.
    - Watch progress is throttled per (user, video); the player sends
      `force=true` on pause/end so the final position is always written.
    - Service calls run via `asyncio.to_thread`; the DB repo is blocking psycopg.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.study.config import get_watch_progress_throttle_seconds
from backend.study.progress import ProgressThrottle
from backend.study.services import FavoritesService, NotesService, WatchHistoryService, WatchProgressInput

from .. import repo_wiring
from .security import csrf_guard, current_sub, private_error, private_json

study_router = APIRouter(tags=["Study"])
logger = logging.getLogger("ganui.web.study")

PROGRESS_THROTTLE = ProgressThrottle(get_watch_progress_throttle_seconds())


def set_progress_throttle(throttle: ProgressThrottle) -> None:
    """Allow tests to control the throttle clock and window."""
    global PROGRESS_THROTTLE
    PROGRESS_THROTTLE = throttle


def _notes() -> NotesService:
    return NotesService(repo_wiring.get_study_repo())


def _favorites() -> FavoritesService:
    return FavoritesService(repo_wiring.get_study_repo())


def _watch_history() -> WatchHistoryService:
    return WatchHistoryService(repo_wiring.get_study_repo(), PROGRESS_THROTTLE)


def _require_user(request: Request):
    sub = current_sub(request)
    if not sub:
        return None, private_error("unauthenticated", status_code=401)
    return sub, None


# --- Request models ---------------------------------------------------------------


class NoteCreatePayload(BaseModel):
    lecture_id: object | None = None
    content: object | None = None
    timestamp: object | None = 0
    cue: object | None = None
    summary: object | None = None


class NoteUpdatePayload(BaseModel):
    content: object | None = None
    timestamp: object | None = None
    cue: object | None = None
    summary: object | None = None
    is_complete: object | None = None


class WatchProgressPayload(BaseModel):
    video_id: object | None = None
    lecture_id: object | None = None
    curriculum_id: object | None = None
    progress: object | None = None
    duration: object | None = None
    force: object | None = False


# --- Notes ------------------------------------------------------------------------


@study_router.get("/api/study/notes")
async def list_notes(request: Request, lecture_id: Optional[str] = None):
    """Caller's notes, optionally for one lecture, ordered by video timestamp."""
    sub, error = _require_user(request)
    if error:
        return error
    return private_json(await asyncio.to_thread(_notes().list_notes, sub, lecture_id))


@study_router.post("/api/study/notes")
async def create_note(request: Request, payload: NoteCreatePayload):
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_STUDY")
    if csrf:
        return csrf
    try:
        note = await asyncio.to_thread(
            _notes().create_note,
            sub,
            lecture_id=payload.lecture_id,
            content=payload.content,
            timestamp=payload.timestamp if payload.timestamp is not None else 0,
            cue=payload.cue,
            summary=payload.summary,
        )
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except LookupError:
        return private_error("not_found", status_code=404)
    except PermissionError:
        return private_error("forbidden", status_code=403)
    return private_json(note, status_code=201)


@study_router.patch("/api/study/notes/{note_id}")
async def update_note(request: Request, note_id: str, payload: NoteUpdatePayload):
    """
    Partially update one of the caller's notes.

    Behavior:
        - 200 with the updated note.
        - 400 on invalid fields or an empty update.
        - 404 when the note does not exist or belongs to someone else.
    """
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_STUDY")
    if csrf:
        return csrf
    fields = payload.model_dump(exclude_unset=True)
    try:
        updated = await asyncio.to_thread(_notes().update_note, sub, note_id, **fields)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    if updated is None:
        return private_error("not_found", status_code=404)
    return private_json(updated)


@study_router.delete("/api/study/notes/{note_id}")
async def delete_note(request: Request, note_id: str):
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_STUDY")
    if csrf:
        return csrf
    if not await asyncio.to_thread(_notes().delete_note, sub, note_id):
        return private_error("not_found", status_code=404)
    return private_json({"deleted": True})


# --- Favorites --------------------------------------------------------------------


@study_router.get("/api/study/favorites")
async def list_favorites(request: Request):
    sub, error = _require_user(request)
    if error:
        return error
    return private_json(await asyncio.to_thread(_favorites().list_favorites, sub))


@study_router.get("/api/study/favorites/{lecture_id}")
async def get_favorite(request: Request, lecture_id: str):
    sub, error = _require_user(request)
    if error:
        return error
    is_favorite = await asyncio.to_thread(_favorites().is_favorite, sub, lecture_id)
    return private_json({"is_favorite": is_favorite})


@study_router.post("/api/study/favorites/{lecture_id}/toggle")
async def toggle_favorite(request: Request, lecture_id: str):
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_STUDY")
    if csrf:
        return csrf
    try:
        state = await asyncio.to_thread(_favorites().toggle, sub, lecture_id)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except LookupError:
        return private_error("not_found", status_code=404)
    return private_json({"is_favorite": state})


# --- Watch history ----------------------------------------------------------------


@study_router.post("/api/study/watch-progress")
async def record_watch_progress(request: Request, payload: WatchProgressPayload):
    """
    Upsert playback progress for (caller, video).

    Behavior:
        - 200 `{saved: true, entry}` when written.
        - 202 `{saved: false}` when throttled (no write).
        - 400 on missing ids or negative/non-numeric progress/duration.
    """
    sub, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_STUDY")
    if csrf:
        return csrf
    if not isinstance(payload.force, bool):
        return private_error("bad_request", status_code=400, detail="invalid_force")
    req = WatchProgressInput(
        video_id=payload.video_id,  # type: ignore[arg-type]
        lecture_id=payload.lecture_id,  # type: ignore[arg-type]
        curriculum_id=payload.curriculum_id if isinstance(payload.curriculum_id, str) else None,
        progress=payload.progress,  # type: ignore[arg-type]
        duration=payload.duration,  # type: ignore[arg-type]
    )
    try:
        saved, entry = await asyncio.to_thread(_watch_history().record, sub, req, force=payload.force)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except Exception as exc:
        logger.warning("watch progress failed sub=%s err=%s", sub[-6:], exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    if not saved:
        return private_json({"saved": False}, status_code=202)
    return private_json({"saved": True, "entry": entry})


@study_router.get("/api/study/continue-watching")
async def continue_watching(request: Request):
    """The caller's five most recently watched unfinished videos."""
    sub, error = _require_user(request)
    if error:
        return error
    return private_json(await asyncio.to_thread(_watch_history().continue_watching, sub))
