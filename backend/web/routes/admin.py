"""
Admin (back-office) API routes for curated lectures and curriculums.

Why:
    Admins assemble lectures from videos and curriculums from lectures. Each
    edit happens in a server-side edit session holding the working copy; the
    data store is only written on explicit save, where the session diffs the
    working copy against its load-time baseline.

Notes:
    - Security: every route requires the `admin` role; writes additionally
      pass the same-origin CSRF guard (strict in prod or with
      STRICT_CSRF_ADMIN=true).
    - Sessions are owner-scoped: another admin cannot see or drive them (404).
    - Saves run in a worker thread so a slow data store does not block the
      event loop; the session's in-flight guard rejects a second save (409)
      and any edit of the working copy until the save has finished.
    - A successful save invalidates the catalog read views it affects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.catalog.cache import AFFECTED_AGGREGATES
from backend.curation.errors import LoadFailed, SaveFailed, SaveInProgress
from backend.curation.kinds import KINDS_BY_SEGMENT, CatalogFilter, normalize_category_fields, normalize_parent_fields
from backend.curation.membership import PendingMember
from backend.curation.reorder import DROP_POSITIONS
from backend.curation.session import EditSession, EditSessionStore, SaveResult

from .. import repo_wiring
from ..config import get_edit_session_ttl_seconds
from .security import csrf_guard, current_sub, current_user, private_error, private_json, role_in

admin_router = APIRouter(tags=["Admin"])  # explicit paths below
logger = logging.getLogger("ganui.web.admin")

EDIT_SESSIONS = EditSessionStore()


def set_edit_session_store(store: EditSessionStore) -> None:
    """Allow tests to start from an empty edit session registry."""
    global EDIT_SESSIONS
    EDIT_SESSIONS = store


# --- Request models ---------------------------------------------------------------
# Loose typing avoids FastAPI 422s; contract errors are mapped to 400 explicitly.


class ParentCreatePayload(BaseModel):
    title: object | None = None
    description: object | None = None
    learning_goals: object | None = None
    difficulty: object | None = None
    is_published: object | None = None
    is_featured: object | None = None


class AddItemsPayload(BaseModel):
    child_ids: object | None = None


class MovePayload(BaseModel):
    from_index: object | None = None
    to_index: object | None = None
    position: object | None = None


class CategoryPayload(BaseModel):
    name: object | None = None
    slug: object | None = None
    description: object | None = None


class SavePayload(BaseModel):
    title: object | None = None
    description: object | None = None
    learning_goals: object | None = None
    difficulty: object | None = None
    is_published: object | None = None
    is_featured: object | None = None


# --- Helpers ------------------------------------------------------------------------


def _require_admin(request: Request):
    """Return (user, error_response) ensuring caller has the admin role."""
    user = current_user(request)
    if not role_in(user, "admin"):
        return None, private_error("forbidden", status_code=403)
    return user, None


def _resolve_kind(segment: str):
    return KINDS_BY_SEGMENT.get(segment)


def _owned_session(request: Request, session_id: str) -> Optional[EditSession]:
    session = EDIT_SESSIONS.get(session_id)
    if session is None or session.owner_sub != current_sub(request):
        return None
    return session


def _serialize_item(index: int, member) -> dict:
    pending = isinstance(member, PendingMember)
    return {
        "key": member.key,
        "id": None if pending else member.id,
        "child_id": member.child_id,
        "order": member.order,
        "index": index,
        "pending": pending,
        "child": dict(member.child or {}),
    }


def _serialize_session(session: EditSession) -> dict:
    return {
        "session_id": session.session_id,
        "kind": session.kind.name,
        "parent": session.parent,
        "items": [_serialize_item(i, m) for i, m in enumerate(session.collection.items)],
        "saving": session.saving,
    }


def _invalidate_catalog(result: SaveResult) -> None:
    dropped = repo_wiring.CATALOG_CACHE.invalidate(AFFECTED_AGGREGATES.get(result.kind, ()))
    logger.info("catalog invalidated kind=%s entries=%d", result.kind, dropped)


def _payload_fields(payload: BaseModel) -> dict:
    return payload.model_dump(exclude_unset=True)


# --- Categories ---------------------------------------------------------------------
# Registered before the `{kind_segment}` routes so "categories" is not taken as a kind.


def _invalidate_categories() -> None:
    repo_wiring.CATALOG_CACHE.invalidate(AFFECTED_AGGREGATES["category"])


@admin_router.get("/api/admin/categories")
async def list_categories(request: Request):
    _, error = _require_admin(request)
    if error:
        return error
    try:
        rows = await asyncio.to_thread(repo_wiring.get_curation_repo().list_categories)
    except Exception as exc:
        logger.warning("list_categories failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(rows)


@admin_router.post("/api/admin/categories")
async def create_category(request: Request, payload: CategoryPayload):
    """
    Create a category; it is appended after the existing ones.

    Behavior:
        - 201 with the created row.
        - 400 on invalid name/slug or a slug that is already taken.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    try:
        cleaned = normalize_category_fields(_payload_fields(payload), partial=False)
        created = await asyncio.to_thread(
            repo_wiring.get_curation_repo().add_category,
            cleaned["name"],
            cleaned["slug"],
            cleaned.get("description"),
        )
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except Exception as exc:
        logger.warning("create_category failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    _invalidate_categories()
    return private_json(created, status_code=201)


@admin_router.patch("/api/admin/categories/{category_id}")
async def update_category(request: Request, category_id: str, payload: CategoryPayload):
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    try:
        cleaned = normalize_category_fields(_payload_fields(payload), partial=True)
        updated = await asyncio.to_thread(repo_wiring.get_curation_repo().update_category, category_id, cleaned)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except Exception as exc:
        logger.warning("update_category failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    if updated is None:
        return private_error("not_found", status_code=404)
    _invalidate_categories()
    return private_json(updated)


@admin_router.delete("/api/admin/categories/{category_id}")
async def delete_category(request: Request, category_id: str):
    """Delete a category; its videos stay but lose their category."""
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    try:
        deleted = await asyncio.to_thread(repo_wiring.get_curation_repo().delete_category, category_id)
    except Exception as exc:
        logger.warning("delete_category failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    if not deleted:
        return private_error("not_found", status_code=404)
    _invalidate_categories()
    return private_json({"deleted": True})


# --- Parents ------------------------------------------------------------------------


@admin_router.get("/api/admin/{kind_segment}")
async def list_parents(request: Request, kind_segment: str):
    """List lectures or curriculums including unpublished ones (admin only)."""
    _, error = _require_admin(request)
    if error:
        return error
    kind = _resolve_kind(kind_segment)
    if kind is None:
        return private_error("not_found", status_code=404)
    try:
        rows = await asyncio.to_thread(
            repo_wiring.get_curation_repo().list_parents, kind.name, CatalogFilter(include_unpublished=True)
        )
    except Exception as exc:
        logger.warning("list_parents failed kind=%s err=%s", kind.name, exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(rows)


@admin_router.post("/api/admin/{kind_segment}")
async def create_parent(request: Request, kind_segment: str, payload: ParentCreatePayload):
    """
    Create a lecture or curriculum.

    Behavior:
        - 201 with the created row.
        - 400 on validation errors (title, difficulty, flags).
        - 403 for non-admins or CSRF violations.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    kind = _resolve_kind(kind_segment)
    if kind is None:
        return private_error("not_found", status_code=404)
    fields = _payload_fields(payload)
    try:
        cleaned = normalize_parent_fields(kind, fields, partial=False)
        created = await asyncio.to_thread(repo_wiring.get_curation_repo().create_parent, kind.name, cleaned)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except PermissionError:
        return private_error("forbidden", status_code=403)
    repo_wiring.CATALOG_CACHE.invalidate(AFFECTED_AGGREGATES.get(kind.name, ()))
    return private_json(created, status_code=201)


# --- Edit sessions ------------------------------------------------------------------


@admin_router.post("/api/admin/{kind_segment}/{parent_id}/edit-sessions")
async def open_edit_session(request: Request, kind_segment: str, parent_id: str):
    """
    Load a parent and its ordered members into a new edit session.

    Behavior:
        - 201 with the session view.
        - 404 when the parent does not exist; 503 when loading failed.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    kind = _resolve_kind(kind_segment)
    if kind is None:
        return private_error("not_found", status_code=404)
    try:
        session = await asyncio.to_thread(
            EditSession.load,
            repo_wiring.get_curation_repo(),
            kind,
            parent_id,
            owner_sub=current_sub(request),
            ttl_seconds=get_edit_session_ttl_seconds(),
        )
    except LoadFailed as exc:
        status = 404 if exc.not_found else 503
        return private_error("not_found" if exc.not_found else "service_unavailable", status_code=status, detail=str(exc))
    session.on_saved(_invalidate_catalog)
    EDIT_SESSIONS.add(session)
    return private_json(_serialize_session(session), status_code=201)


@admin_router.get("/api/admin/edit-sessions/{session_id}")
async def get_edit_session(request: Request, session_id: str):
    _, error = _require_admin(request)
    if error:
        return error
    session = _owned_session(request, session_id)
    if session is None:
        return private_error("not_found", status_code=404)
    return private_json(_serialize_session(session))


@admin_router.get("/api/admin/edit-sessions/{session_id}/candidates")
async def list_candidates(request: Request, session_id: str):
    """Children that can still be added (already-added children are excluded)."""
    _, error = _require_admin(request)
    if error:
        return error
    session = _owned_session(request, session_id)
    if session is None:
        return private_error("not_found", status_code=404)
    try:
        selection = await asyncio.to_thread(session.open_selection)
    except Exception as exc:
        logger.warning("list_candidates failed kind=%s err=%s", session.kind.name, exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(selection.available())


@admin_router.post("/api/admin/edit-sessions/{session_id}/items")
async def add_items(request: Request, session_id: str, payload: AddItemsPayload):
    """
    Append selected children to the end of the working copy.

    Behavior:
        - 200 with the session view; new items are pending until save.
        - 400 when ids are malformed, duplicated, unknown or already added.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    session = _owned_session(request, session_id)
    if session is None:
        return private_error("not_found", status_code=404)
    child_ids = payload.child_ids
    if not isinstance(child_ids, list) or not child_ids or not all(isinstance(c, str) and c for c in child_ids):
        return private_error("bad_request", status_code=400, detail="invalid_child_ids")
    if len(set(child_ids)) != len(child_ids):
        return private_error("bad_request", status_code=400, detail="duplicate_child_ids")
    try:
        await asyncio.to_thread(session.add_children, child_ids)
    except SaveInProgress as exc:
        return private_error("conflict", status_code=409, detail=str(exc))
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    return private_json(_serialize_session(session))


@admin_router.delete("/api/admin/edit-sessions/{session_id}/items/{key}")
async def remove_item(request: Request, session_id: str, key: str):
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    session = _owned_session(request, session_id)
    if session is None:
        return private_error("not_found", status_code=404)
    try:
        removed = session.remove_item(key)
    except SaveInProgress as exc:
        return private_error("conflict", status_code=409, detail=str(exc))
    if not removed:
        return private_error("not_found", status_code=404)
    return private_json(_serialize_session(session))


@admin_router.post("/api/admin/edit-sessions/{session_id}/move")
async def move_item(request: Request, session_id: str, payload: MovePayload):
    """
    Drop the item at `from_index` above or below the item at `to_index`.

    Behavior:
        - 200 with the reordered session view (same index is a no-op).
        - 400 for non-integer or out-of-range indices and unknown positions.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    session = _owned_session(request, session_id)
    if session is None:
        return private_error("not_found", status_code=404)
    from_index, to_index, position = payload.from_index, payload.to_index, payload.position
    for value in (from_index, to_index):
        if isinstance(value, bool) or not isinstance(value, int):
            return private_error("bad_request", status_code=400, detail="invalid_index")
    if position not in DROP_POSITIONS:
        return private_error("bad_request", status_code=400, detail="invalid_position")
    try:
        session.move_item(from_index, to_index, position)
    except SaveInProgress as exc:
        return private_error("conflict", status_code=409, detail=str(exc))
    except IndexError:
        return private_error("bad_request", status_code=400, detail="invalid_index")
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    return private_json(_serialize_session(session))


@admin_router.post("/api/admin/edit-sessions/{session_id}/save")
async def save_edit_session(request: Request, session_id: str, payload: SavePayload | None = None):
    """
    Persist parent fields and reconcile the membership list.

    Behavior:
        - 200 with `{parent, plan, items}`; items carry fresh persisted ids.
        - 400 on parent field validation errors (nothing written).
        - 409 while another save of the same session is running.
        - 502 when the data store rejected a step; edits stay for retry.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    session = _owned_session(request, session_id)
    if session is None:
        return private_error("not_found", status_code=404)
    fields = _payload_fields(payload) if payload is not None else {}
    try:
        result = await asyncio.to_thread(session.save, fields or None)
    except SaveInProgress as exc:
        return private_error("conflict", status_code=409, detail=str(exc))
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except SaveFailed as exc:
        return private_error("save_failed", status_code=502, detail=str(exc))
    return private_json(
        {
            "parent": result.parent,
            "plan": result.plan.as_dict(),
            "items": [_serialize_item(i, m) for i, m in enumerate(session.collection.items)],
        }
    )


@admin_router.delete("/api/admin/edit-sessions/{session_id}")
async def discard_edit_session(request: Request, session_id: str):
    """Drop the working copy without writing anything."""
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    session = _owned_session(request, session_id)
    if session is None or not EDIT_SESSIONS.delete(session_id):
        return private_error("not_found", status_code=404)
    return private_json({"discarded": True})


# --- Parent deletion ----------------------------------------------------------------
# Registered last so `/api/admin/edit-sessions/{session_id}` keeps its own DELETE.


@admin_router.delete("/api/admin/{kind_segment}/{parent_id}")
async def delete_parent(request: Request, kind_segment: str, parent_id: str):
    """
    Delete a lecture or curriculum together with its memberships.

    Behavior:
        - 200 `{deleted: true}`; a deleted lecture also leaves every curriculum.
        - 404 for unknown kinds or parents.
    """
    _, error = _require_admin(request)
    if error:
        return error
    csrf = csrf_guard(request, strict_env_var="STRICT_CSRF_ADMIN")
    if csrf:
        return csrf
    kind = _resolve_kind(kind_segment)
    if kind is None:
        return private_error("not_found", status_code=404)
    try:
        deleted = await asyncio.to_thread(repo_wiring.get_curation_repo().delete_parent, kind.name, parent_id)
    except Exception as exc:
        logger.warning("delete_parent failed kind=%s err=%s", kind.name, exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    if not deleted:
        return private_error("not_found", status_code=404)
    dropped = repo_wiring.CATALOG_CACHE.invalidate(AFFECTED_AGGREGATES.get(kind.name, ()))
    logger.info("parent deleted kind=%s pid=%s entries=%d", kind.name, parent_id[-6:], dropped)
    return private_json({"deleted": True})
