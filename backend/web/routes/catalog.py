"""
Public catalog API routes (published content only).

Why:
    Browse pages list videos, lectures and curriculums without an account.
    Reads go through the shared `CatalogCache`, which admin saves invalidate.

Notes:
    - Public paths: the auth middleware lets `/api/catalog/*` through.
    - Responses are still marked `private, no-store` so intermediaries never
      serve content that an admin has since unpublished.
    - Use cases run via `asyncio.to_thread`; the DB repo is blocking psycopg.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter

from backend.catalog.usecases import (
    GetCurriculumUseCase,
    GetLectureUseCase,
    ListCategoriesUseCase,
    ListCurriculumsInput,
    ListCurriculumsUseCase,
    ListVideosInput,
    ListVideosUseCase,
)

from .. import repo_wiring
from .security import private_error, private_json

catalog_router = APIRouter(tags=["Catalog"])
logger = logging.getLogger("ganui.web.catalog")


def _parse_limit(raw: Optional[str]) -> tuple[Optional[int], bool]:
    if raw is None or raw == "":
        return None, True
    try:
        return int(raw), True
    except ValueError:
        return None, False


def _parse_flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes")


@catalog_router.get("/api/catalog/videos")
async def list_videos(
    category_id: Optional[str] = None,
    difficulty: Optional[str] = None,
    featured: Optional[str] = None,
    search: Optional[str] = None,
    limit: Optional[str] = None,
):
    """Published videos, newest first, with optional filters (limit clamped to 1..100)."""
    parsed_limit, ok = _parse_limit(limit)
    if not ok:
        return private_error("bad_request", status_code=400, detail="invalid_limit")
    uc = ListVideosUseCase(repo_wiring.get_curation_repo(), repo_wiring.CATALOG_CACHE)
    try:
        videos = await asyncio.to_thread(
            uc.execute,
            ListVideosInput(
                category_id=category_id,
                difficulty=difficulty,
                featured=_parse_flag(featured),
                search=search,
                limit=parsed_limit,
            ),
        )
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except Exception as exc:
        logger.warning("list_videos failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(videos)


@catalog_router.get("/api/catalog/lectures/{lecture_id}")
async def get_lecture(lecture_id: str):
    uc = GetLectureUseCase(repo_wiring.get_curation_repo(), repo_wiring.CATALOG_CACHE)
    try:
        lecture = await asyncio.to_thread(uc.execute, lecture_id)
    except LookupError:
        return private_error("not_found", status_code=404)
    except Exception as exc:
        logger.warning("get_lecture failed lid=%s err=%s", lecture_id[-6:], exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(lecture)


@catalog_router.get("/api/catalog/curriculums")
async def list_curriculums(
    difficulty: Optional[str] = None,
    featured: Optional[str] = None,
    limit: Optional[str] = None,
):
    """Published curriculums in admin order with lecture/video counts and duration."""
    parsed_limit, ok = _parse_limit(limit)
    if not ok:
        return private_error("bad_request", status_code=400, detail="invalid_limit")
    uc = ListCurriculumsUseCase(repo_wiring.get_curation_repo(), repo_wiring.CATALOG_CACHE)
    try:
        items = await asyncio.to_thread(
            uc.execute,
            ListCurriculumsInput(difficulty=difficulty, featured=_parse_flag(featured), limit=parsed_limit),
        )
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except Exception as exc:
        logger.warning("list_curriculums failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(items)


@catalog_router.get("/api/catalog/curriculums/{curriculum_id}")
async def get_curriculum(curriculum_id: str):
    uc = GetCurriculumUseCase(repo_wiring.get_curation_repo(), repo_wiring.CATALOG_CACHE)
    try:
        curriculum = await asyncio.to_thread(uc.execute, curriculum_id)
    except LookupError:
        return private_error("not_found", status_code=404)
    except Exception as exc:
        logger.warning("get_curriculum failed cid=%s err=%s", curriculum_id[-6:], exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(curriculum)


@catalog_router.get("/api/catalog/categories")
async def list_categories():
    """Categories in admin order, for the browse page filter."""
    uc = ListCategoriesUseCase(repo_wiring.get_curation_repo(), repo_wiring.CATALOG_CACHE)
    try:
        categories = await asyncio.to_thread(uc.execute)
    except Exception as exc:
        logger.warning("list_categories failed err=%s", exc.__class__.__name__)
        return private_error("service_unavailable", status_code=503)
    return private_json(categories)
