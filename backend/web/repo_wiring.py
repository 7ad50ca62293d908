"""
Shared wiring for the data repositories and the catalog read cache.

Why:
    Admin saves, public catalog reads and study endpoints must all see the same
    curation repository, and admin saves must invalidate the same cache the
    catalog reads from. Repositories (and the profile directory holding
    application roles) are built lazily on first use so imports never touch
    the database; tests swap them with the `set_*` helpers.

Behavior:
    - Prefer the Postgres-backed repos when psycopg is importable.
    - Fall back to in-memory repos (with a warning) when construction fails.
"""
from __future__ import annotations

import logging

from backend.catalog.cache import CatalogCache
from backend.curation.repo_memory import InMemoryCurationRepo
from backend.identity_access.profiles import InMemoryProfileDirectory
from backend.study.repo_memory import InMemoryStudyRepo

from .config import get_catalog_cache_ttl_seconds

logger = logging.getLogger("ganui.web")

try:
    from backend.curation.repo_db import DBCurationRepo, HAVE_PSYCOPG
    from backend.study.repo_db import DBStudyRepo
    from backend.identity_access.profiles import DBProfileDirectory
except Exception as exc:  # pragma: no cover - exercised when psycopg import fails oddly
    DBCurationRepo = None  # type: ignore
    DBStudyRepo = None  # type: ignore
    DBProfileDirectory = None  # type: ignore
    HAVE_PSYCOPG = False
    _DB_REPO_IMPORT_ERROR: Exception | None = exc
else:
    _DB_REPO_IMPORT_ERROR = None


_CURATION_REPO = None
_STUDY_REPO = None
_PROFILE_DIRECTORY = None
CATALOG_CACHE = CatalogCache(ttl_seconds=get_catalog_cache_ttl_seconds())


def _build_default_curation_repo():
    if DBCurationRepo is None or not HAVE_PSYCOPG:
        if _DB_REPO_IMPORT_ERROR:
            logger.warning("Curation repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return InMemoryCurationRepo()
    try:
        return DBCurationRepo()
    except Exception as exc:  # pragma: no cover - exercised when DSN missing
        logger.warning("Curation repo unavailable (%s); using in-memory fallback", exc)
        return InMemoryCurationRepo()


def _build_default_study_repo():
    if DBStudyRepo is None or not HAVE_PSYCOPG:
        return InMemoryStudyRepo(catalog=_memory_catalog())
    try:
        return DBStudyRepo()
    except Exception as exc:  # pragma: no cover - exercised when DSN missing
        logger.warning("Study repo unavailable (%s); using in-memory fallback", exc)
        return InMemoryStudyRepo(catalog=_memory_catalog())


def _build_default_profile_directory():
    if DBProfileDirectory is None or not HAVE_PSYCOPG:
        return InMemoryProfileDirectory()
    try:
        return DBProfileDirectory()
    except Exception as exc:  # pragma: no cover - exercised when DSN missing
        logger.warning("Profile directory unavailable (%s); using in-memory fallback", exc)
        return InMemoryProfileDirectory()


def _memory_catalog():
    repo = get_curation_repo()
    return repo if isinstance(repo, InMemoryCurationRepo) else None


def get_curation_repo():
    global _CURATION_REPO
    if _CURATION_REPO is None:
        _CURATION_REPO = _build_default_curation_repo()
    return _CURATION_REPO


def set_curation_repo(repo) -> None:
    """Swap the curation repository and drop cached read views built from the old one."""
    global _CURATION_REPO
    _CURATION_REPO = repo
    CATALOG_CACHE.clear()


def get_study_repo():
    global _STUDY_REPO
    if _STUDY_REPO is None:
        _STUDY_REPO = _build_default_study_repo()
    return _STUDY_REPO


def set_study_repo(repo) -> None:
    global _STUDY_REPO
    _STUDY_REPO = repo


def get_profile_directory():
    global _PROFILE_DIRECTORY
    if _PROFILE_DIRECTORY is None:
        _PROFILE_DIRECTORY = _build_default_profile_directory()
    return _PROFILE_DIRECTORY


def set_profile_directory(directory) -> None:
    global _PROFILE_DIRECTORY
    _PROFILE_DIRECTORY = directory
