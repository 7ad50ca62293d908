from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from backend.curation.kinds import DIFFICULTIES, CatalogFilter
from backend.curation.reconcile import CurationRepoProtocol

from .cache import CatalogCache
from .summary import lecture_duration, pick_thumbnail, summarize_curriculum


def _clamp_limit(limit: Optional[int]) -> Optional[int]:
    if limit is None:
        return None
    return max(1, min(100, int(limit)))


def _check_difficulty(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if value not in DIFFICULTIES:
        raise ValueError("invalid_difficulty")
    return value


def _published_videos(repo: CurationRepoProtocol, lecture_id: str) -> List[dict]:
    rows = repo.list_members("lecture", lecture_id)
    return [r["child"] for r in rows if r.get("child") and r["child"].get("is_published")]


def _published_lectures_with_videos(repo: CurationRepoProtocol, curriculum_id: str) -> List[dict]:
    lectures: List[dict] = []
    for row in repo.list_members("curriculum", curriculum_id):
        lecture = row.get("child")
        if not lecture or not lecture.get("is_published"):
            continue
        videos = _published_videos(repo, lecture["id"])
        lectures.append(
            {
                **lecture,
                "order": row.get("order"),
                "videos": videos,
                "video_count": len(videos),
                "total_duration": lecture_duration(videos),
            }
        )
    return lectures


class ListCategoriesUseCase:
    """Categories in admin order; the browse page uses them as video filters."""

    def __init__(self, repo, cache: CatalogCache) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self) -> List[dict]:
        return self._cache.get_or_load("categories", None, self._repo.list_categories)


@dataclass(frozen=True)
class ListVideosInput:
    category_id: Optional[str] = None
    difficulty: Optional[str] = None
    featured: bool = False
    search: Optional[str] = None
    limit: Optional[int] = None


class ListVideosUseCase:
    def __init__(self, repo: CurationRepoProtocol, cache: CatalogCache) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self, req: ListVideosInput) -> List[dict]:
        """Published videos, newest first, filtered like the public browse page."""
        filters = CatalogFilter(
            category_id=req.category_id or None,
            difficulty=_check_difficulty(req.difficulty),
            featured=bool(req.featured),
            search=(req.search or "").strip() or None,
            limit=_clamp_limit(req.limit),
        )
        return self._cache.get_or_load("videos", filters, lambda: self._repo.list_candidates("lecture", filters))


class GetLectureUseCase:
    def __init__(self, repo: CurationRepoProtocol, cache: CatalogCache) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self, lecture_id: str) -> dict:
        """Return a published lecture with its videos in curated order.

        Raises LookupError when the lecture is missing or unpublished.
        """

        def load() -> dict:
            lecture = self._repo.get_parent("lecture", lecture_id)
            if not lecture or not lecture.get("is_published"):
                raise LookupError("lecture_not_found")
            videos = _published_videos(self._repo, lecture_id)
            return {
                **lecture,
                "videos": videos,
                "video_count": len(videos),
                "total_duration": lecture_duration(videos),
                "thumbnail": pick_thumbnail(lecture.get("thumbnail_url"), videos[0] if videos else None),
            }

        return self._cache.get_or_load("lectures", lecture_id, load)


@dataclass(frozen=True)
class ListCurriculumsInput:
    difficulty: Optional[str] = None
    featured: bool = False
    limit: Optional[int] = None


class ListCurriculumsUseCase:
    def __init__(self, repo: CurationRepoProtocol, cache: CatalogCache) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self, req: ListCurriculumsInput) -> List[dict]:
        """Published curriculums in admin-defined order with card aggregates."""
        filters = CatalogFilter(
            difficulty=_check_difficulty(req.difficulty),
            featured=bool(req.featured),
            limit=_clamp_limit(req.limit),
        )

        def load() -> List[dict]:
            out = []
            for curriculum in self._repo.list_parents("curriculum", filters):
                lectures = _published_lectures_with_videos(self._repo, curriculum["id"])
                out.append(summarize_curriculum(curriculum, lectures))
            return out

        return self._cache.get_or_load("curriculums", filters, load)


class GetCurriculumUseCase:
    def __init__(self, repo: CurationRepoProtocol, cache: CatalogCache) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self, curriculum_id: str) -> dict:
        def load() -> dict:
            curriculum = self._repo.get_parent("curriculum", curriculum_id)
            if not curriculum or not curriculum.get("is_published"):
                raise LookupError("curriculum_not_found")
            lectures = _published_lectures_with_videos(self._repo, curriculum_id)
            return {**summarize_curriculum(curriculum, lectures), "lectures": lectures}

        return self._cache.get_or_load("curriculums", ("detail", curriculum_id), load)


__all__ = [
    "ListCategoriesUseCase",
    "ListVideosInput",
    "ListVideosUseCase",
    "GetLectureUseCase",
    "ListCurriculumsInput",
    "ListCurriculumsUseCase",
    "GetCurriculumUseCase",
]
