"""Study service layer: notes, favorites and watch history.

Why:
    Keep validation and product rules (completion threshold, throttling,
    toggle semantics) out of the FastAPI adapter so they can be unit-tested
    without HTTP. Persistence and row visibility live in the repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Tuple

from .config import CONTINUE_WATCHING_LIMIT, NOTE_CONTENT_MAX_LENGTH, WATCH_COMPLETION_RATIO
from .progress import ProgressThrottle


class StudyRepoProtocol(Protocol):
    def list_notes(self, user_id: str, lecture_id: Optional[str]) -> List[dict]:
        ...

    def create_note(self, user_id: str, *, lecture_id: str, timestamp: int, cue: Optional[str], content: str, summary: Optional[str]) -> dict:
        ...

    def update_note(self, user_id: str, note_id: str, fields: dict) -> Optional[dict]:
        ...

    def delete_note(self, user_id: str, note_id: str) -> bool:
        ...

    def list_favorites(self, user_id: str) -> List[dict]:
        ...

    def find_favorite(self, user_id: str, lecture_id: str) -> Optional[str]:
        ...

    def add_favorite(self, user_id: str, lecture_id: str) -> dict:
        ...

    def delete_favorite(self, user_id: str, favorite_id: str) -> bool:
        ...

    def upsert_watch_history(
        self,
        user_id: str,
        *,
        video_id: str,
        lecture_id: str,
        curriculum_id: Optional[str],
        progress: float,
        is_completed: bool,
    ) -> dict:
        ...

    def list_continue_watching(self, user_id: str, limit: int) -> List[dict]:
        ...


_UNSET = object()


def _normalize_content(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_content")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > NOTE_CONTENT_MAX_LENGTH:
        raise ValueError("invalid_content")
    return trimmed


def _normalize_optional_text(value: object, code: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(code)
    trimmed = value.strip()
    return trimmed or None


def _normalize_timestamp(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("invalid_timestamp")
    if value < 0:
        raise ValueError("invalid_timestamp")
    return int(value)


def _normalize_id(value: object, code: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(code)
    return value.strip()


def is_watch_completed(progress: float, duration: float) -> bool:
    return duration > 0 and progress / duration >= WATCH_COMPLETION_RATIO


class NotesService:
    def __init__(self, repo: StudyRepoProtocol) -> None:
        self.repo = repo

    def list_notes(self, user_id: str, lecture_id: Optional[str] = None) -> List[dict]:
        return self.repo.list_notes(user_id, lecture_id or None)

    def create_note(
        self,
        user_id: str,
        *,
        lecture_id: object,
        content: object,
        timestamp: object = 0,
        cue: object = None,
        summary: object = None,
    ) -> dict:
        return self.repo.create_note(
            user_id,
            lecture_id=_normalize_id(lecture_id, "invalid_lecture_id"),
            timestamp=_normalize_timestamp(timestamp),
            cue=_normalize_optional_text(cue, "invalid_cue"),
            content=_normalize_content(content),
            summary=_normalize_optional_text(summary, "invalid_summary"),
        )

    def update_note(
        self,
        user_id: str,
        note_id: str,
        *,
        content: Any = _UNSET,
        timestamp: Any = _UNSET,
        cue: Any = _UNSET,
        summary: Any = _UNSET,
        is_complete: Any = _UNSET,
    ) -> Optional[dict]:
        """Partial update of the caller's own note; None when it is not visible."""
        fields: dict = {}
        if content is not _UNSET:
            fields["content"] = _normalize_content(content)
        if timestamp is not _UNSET:
            fields["timestamp"] = _normalize_timestamp(timestamp)
        if cue is not _UNSET:
            fields["cue"] = _normalize_optional_text(cue, "invalid_cue")
        if summary is not _UNSET:
            fields["summary"] = _normalize_optional_text(summary, "invalid_summary")
        if is_complete is not _UNSET:
            if not isinstance(is_complete, bool):
                raise ValueError("invalid_is_complete")
            fields["is_complete"] = is_complete
        if not fields:
            raise ValueError("empty_update")
        return self.repo.update_note(user_id, note_id, fields)

    def delete_note(self, user_id: str, note_id: str) -> bool:
        return self.repo.delete_note(user_id, note_id)


class FavoritesService:
    def __init__(self, repo: StudyRepoProtocol) -> None:
        self.repo = repo

    def list_favorites(self, user_id: str) -> List[dict]:
        return self.repo.list_favorites(user_id)

    def is_favorite(self, user_id: str, lecture_id: str) -> bool:
        return self.repo.find_favorite(user_id, lecture_id) is not None

    def toggle(self, user_id: str, lecture_id: str) -> bool:
        """Flip the favorite flag and return the new state."""
        lecture_id = _normalize_id(lecture_id, "invalid_lecture_id")
        existing = self.repo.find_favorite(user_id, lecture_id)
        if existing:
            self.repo.delete_favorite(user_id, existing)
            return False
        self.repo.add_favorite(user_id, lecture_id)
        return True


@dataclass(frozen=True)
class WatchProgressInput:
    video_id: str
    lecture_id: str
    progress: float
    duration: float
    curriculum_id: Optional[str] = None


class WatchHistoryService:
    def __init__(self, repo: StudyRepoProtocol, throttle: ProgressThrottle) -> None:
        self.repo = repo
        self.throttle = throttle

    def record(self, user_id: str, req: WatchProgressInput, *, force: bool = False) -> Tuple[bool, Optional[dict]]:
        """Persist playback progress unless throttled.

        Behavior:
            - Returns (False, None) when the same user/video saved within the
              throttle window and `force` is not set.
            - Marks the entry completed once 90% of the duration was watched.
            - `force` (pause/end of playback) bypasses and restarts the window.
        """
        video_id = _normalize_id(req.video_id, "invalid_video_id")
        lecture_id = _normalize_id(req.lecture_id, "invalid_lecture_id")
        for value, code in ((req.progress, "invalid_progress"), (req.duration, "invalid_duration")):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValueError(code)
        key = (user_id, video_id)
        if force:
            self.throttle.mark(key)
        elif not self.throttle.admit(key):
            return False, None
        row = self.repo.upsert_watch_history(
            user_id,
            video_id=video_id,
            lecture_id=lecture_id,
            curriculum_id=(req.curriculum_id or None),
            progress=float(req.progress),
            is_completed=is_watch_completed(float(req.progress), float(req.duration)),
        )
        return True, row

    def continue_watching(self, user_id: str) -> List[dict]:
        return self.repo.list_continue_watching(user_id, CONTINUE_WATCHING_LIMIT)


__all__ = [
    "StudyRepoProtocol",
    "is_watch_completed",
    "NotesService",
    "FavoritesService",
    "WatchProgressInput",
    "WatchHistoryService",
]
