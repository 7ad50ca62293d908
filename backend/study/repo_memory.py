"""
In-memory study repository (notes, favorites, watch history).

Rows are always filtered by `user_id`, mirroring the RLS policies of the
Postgres tables. When a curation repo is given, favorites and
continue-watching entries carry lecture/video snapshots like the DB joins do.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryStudyRepo:
    def __init__(self, catalog=None) -> None:
        self.catalog = catalog
        self.notes: Dict[str, dict] = {}
        self.favorites: Dict[str, dict] = {}
        # watch_history keyed by (user_id, video_id); one row per pair
        self.watch_history: Dict[tuple, dict] = {}

    def _lecture(self, lecture_id: Optional[str]) -> Optional[dict]:
        if self.catalog is None or not lecture_id:
            return None
        row = self.catalog.lectures.get(lecture_id)
        if not row:
            return None
        return {k: row.get(k) for k in ("id", "title", "thumbnail_url", "difficulty")}

    def _video(self, video_id: str) -> Optional[dict]:
        if self.catalog is None:
            return None
        row = self.catalog.videos.get(video_id)
        if not row:
            return None
        return {k: row.get(k) for k in ("id", "title", "youtube_id", "thumbnail_url", "duration")}

    # --- Notes --------------------------------------------------------------------

    def list_notes(self, user_id: str, lecture_id: Optional[str]) -> List[dict]:
        rows = [
            n for n in self.notes.values()
            if n["user_id"] == user_id and (lecture_id is None or n["lecture_id"] == lecture_id)
        ]
        rows.sort(key=lambda n: (n["timestamp"], n["created_at"]))
        return [dict(n) for n in rows]

    def create_note(self, user_id: str, *, lecture_id: str, timestamp: int, cue: Optional[str], content: str, summary: Optional[str]) -> dict:
        now = _now()
        row = {
            "id": str(uuid4()),
            "user_id": user_id,
            "lecture_id": lecture_id,
            "timestamp": int(timestamp),
            "cue": cue,
            "content": content,
            "summary": summary,
            "is_complete": False,
            "created_at": now,
            "updated_at": now,
        }
        self.notes[row["id"]] = row
        return dict(row)

    def update_note(self, user_id: str, note_id: str, fields: dict) -> Optional[dict]:
        row = self.notes.get(note_id)
        if not row or row["user_id"] != user_id:
            return None
        row.update(fields)
        row["updated_at"] = _now()
        return dict(row)

    def delete_note(self, user_id: str, note_id: str) -> bool:
        row = self.notes.get(note_id)
        if not row or row["user_id"] != user_id:
            return False
        del self.notes[note_id]
        return True

    # --- Favorites ----------------------------------------------------------------

    def list_favorites(self, user_id: str) -> List[dict]:
        rows = [f for f in self.favorites.values() if f["user_id"] == user_id]
        rows.reverse()
        return [{**f, "lecture": self._lecture(f["lecture_id"])} for f in rows]

    def find_favorite(self, user_id: str, lecture_id: str) -> Optional[str]:
        for fav in self.favorites.values():
            if fav["user_id"] == user_id and fav["lecture_id"] == lecture_id:
                return fav["id"]
        return None

    def add_favorite(self, user_id: str, lecture_id: str) -> dict:
        if self.find_favorite(user_id, lecture_id):
            raise ValueError("duplicate_favorite")
        row = {"id": str(uuid4()), "user_id": user_id, "lecture_id": lecture_id, "created_at": _now()}
        self.favorites[row["id"]] = row
        return dict(row)

    def delete_favorite(self, user_id: str, favorite_id: str) -> bool:
        row = self.favorites.get(favorite_id)
        if not row or row["user_id"] != user_id:
            return False
        del self.favorites[favorite_id]
        return True

    # --- Watch history ------------------------------------------------------------

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
        key = (user_id, video_id)
        # re-insert so dict order tracks last_watched_at
        row = self.watch_history.pop(key, None)
        if row is None:
            row = {"id": str(uuid4()), "user_id": user_id, "video_id": video_id}
        self.watch_history[key] = row
        row.update(
            {
                "lecture_id": lecture_id,
                "curriculum_id": curriculum_id,
                "progress": float(progress),
                "is_completed": bool(is_completed),
                "last_watched_at": _now(),
            }
        )
        return dict(row)

    def list_continue_watching(self, user_id: str, limit: int) -> List[dict]:
        rows = [r for r in reversed(list(self.watch_history.values())) if r["user_id"] == user_id and not r["is_completed"]]
        return [
            {**r, "video": self._video(r["video_id"]), "lecture": self._lecture(r["lecture_id"])}
            for r in rows[: int(limit)]
        ]


__all__ = ["InMemoryStudyRepo"]
