"""
Postgres-backed repository for per-user study data.

Every call sets `app.current_sub` for its transaction so RLS policies on
notes, favorites and watch_history only expose the caller's rows; queries
still filter by `user_id` explicitly.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.curation.repo_db import resolve_dsn


_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""

_NOTE_COLUMNS = (
    'id::text, user_id, lecture_id::text, "timestamp", cue, content, summary, is_complete, '
    + _TS.format(col="created_at") + ", " + _TS.format(col="updated_at")
)
_NOTE_KEYS = (
    "id", "user_id", "lecture_id", "timestamp", "cue", "content", "summary", "is_complete",
    "created_at", "updated_at",
)
# Updatable note columns; anything else is rejected before SQL is built.
_NOTE_FIELDS = ("content", "timestamp", "cue", "summary", "is_complete")


def _note_to_dict(row: Tuple) -> Dict[str, Any]:
    out = dict(zip(_NOTE_KEYS, row))
    out["timestamp"] = int(out["timestamp"] or 0)
    return out


class DBStudyRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBStudyRepo")
        self._dsn = dsn or resolve_dsn()

    # --- Notes --------------------------------------------------------------------

    def list_notes(self, user_id: str, lecture_id: Optional[str]) -> List[dict]:
        query = f"select {_NOTE_COLUMNS} from public.notes where user_id = %s"
        params: List[Any] = [user_id]
        if lecture_id:
            query += " and lecture_id = %s"
            params.append(lecture_id)
        query += ' order by "timestamp" asc, created_at asc'
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(query, params)
                rows = cur.fetchall() or []
        return [_note_to_dict(r) for r in rows]

    def create_note(self, user_id: str, *, lecture_id: str, timestamp: int, cue: Optional[str], content: str, summary: Optional[str]) -> dict:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(
                    f"""
                    insert into public.notes (user_id, lecture_id, "timestamp", cue, content, summary)
                    values (%s, %s, %s, %s, %s, %s)
                    returning {_NOTE_COLUMNS}
                    """,
                    (user_id, lecture_id, int(timestamp), cue, content, summary),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            raise PermissionError("note_insert_forbidden")
        return _note_to_dict(row)

    def update_note(self, user_id: str, note_id: str, fields: dict) -> Optional[dict]:
        values = {k: fields[k] for k in _NOTE_FIELDS if k in fields}
        if not values:
            raise ValueError("empty_update")
        assignments = ", ".join(f'"{k}" = %s' for k in values)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(
                    f"""
                    update public.notes set {assignments}, updated_at = now()
                    where id = %s and user_id = %s
                    returning {_NOTE_COLUMNS}
                    """,
                    (*values.values(), note_id, user_id),
                )
                row = cur.fetchone()
                conn.commit()
        return _note_to_dict(row) if row else None

    def delete_note(self, user_id: str, note_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute("delete from public.notes where id = %s and user_id = %s", (note_id, user_id))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    # --- Favorites ----------------------------------------------------------------

    def list_favorites(self, user_id: str) -> List[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(
                    f"""
                    select f.id::text, f.user_id, f.lecture_id::text, {_TS.format(col="f.created_at")},
                           l.id::text, l.title, l.thumbnail_url, l.difficulty::text
                    from public.favorites f
                    left join public.lectures l on l.id = f.lecture_id
                    where f.user_id = %s
                    order by f.created_at desc, f.id
                    """,
                    (user_id,),
                )
                rows = cur.fetchall() or []
        return [
            {
                "id": r[0],
                "user_id": r[1],
                "lecture_id": r[2],
                "created_at": r[3],
                "lecture": {"id": r[4], "title": r[5], "thumbnail_url": r[6], "difficulty": r[7]} if r[4] else None,
            }
            for r in rows
        ]

    def find_favorite(self, user_id: str, lecture_id: str) -> Optional[str]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(
                    "select id::text from public.favorites where user_id = %s and lecture_id = %s",
                    (user_id, lecture_id),
                )
                row = cur.fetchone()
        return row[0] if row else None

    def add_favorite(self, user_id: str, lecture_id: str) -> dict:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                try:
                    cur.execute(
                        f"""
                        insert into public.favorites (user_id, lecture_id) values (%s, %s)
                        returning id::text, user_id, lecture_id::text, {_TS.format(col="created_at")}
                        """,
                        (user_id, lecture_id),
                    )
                except Exception as exc:
                    conn.rollback()
                    sqlstate = getattr(exc, "sqlstate", None)
                    if sqlstate == "23505":
                        raise ValueError("duplicate_favorite") from exc
                    if sqlstate == "23503":
                        raise LookupError("lecture_not_found") from exc
                    raise
                row = cur.fetchone()
                conn.commit()
        return {"id": row[0], "user_id": row[1], "lecture_id": row[2], "created_at": row[3]}

    def delete_favorite(self, user_id: str, favorite_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute("delete from public.favorites where id = %s and user_id = %s", (favorite_id, user_id))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

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
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(
                    f"""
                    insert into public.watch_history
                        (user_id, video_id, lecture_id, curriculum_id, progress, is_completed, last_watched_at)
                    values (%s, %s, %s, %s, %s, %s, now())
                    on conflict (user_id, video_id) do update
                        set lecture_id = excluded.lecture_id,
                            curriculum_id = excluded.curriculum_id,
                            progress = excluded.progress,
                            is_completed = excluded.is_completed,
                            last_watched_at = excluded.last_watched_at
                    returning id::text, user_id, video_id::text, lecture_id::text, curriculum_id::text,
                              progress, is_completed, {_TS.format(col="last_watched_at")}
                    """,
                    (user_id, video_id, lecture_id, curriculum_id, float(progress), bool(is_completed)),
                )
                row = cur.fetchone()
                conn.commit()
        return {
            "id": row[0],
            "user_id": row[1],
            "video_id": row[2],
            "lecture_id": row[3],
            "curriculum_id": row[4],
            "progress": float(row[5]),
            "is_completed": row[6],
            "last_watched_at": row[7],
        }

    def list_continue_watching(self, user_id: str, limit: int) -> List[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                cur.execute(
                    f"""
                    select w.id::text, w.user_id, w.video_id::text, w.lecture_id::text, w.curriculum_id::text,
                           w.progress, w.is_completed, {_TS.format(col="w.last_watched_at")},
                           v.title, v.youtube_id, v.thumbnail_url, v.duration,
                           l.title, l.thumbnail_url, l.difficulty::text
                    from public.watch_history w
                    left join public.videos v on v.id = w.video_id
                    left join public.lectures l on l.id = w.lecture_id
                    where w.user_id = %s and w.is_completed = false
                    order by w.last_watched_at desc, w.id
                    limit %s
                    """,
                    (user_id, int(limit)),
                )
                rows = cur.fetchall() or []
        return [
            {
                "id": r[0],
                "user_id": r[1],
                "video_id": r[2],
                "lecture_id": r[3],
                "curriculum_id": r[4],
                "progress": float(r[5]),
                "is_completed": r[6],
                "last_watched_at": r[7],
                "video": {"id": r[2], "title": r[8], "youtube_id": r[9], "thumbnail_url": r[10], "duration": r[11]}
                if r[8] is not None
                else None,
                "lecture": {"id": r[3], "title": r[12], "thumbnail_url": r[13], "difficulty": r[14]}
                if r[12] is not None
                else None,
            }
            for r in rows
        ]


__all__ = ["DBStudyRepo", "HAVE_PSYCOPG"]
