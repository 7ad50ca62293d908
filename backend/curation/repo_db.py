"""
Postgres-backed repository for curated lectures and curriculums.

Design:
    - Minimal psycopg3 usage; each call opens a short-lived connection.
    - Table and column names come from the fixed `MembershipKind` constants;
      editable parent columns are composed with `psycopg.sql.Identifier`.
      Values are always bound parameters.
    - Returns plain dicts shaped like `InMemoryCurationRepo` rows so callers
      never see driver types.

Security:
    Connect with a login that is IN ROLE ganui_limited. Catalog tables carry
    no per-user RLS, so unlike the study repo no `app.current_sub` is set
    here; admin gating happens in the web adapter.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
import os

try:
    import psycopg
    from psycopg import sql
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    HAVE_PSYCOPG = False
else:  # pragma: no cover - import errors handled above
    try:
        from psycopg.errors import UniqueViolation, ForeignKeyViolation  # type: ignore
    except Exception:  # pragma: no cover
        UniqueViolation = None  # type: ignore
        ForeignKeyViolation = None  # type: ignore

from .kinds import CatalogFilter, MembershipKind, get_kind


def _default_app_dsn() -> str:
    # ganui_limited itself is NOLOGIN; the local dev login is IN ROLE ganui_limited.
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    user = os.getenv("APP_DB_USER", "ganui_app")
    password = os.getenv("APP_DB_PASSWORD", "CHANGE_ME_DEV")
    return f"postgresql://{user}:{password}@{host}:{port}/postgres"


def resolve_dsn() -> str:
    """Resolve the DSN for DB access, falling back to the local dev app login."""
    candidates = [
        os.getenv("GANUI_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
        os.getenv("SUPABASE_DB_URL"),
        _default_app_dsn(),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBCurationRepo")


_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""

_PARENT_COLUMNS = {
    "lectures": (
        "id::text", "title", "description", "thumbnail_url", "difficulty::text",
        "is_published", "is_featured", _TS.format(col="created_at"), _TS.format(col="updated_at"),
    ),
    "curriculums": (
        "id::text", "title", "description", "thumbnail_url", "difficulty::text",
        "is_published", "is_featured", _TS.format(col="created_at"), _TS.format(col="updated_at"),
        "learning_goals", '"order"',
    ),
}
_PARENT_KEYS = (
    "id", "title", "description", "thumbnail_url", "difficulty",
    "is_published", "is_featured", "created_at", "updated_at",
)

_VIDEO_COLUMNS = (
    "c.id::text", "c.title", "c.description", "c.youtube_id", "c.youtube_url", "c.thumbnail_url",
    "c.duration", "c.difficulty::text", "c.instructor", "c.is_published", "c.is_featured",
    "c.category_id::text", "cat.name", "cat.slug",
)
_LECTURE_COLUMNS = (
    "c.id::text", "c.title", "c.description", "c.thumbnail_url", "c.difficulty::text",
    "c.is_published", "c.is_featured",
)


def _parent_row_to_dict(table: str, row: Tuple) -> Dict[str, Any]:
    out = dict(zip(_PARENT_KEYS, row[: len(_PARENT_KEYS)]))
    if table == "curriculums":
        out["learning_goals"] = row[9]
        out["order"] = int(row[10]) if row[10] is not None else 0
    return out


def _child_row_to_dict(kind: MembershipKind, row: Tuple) -> Dict[str, Any]:
    if kind.child_table == "videos":
        return {
            "id": row[0],
            "title": row[1],
            "description": row[2],
            "youtube_id": row[3],
            "youtube_url": row[4],
            "thumbnail_url": row[5],
            "duration": int(row[6]) if row[6] is not None else None,
            "difficulty": row[7],
            "instructor": row[8],
            "is_published": row[9],
            "is_featured": row[10],
            "category_id": row[11],
            "category": {"id": row[11], "name": row[12], "slug": row[13]} if row[11] else None,
        }
    return dict(zip(("id", "title", "description", "thumbnail_url", "difficulty", "is_published", "is_featured"), row))


def _child_columns(kind: MembershipKind) -> Tuple[str, ...]:
    return _VIDEO_COLUMNS if kind.child_table == "videos" else _LECTURE_COLUMNS


def _child_join(kind: MembershipKind) -> str:
    return "left join public.categories cat on cat.id = c.category_id" if kind.child_table == "videos" else ""


def _raise_for_unique(exc: BaseException, code: str) -> None:
    sqlstate = getattr(exc, "sqlstate", None)
    if (UniqueViolation and isinstance(exc, UniqueViolation)) or sqlstate == "23505":
        raise ValueError(code) from exc


class DBCurationRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBCurationRepo")
        self._dsn = dsn or resolve_dsn()

    # --- Categories -----------------------------------------------------------------

    _CATEGORY_COLS = 'id::text, name, slug, description, "order"'

    @staticmethod
    def _category_row_to_dict(row: Tuple) -> dict:
        return {"id": row[0], "name": row[1], "slug": row[2], "description": row[3], "order": int(row[4] or 0)}

    def add_category(self, name: str, slug: Optional[str] = None, description: Optional[str] = None) -> dict:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        insert into public.categories (name, slug, description, "order")
                        values (%s, %s, %s, (select coalesce(max("order"), -1) + 1 from public.categories))
                        returning {self._CATEGORY_COLS}
                        """,
                        (name, slug or name.lower(), description),
                    )
                except Exception as exc:
                    conn.rollback()
                    _raise_for_unique(exc, "duplicate_slug")
                    raise
                row = cur.fetchone()
                conn.commit()
        return self._category_row_to_dict(row)

    def list_categories(self) -> List[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f'select {self._CATEGORY_COLS} from public.categories order by "order" asc, name')
                rows = cur.fetchall() or []
        return [self._category_row_to_dict(r) for r in rows]

    def update_category(self, category_id: str, fields: dict) -> Optional[dict]:
        values = {k: fields[k] for k in ("name", "slug", "description") if k in fields}
        if not values:
            raise ValueError("empty_update")
        query = sql.SQL("update public.categories set {assign} where id = %s returning " + self._CATEGORY_COLS).format(
            assign=sql.SQL(", ").join([sql.SQL("{} = %s").format(sql.Identifier(c)) for c in values]),
        )
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(query, [*values.values(), category_id])
                except Exception as exc:
                    conn.rollback()
                    _raise_for_unique(exc, "duplicate_slug")
                    raise
                row = cur.fetchone()
                conn.commit()
        return self._category_row_to_dict(row) if row else None

    def delete_category(self, category_id: str) -> bool:
        """Delete a category; its videos keep existing with `category_id = null`."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.categories where id = %s", (category_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    # --- Seeding (videos are curated outside the edit sessions) ---------------------

    def add_video(self, *, title: str, youtube_id: str, **fields: Any) -> dict:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.videos
                        (title, description, youtube_id, youtube_url, thumbnail_url, duration,
                         category_id, difficulty, instructor, is_published, is_featured)
                    values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    returning id::text
                    """,
                    (
                        title,
                        fields.get("description"),
                        youtube_id,
                        fields.get("youtube_url") or f"https://www.youtube.com/watch?v={youtube_id}",
                        fields.get("thumbnail_url"),
                        fields.get("duration"),
                        fields.get("category_id"),
                        fields.get("difficulty", "beginner"),
                        fields.get("instructor"),
                        bool(fields.get("is_published", True)),
                        bool(fields.get("is_featured", False)),
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return {"id": row[0], "title": title, "youtube_id": youtube_id}

    # --- Parents ------------------------------------------------------------------

    def _select_parent_sql(self, kind: MembershipKind) -> str:
        cols = ", ".join(_PARENT_COLUMNS[kind.parent_table])
        return f"select {cols} from public.{kind.parent_table}"

    def get_parent(self, kind: str, parent_id: str) -> Optional[dict]:
        k = get_kind(kind)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(self._select_parent_sql(k) + " where id = %s", (parent_id,))
                row = cur.fetchone()
        return _parent_row_to_dict(k.parent_table, row) if row else None

    def list_parents(self, kind: str, filters: CatalogFilter) -> List[dict]:
        k = get_kind(kind)
        clauses, params = self._visibility_clauses(filters, alias="", with_category=False)
        query = self._select_parent_sql(k)
        if clauses:
            query += " where " + " and ".join(clauses)
        if k.name == "curriculum":
            query += ' order by "order" asc, created_at desc'
        else:
            query += " order by created_at desc"
        if filters.limit:
            query += " limit %s"
            params.append(int(filters.limit))
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall() or []
        return [_parent_row_to_dict(k.parent_table, r) for r in rows]

    def create_parent(self, kind: str, fields: dict) -> dict:
        k = get_kind(kind)
        values = {key: fields[key] for key in k.parent_fields if key in fields}
        if k.name == "curriculum":
            # Append new curriculums at the end of the public listing.
            order_sql = sql.SQL('(select coalesce(max("order"), -1) + 1 from public.curriculums)')
        else:
            order_sql = None
        columns = [sql.Identifier(c) for c in values]
        placeholders = [sql.Placeholder() for _ in values]
        if order_sql is not None:
            columns.append(sql.Identifier("order"))
            placeholders.append(order_sql)
        query = sql.SQL("insert into public.{table} ({cols}) values ({vals}) returning id::text").format(
            table=sql.Identifier(k.parent_table),
            cols=sql.SQL(", ").join(columns),
            vals=sql.SQL(", ").join(placeholders),
        )
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, list(values.values()))
                row = cur.fetchone()
                if not row:
                    conn.rollback()
                    raise PermissionError("parent_insert_forbidden")
                cur.execute(self._select_parent_sql(k) + " where id = %s", (row[0],))
                created = cur.fetchone()
                conn.commit()
        return _parent_row_to_dict(k.parent_table, created)

    def update_parent(self, kind: str, parent_id: str, fields: dict) -> Optional[dict]:
        k = get_kind(kind)
        values = {key: fields[key] for key in k.parent_fields if key in fields}
        if not values:
            return self.get_parent(kind, parent_id)
        assignments = [sql.SQL("{} = %s").format(sql.Identifier(c)) for c in values]
        assignments.append(sql.SQL("updated_at = now()"))
        query = sql.SQL("update public.{table} set {assign} where id = %s returning id::text").format(
            table=sql.Identifier(k.parent_table),
            assign=sql.SQL(", ").join(assignments),
        )
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, [*values.values(), parent_id])
                row = cur.fetchone()
                if not row:
                    conn.rollback()
                    return None
                cur.execute(self._select_parent_sql(k) + " where id = %s", (parent_id,))
                updated = cur.fetchone()
                conn.commit()
        return _parent_row_to_dict(k.parent_table, updated) if updated else None

    def delete_parent(self, kind: str, parent_id: str) -> bool:
        """Delete a parent; membership rows go with it via `on delete cascade`."""
        k = get_kind(kind)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from public.{k.parent_table} where id = %s", (parent_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    # --- Members ------------------------------------------------------------------

    def _member_select(self, k: MembershipKind) -> str:
        child_cols = ", ".join(_child_columns(k))
        return (
            f'select m.id::text, m.{k.parent_column}::text, m.{k.child_column}::text, m."order", {child_cols} '
            f"from public.{k.member_table} m "
            f"join public.{k.child_table} c on c.id = m.{k.child_column} "
            f"{_child_join(k)}"
        )

    @staticmethod
    def _member_row_to_dict(k: MembershipKind, row: Tuple) -> dict:
        return {
            "id": row[0],
            "parent_id": row[1],
            "child_id": row[2],
            "order": int(row[3]) if row[3] is not None else 0,
            "child": _child_row_to_dict(k, row[4:]),
        }

    def list_members(self, kind: str, parent_id: str) -> List[dict]:
        k = get_kind(kind)
        query = self._member_select(k) + f' where m.{k.parent_column} = %s order by m."order" asc, m.id'
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, (parent_id,))
                rows = cur.fetchall() or []
        return [self._member_row_to_dict(k, r) for r in rows]

    @staticmethod
    def _visibility_clauses(filters: CatalogFilter, *, alias: str, with_category: bool) -> Tuple[List[str], List[Any]]:
        prefix = f"{alias}." if alias else ""
        clauses: List[str] = []
        params: List[Any] = []
        if not filters.include_unpublished:
            clauses.append(f"{prefix}is_published = true")
        if with_category and filters.category_id:
            clauses.append(f"{prefix}category_id = %s")
            params.append(filters.category_id)
        if filters.difficulty:
            clauses.append(f"{prefix}difficulty = %s")
            params.append(filters.difficulty)
        if filters.featured:
            clauses.append(f"{prefix}is_featured = true")
        if filters.search:
            clauses.append(f"{prefix}title ilike %s")
            params.append(f"%{filters.search}%")
        return clauses, params

    def list_candidates(self, kind: str, filters: CatalogFilter) -> List[dict]:
        k = get_kind(kind)
        is_video = k.child_table == "videos"
        clauses, params = self._visibility_clauses(filters, alias="c", with_category=is_video)
        query = f"select {', '.join(_child_columns(k))} from public.{k.child_table} c {_child_join(k)}"
        if clauses:
            query += " where " + " and ".join(clauses)
        query += " order by c.created_at desc"
        if filters.limit:
            query += " limit %s"
            params.append(int(filters.limit))
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall() or []
        return [_child_row_to_dict(k, r) for r in rows]

    def delete_member(self, kind: str, member_id: str) -> bool:
        k = get_kind(kind)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from public.{k.member_table} where id = %s", (member_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def insert_member(self, kind: str, parent_id: str, child_id: str, order: int) -> dict:
        """Insert one association row and return it with the joined child.

        Unique violations on (parent, child) surface as ValueError("duplicate_member");
        missing parent/child rows surface as LookupError.
        """
        k = get_kind(kind)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f'insert into public.{k.member_table} ({k.parent_column}, {k.child_column}, "order") '
                        "values (%s, %s, %s) returning id::text",
                        (parent_id, child_id, int(order)),
                    )
                except Exception as exc:
                    sqlstate = getattr(exc, "sqlstate", None)
                    conn.rollback()
                    if (UniqueViolation and isinstance(exc, UniqueViolation)) or sqlstate == "23505":
                        raise ValueError("duplicate_member") from exc
                    if (ForeignKeyViolation and isinstance(exc, ForeignKeyViolation)) or sqlstate == "23503":
                        raise LookupError("parent_or_child_not_found") from exc
                    raise
                row = cur.fetchone()
                if not row:
                    conn.rollback()
                    raise PermissionError("member_insert_forbidden")
                cur.execute(self._member_select(k) + " where m.id = %s", (row[0],))
                inserted = cur.fetchone()
                conn.commit()
        return self._member_row_to_dict(k, inserted)

    def update_member_order(self, kind: str, member_id: str, order: int) -> bool:
        k = get_kind(kind)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f'update public.{k.member_table} set "order" = %s where id = %s',
                    (int(order), member_id),
                )
                updated = cur.rowcount > 0
                conn.commit()
        return updated


__all__ = ["DBCurationRepo", "HAVE_PSYCOPG", "resolve_dsn"]
