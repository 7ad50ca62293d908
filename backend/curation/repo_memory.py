"""
In-memory curation repository for tests and offline development.

Mirrors the contract of `DBCurationRepo`: rows are plain dicts, member lists
come back ordered by `order`, and contract violations raise
ValueError/LookupError with the same codes.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .kinds import CatalogFilter, MembershipKind, get_kind


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


_VIDEO_SNAPSHOT_KEYS = (
    "id",
    "title",
    "description",
    "youtube_id",
    "youtube_url",
    "thumbnail_url",
    "duration",
    "difficulty",
    "instructor",
    "is_published",
)
_LECTURE_SNAPSHOT_KEYS = (
    "id",
    "title",
    "description",
    "thumbnail_url",
    "difficulty",
    "is_published",
    "is_featured",
)


class InMemoryCurationRepo:
    def __init__(self) -> None:
        self.categories: Dict[str, dict] = {}
        self.videos: Dict[str, dict] = {}
        self.lectures: Dict[str, dict] = {}
        self.curriculums: Dict[str, dict] = {}
        # members[kind][member_id] = {id, parent_id, child_id, order, created_at}
        self.members: Dict[str, Dict[str, dict]] = {"lecture": {}, "curriculum": {}}

    # --- Seeding helpers (videos are curated outside the edit sessions) ---------

    def add_video(self, *, title: str, youtube_id: str, **fields: Any) -> dict:
        vid = str(uuid4())
        now = _now()
        row = {
            "id": vid,
            "title": title,
            "description": fields.get("description"),
            "youtube_id": youtube_id,
            "youtube_url": fields.get("youtube_url") or f"https://www.youtube.com/watch?v={youtube_id}",
            "thumbnail_url": fields.get("thumbnail_url"),
            "duration": fields.get("duration"),
            "category_id": fields.get("category_id"),
            "difficulty": fields.get("difficulty", "beginner"),
            "instructor": fields.get("instructor"),
            "view_count": 0,
            "is_published": fields.get("is_published", True),
            "is_featured": fields.get("is_featured", False),
            "created_at": now,
            "updated_at": now,
        }
        self.videos[vid] = row
        return dict(row)

    # --- Categories -----------------------------------------------------------------

    def add_category(self, name: str, slug: Optional[str] = None, description: Optional[str] = None) -> dict:
        slug = slug or name.lower()
        if any(c["slug"] == slug for c in self.categories.values()):
            raise ValueError("duplicate_slug")
        cid = str(uuid4())
        row = {
            "id": cid,
            "name": name,
            "slug": slug,
            "description": description,
            "order": max((c["order"] for c in self.categories.values()), default=-1) + 1,
            "created_at": _now(),
        }
        self.categories[cid] = row
        return dict(row)

    def list_categories(self) -> List[dict]:
        return [dict(c) for c in sorted(self.categories.values(), key=lambda c: c["order"])]

    def update_category(self, category_id: str, fields: dict) -> Optional[dict]:
        if not fields:
            raise ValueError("empty_update")
        row = self.categories.get(category_id)
        if not row:
            return None
        slug = fields.get("slug")
        if slug and any(c["slug"] == slug and c["id"] != category_id for c in self.categories.values()):
            raise ValueError("duplicate_slug")
        row.update({k: v for k, v in fields.items() if k in ("name", "slug", "description")})
        return dict(row)

    def delete_category(self, category_id: str) -> bool:
        if self.categories.pop(category_id, None) is None:
            return False
        # mirrors `on delete set null` on videos.category_id
        for video in self.videos.values():
            if video.get("category_id") == category_id:
                video["category_id"] = None
        return True

    # --- Helpers ------------------------------------------------------------------

    def _parents(self, kind: MembershipKind) -> Dict[str, dict]:
        return self.lectures if kind.parent_table == "lectures" else self.curriculums

    def _children(self, kind: MembershipKind) -> Dict[str, dict]:
        return self.videos if kind.child_table == "videos" else self.lectures

    def _snapshot(self, kind: MembershipKind, child: dict) -> dict:
        if kind.child_table == "videos":
            snap = {k: child.get(k) for k in _VIDEO_SNAPSHOT_KEYS}
            category = self.categories.get(child.get("category_id") or "")
            snap["category"] = dict(category) if category else None
            return snap
        return {k: child.get(k) for k in _LECTURE_SNAPSHOT_KEYS}

    def _member_view(self, kind: MembershipKind, row: dict) -> dict:
        child = self._children(kind).get(row["child_id"])
        return {**row, "child": self._snapshot(kind, child) if child else None}

    @staticmethod
    def _matches(row: dict, filters: CatalogFilter) -> bool:
        if not filters.include_unpublished and not row.get("is_published"):
            return False
        if filters.category_id and row.get("category_id") != filters.category_id:
            return False
        if filters.difficulty and row.get("difficulty") != filters.difficulty:
            return False
        if filters.featured and not row.get("is_featured"):
            return False
        if filters.search and filters.search.lower() not in (row.get("title") or "").lower():
            return False
        return True

    # --- Parents ------------------------------------------------------------------

    def get_parent(self, kind: str, parent_id: str) -> Optional[dict]:
        row = self._parents(get_kind(kind)).get(parent_id)
        return dict(row) if row else None

    def list_parents(self, kind: str, filters: CatalogFilter) -> List[dict]:
        k = get_kind(kind)
        rows = [r for r in reversed(list(self._parents(k).values())) if self._matches(r, filters)]
        if k.name == "curriculum":
            rows.sort(key=lambda r: r.get("order") or 0)
        if filters.limit:
            rows = rows[: filters.limit]
        return [dict(r) for r in rows]

    def create_parent(self, kind: str, fields: dict) -> dict:
        k = get_kind(kind)
        parents = self._parents(k)
        now = _now()
        row = {
            "id": str(uuid4()),
            "title": fields["title"],
            "description": fields.get("description"),
            "thumbnail_url": fields.get("thumbnail_url"),
            "difficulty": fields.get("difficulty", "beginner"),
            "is_published": bool(fields.get("is_published", False)),
            "is_featured": bool(fields.get("is_featured", False)),
            "created_at": now,
            "updated_at": now,
        }
        if k.name == "curriculum":
            row["learning_goals"] = fields.get("learning_goals")
            row["order"] = len(parents)
        parents[row["id"]] = row
        return dict(row)

    def update_parent(self, kind: str, parent_id: str, fields: dict) -> Optional[dict]:
        row = self._parents(get_kind(kind)).get(parent_id)
        if not row:
            return None
        row.update(fields)
        row["updated_at"] = _now()
        return dict(row)

    def delete_parent(self, kind: str, parent_id: str) -> bool:
        """Delete a parent with its memberships (and, for a lecture, its curriculum slots)."""
        k = get_kind(kind)
        if self._parents(k).pop(parent_id, None) is None:
            return False
        # mirrors the `on delete cascade` foreign keys of both membership tables
        for member_kind in (get_kind(name) for name in self.members):
            bucket = self.members[member_kind.name]
            doomed = [
                mid
                for mid, r in bucket.items()
                if (member_kind is k and r["parent_id"] == parent_id)
                or (member_kind.child_table == k.parent_table and r["child_id"] == parent_id)
            ]
            for mid in doomed:
                del bucket[mid]
        return True

    # --- Members ------------------------------------------------------------------

    def list_members(self, kind: str, parent_id: str) -> List[dict]:
        k = get_kind(kind)
        rows = [r for r in self.members[k.name].values() if r["parent_id"] == parent_id]
        rows.sort(key=lambda r: r["order"])
        return [self._member_view(k, r) for r in rows]

    def list_candidates(self, kind: str, filters: CatalogFilter) -> List[dict]:
        k = get_kind(kind)
        rows = [r for r in reversed(list(self._children(k).values())) if self._matches(r, filters)]
        if filters.limit:
            rows = rows[: filters.limit]
        out = []
        for r in rows:
            item = dict(r)
            if k.child_table == "videos":
                category = self.categories.get(r.get("category_id") or "")
                item["category"] = dict(category) if category else None
            out.append(item)
        return out

    def delete_member(self, kind: str, member_id: str) -> bool:
        return self.members[get_kind(kind).name].pop(member_id, None) is not None

    def insert_member(self, kind: str, parent_id: str, child_id: str, order: int) -> dict:
        k = get_kind(kind)
        if parent_id not in self._parents(k):
            raise LookupError("parent_not_found")
        if child_id not in self._children(k):
            raise LookupError("child_not_found")
        bucket = self.members[k.name]
        if any(r["parent_id"] == parent_id and r["child_id"] == child_id for r in bucket.values()):
            raise ValueError("duplicate_member")
        row = {
            "id": str(uuid4()),
            "parent_id": parent_id,
            "child_id": child_id,
            "order": int(order),
            "created_at": _now(),
        }
        bucket[row["id"]] = row
        return self._member_view(k, row)

    def update_member_order(self, kind: str, member_id: str, order: int) -> bool:
        row = self.members[get_kind(kind).name].get(member_id)
        if not row:
            return False
        row["order"] = int(order)
        return True


__all__ = ["InMemoryCurationRepo"]
