"""
Membership kinds: which tables form an ordered parent/child association.

Why:
    Videos inside a lecture and lectures inside a curriculum share the same
    ordering and reconciliation rules. Describing each association as data
    lets one implementation serve both admin screens.
"""
from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Optional


DIFFICULTIES = ("beginner", "intermediate", "advanced")


@dataclass(frozen=True)
class MembershipKind:
    name: str
    parent_table: str
    member_table: str
    parent_column: str
    child_table: str
    child_column: str
    # Parent attributes an admin may edit alongside the membership list.
    parent_fields: tuple[str, ...]


LECTURE = MembershipKind(
    name="lecture",
    parent_table="lectures",
    member_table="lecture_videos",
    parent_column="lecture_id",
    child_table="videos",
    child_column="video_id",
    parent_fields=("title", "description", "difficulty", "is_published", "is_featured"),
)

CURRICULUM = MembershipKind(
    name="curriculum",
    parent_table="curriculums",
    member_table="curriculum_lectures",
    parent_column="curriculum_id",
    child_table="lectures",
    child_column="lecture_id",
    parent_fields=(
        "title",
        "description",
        "learning_goals",
        "difficulty",
        "is_published",
        "is_featured",
    ),
)

KINDS = {k.name: k for k in (LECTURE, CURRICULUM)}

# URL segments used by the admin API.
KINDS_BY_SEGMENT = {"lectures": LECTURE, "curriculums": CURRICULUM}


def get_kind(name: str) -> MembershipKind:
    try:
        return KINDS[name]
    except KeyError as exc:
        raise ValueError("invalid_kind") from exc


@dataclass(frozen=True)
class CatalogFilter:
    """Visibility and listing filters shared by parents and candidates."""

    include_unpublished: bool = False
    category_id: Optional[str] = None
    difficulty: Optional[str] = None
    featured: bool = False
    search: Optional[str] = None
    limit: Optional[int] = None


def normalize_parent_fields(kind: MembershipKind, fields: dict, *, partial: bool) -> dict:
    """Validate editable parent attributes and return a cleaned copy.

    Behavior:
        - Unknown keys are rejected with ValueError("invalid_field").
        - `title` is trimmed; empty or longer than 200 chars is invalid.
        - Text fields other than title collapse blank strings to None.
        - `difficulty` must be one of DIFFICULTIES.
        - Flags must be real booleans.
        - With `partial=False`, title, difficulty and both flags are required.
    """
    out: dict = {}
    for key, value in (fields or {}).items():
        if key not in kind.parent_fields:
            raise ValueError("invalid_field")
        if key == "title":
            title = (value or "").strip() if isinstance(value, str) else ""
            if not title or len(title) > 200:
                raise ValueError("invalid_title")
            out[key] = title
        elif key in ("description", "learning_goals"):
            if value is not None and not isinstance(value, str):
                raise ValueError(f"invalid_{key}")
            text = (value or "").strip()
            out[key] = text or None
        elif key == "difficulty":
            if value not in DIFFICULTIES:
                raise ValueError("invalid_difficulty")
            out[key] = value
        elif key in ("is_published", "is_featured"):
            if not isinstance(value, bool):
                raise ValueError(f"invalid_{key}")
            out[key] = value
    if not partial:
        for required in ("title", "difficulty", "is_published", "is_featured"):
            if required not in out:
                raise ValueError(f"missing_{required}")
    return out


CATEGORY_FIELDS = ("name", "slug", "description")
_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def normalize_category_fields(fields: dict, *, partial: bool) -> dict:
    """Validate category attributes (name, URL slug, description).

    Slugs are lower-case ASCII words joined by single hyphens, e.g.
    `politics` or `world-economy`.
    """
    out: dict = {}
    for key, value in (fields or {}).items():
        if key not in CATEGORY_FIELDS:
            raise ValueError("invalid_field")
        if key == "name":
            name = value.strip() if isinstance(value, str) else ""
            if not name or len(name) > 100:
                raise ValueError("invalid_name")
            out[key] = name
        elif key == "slug":
            slug = value.strip().lower() if isinstance(value, str) else ""
            if not slug or len(slug) > 100 or not _SLUG_RE.match(slug):
                raise ValueError("invalid_slug")
            out[key] = slug
        else:
            if value is not None and not isinstance(value, str):
                raise ValueError("invalid_description")
            out[key] = (value or "").strip() or None
    if not partial:
        for required in ("name", "slug"):
            if required not in out:
                raise ValueError(f"missing_{required}")
    return out


__all__ = [
    "DIFFICULTIES",
    "MembershipKind",
    "LECTURE",
    "CURRICULUM",
    "KINDS",
    "KINDS_BY_SEGMENT",
    "get_kind",
    "CatalogFilter",
    "normalize_parent_fields",
    "CATEGORY_FIELDS",
    "normalize_category_fields",
]
