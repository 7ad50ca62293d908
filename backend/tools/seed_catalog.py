"""Command line entry point for seeding the catalog from a JSON file.

Why:
    Local and staging databases need a realistic set of categories, videos,
    lectures and curriculums. Lectures and curriculums are assembled through
    the same edit-session save path the admin screens use, so a seed run also
    exercises ordering and reconciliation end to end.

File format:
    {
      "categories": [{"name": "Python", "slug": "python", "description": "..."}],
      "videos": [{"title": "...", "youtube_id": "...", "category": "python", "duration": 600}],
      "lectures": [{"title": "...", "difficulty": "beginner", "is_published": true,
                    "is_featured": false, "videos": ["<youtube_id>", ...]}],
      "curriculums": [{"title": "...", "difficulty": "beginner", "is_published": true,
                       "is_featured": false, "lectures": ["<lecture title>", ...]}],
      "admins": [{"id": "<auth user id>", "email": "...", "name": "..."}]
    }
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import click

from backend.curation.errors import CurationError
from backend.curation.kinds import CURRICULUM, LECTURE, normalize_parent_fields
from backend.curation.repo_memory import InMemoryCurationRepo
from backend.curation.session import EditSession
from backend.identity_access.profiles import InMemoryProfileDirectory

_PARENT_KEYS = ("title", "description", "learning_goals", "difficulty", "is_published", "is_featured")
_SEED_SUB = "seed-cli"


def _parent_fields(kind, entry: Dict[str, Any]) -> dict:
    fields = {k: entry[k] for k in _PARENT_KEYS if k in entry and k in kind.parent_fields}
    fields.setdefault("difficulty", "beginner")
    fields.setdefault("is_published", False)
    fields.setdefault("is_featured", False)
    return normalize_parent_fields(kind, fields, partial=False)


def _assemble(repo, kind, entry: Dict[str, Any], child_ids: list[str]) -> dict:
    parent = repo.create_parent(kind.name, _parent_fields(kind, entry))
    if child_ids:
        session = EditSession.load(repo, kind, parent["id"], owner_sub=_SEED_SUB)
        session.add_children(child_ids)
        session.save()
    return parent


def seed_catalog(repo, data: Dict[str, Any], *, profiles=None) -> Dict[str, int]:
    """Insert the seed data through `repo` and return per-entity counts.

    `admins` entries are promoted through `profiles` (an in-memory directory
    when none is given).

    Raises:
        ValueError: a video, lecture or category reference cannot be resolved,
            or a parent entry fails validation.
    """
    categories: Dict[str, str] = {}
    for entry in data.get("categories") or []:
        row = repo.add_category(entry["name"], entry.get("slug"), entry.get("description"))
        categories[row["slug"]] = row["id"]

    videos: Dict[str, str] = {}
    for entry in data.get("videos") or []:
        fields = {k: v for k, v in entry.items() if k not in ("title", "youtube_id", "category")}
        slug = entry.get("category")
        if slug:
            if slug not in categories:
                raise ValueError(f"unknown_category:{slug}")
            fields["category_id"] = categories[slug]
        row = repo.add_video(title=entry["title"], youtube_id=entry["youtube_id"], **fields)
        videos[entry["youtube_id"]] = row["id"]

    lectures: Dict[str, str] = {}
    for entry in data.get("lectures") or []:
        refs = entry.get("videos") or []
        missing = [r for r in refs if r not in videos]
        if missing:
            raise ValueError(f"unknown_video:{missing[0]}")
        parent = _assemble(repo, LECTURE, entry, [videos[r] for r in refs])
        lectures[parent["title"]] = parent["id"]

    curriculum_count = 0
    for entry in data.get("curriculums") or []:
        refs = entry.get("lectures") or []
        missing = [r for r in refs if r not in lectures]
        if missing:
            raise ValueError(f"unknown_lecture:{missing[0]}")
        _assemble(repo, CURRICULUM, entry, [lectures[r] for r in refs])
        curriculum_count += 1

    profiles = profiles if profiles is not None else InMemoryProfileDirectory()
    admin_count = 0
    for entry in data.get("admins") or []:
        profiles.set_role(entry["id"], "admin", email=entry.get("email") or "", name=entry.get("name"))
        admin_count += 1

    return {
        "categories": len(categories),
        "videos": len(videos),
        "lectures": len(lectures),
        "curriculums": curriculum_count,
        "admins": admin_count,
    }


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--file", "seed_file", required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="JSON seed file.")
@click.option("--db-dsn", required=False, help="Service-role DSN; RLS blocks catalog inserts for the app role.")
@click.option("--dry-run", is_flag=True, default=False, help="Validate the file against an in-memory repository only.")
def cli(seed_file: Path, db_dsn: str | None, dry_run: bool) -> None:
    """Seed categories, videos, lectures, curriculums and admin profiles.

    Behaviour:
        - With --dry-run nothing is written; references and fields are still
          validated so a broken file fails before touching a database.
        - Without --dry-run a --db-dsn is required.
    """
    try:
        data = json.loads(seed_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"invalid JSON: {exc}") from exc
    if dry_run:
        repo = InMemoryCurationRepo()
        profiles = InMemoryProfileDirectory()
    else:
        if not db_dsn:
            raise click.UsageError("--db-dsn is required unless --dry-run is given")
        from backend.curation.repo_db import DBCurationRepo
        from backend.identity_access.profiles import DBProfileDirectory

        repo = DBCurationRepo(db_dsn)
        profiles = DBProfileDirectory(db_dsn)
    click.echo(f"Seeding catalog ({'DRY-RUN' if dry_run else 'LIVE'}) from {seed_file.name}")
    try:
        counts = seed_catalog(repo, data, profiles=profiles)
    except (ValueError, KeyError, CurationError) as exc:
        raise click.ClickException(f"seed failed: {exc}") from exc
    for name, count in counts.items():
        click.echo(f"  {name}: {count}")


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
