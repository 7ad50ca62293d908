from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from backend.curation.repo_memory import InMemoryCurationRepo
from backend.tools.seed_catalog import cli, seed_catalog


def _seed_data() -> dict:
    return {
        "categories": [{"name": "Python", "slug": "python"}],
        "videos": [
            {"title": "변수", "youtube_id": "yt-a", "category": "python", "duration": 300},
            {"title": "조건문", "youtube_id": "yt-b", "duration": 420},
        ],
        "lectures": [
            {"title": "파이썬 기초", "difficulty": "beginner", "is_published": True, "videos": ["yt-b", "yt-a"]},
            {"title": "빈 강의"},
        ],
        "curriculums": [
            {
                "title": "입문 로드맵",
                "learning_goals": "문법 익히기",
                "is_published": True,
                "is_featured": True,
                "lectures": ["파이썬 기초"],
            }
        ],
    }


def test_seed_catalog_builds_ordered_memberships():
    repo = InMemoryCurationRepo()

    counts = seed_catalog(repo, _seed_data())

    assert counts == {"categories": 1, "videos": 2, "lectures": 2, "curriculums": 1, "admins": 0}
    lecture = next(r for r in repo.lectures.values() if r["title"] == "파이썬 기초")
    members = repo.list_members("lecture", lecture["id"])
    assert [m["child"]["youtube_id"] for m in members] == ["yt-b", "yt-a"]
    assert [m["order"] for m in members] == [0, 1]
    curriculum = next(iter(repo.curriculums.values()))
    assert curriculum["learning_goals"] == "문법 익히기"
    assert [m["child_id"] for m in repo.list_members("curriculum", curriculum["id"])] == [lecture["id"]]


@pytest.mark.parametrize(
    "mutate,message",
    [
        (lambda d: d["videos"][0].update(category="rust"), "unknown_category:rust"),
        (lambda d: d["lectures"][0]["videos"].append("yt-z"), "unknown_video:yt-z"),
        (lambda d: d["curriculums"][0]["lectures"].append("없는 강의"), "unknown_lecture:없는 강의"),
        (lambda d: d["lectures"][0].update(difficulty="expert"), "invalid_difficulty"),
    ],
)
def test_seed_catalog_rejects_broken_references(mutate, message):
    data = _seed_data()
    mutate(data)
    with pytest.raises(ValueError, match=message):
        seed_catalog(InMemoryCurationRepo(), data)


def _write(tmp_path: Path, payload) -> Path:
    path = tmp_path / "seed.json"
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


def test_cli_dry_run_reports_counts(tmp_path: Path):
    path = _write(tmp_path, _seed_data())
    result = CliRunner().invoke(cli, ["--file", str(path), "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Seeding catalog (DRY-RUN) from seed.json" in result.output
    assert "  lectures: 2" in result.output


def test_cli_requires_dsn_without_dry_run(tmp_path: Path):
    path = _write(tmp_path, _seed_data())
    result = CliRunner().invoke(cli, ["--file", str(path)])
    assert result.exit_code == 2
    assert "--db-dsn is required" in result.output


def test_cli_reports_invalid_json_and_bad_references(tmp_path: Path):
    broken = _write(tmp_path, "{not json")
    result = CliRunner().invoke(cli, ["--file", str(broken), "--dry-run"])
    assert result.exit_code == 1
    assert "invalid JSON" in result.output

    data = _seed_data()
    data["lectures"][0]["videos"] = ["missing"]
    bad_ref = _write(tmp_path, data)
    result = CliRunner().invoke(cli, ["--file", str(bad_ref), "--dry-run"])
    assert result.exit_code == 1
    assert "seed failed: unknown_video:missing" in result.output


def test_seed_promotes_admin_profiles_and_keeps_category_descriptions():
    from backend.identity_access.profiles import InMemoryProfileDirectory

    data = _seed_data()
    data["categories"][0]["description"] = "언어 기초"
    data["admins"] = [{"id": "auth-admin-1", "email": "ops@example.com", "name": "운영자"}]
    repo = InMemoryCurationRepo()
    profiles = InMemoryProfileDirectory()

    counts = seed_catalog(repo, data, profiles=profiles)

    assert counts["admins"] == 1
    assert profiles.ensure_profile("auth-admin-1")["role"] == "admin"
    assert repo.list_categories()[0]["description"] == "언어 기초"
