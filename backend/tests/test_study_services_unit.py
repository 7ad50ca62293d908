"""Unit tests for study services without HTTP.

Focus:
    - ProgressThrottle window, `mark` restarting it and per-key isolation
    - Completion threshold
    - Favorites toggle semantics and note update validation
"""
from __future__ import annotations

import pytest

from backend.study.progress import ProgressThrottle
from backend.study.repo_memory import InMemoryStudyRepo
from backend.study.services import (
    FavoritesService,
    NotesService,
    WatchHistoryService,
    WatchProgressInput,
    is_watch_completed,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_throttle_admits_once_per_window_and_key():
    clock = FakeClock()
    throttle = ProgressThrottle(10, clock=clock)
    assert throttle.admit(("u1", "v1")) is True
    assert throttle.admit(("u1", "v1")) is False
    assert throttle.admit(("u1", "v2")) is True
    assert throttle.admit(("u2", "v1")) is True
    clock.now = 9.99
    assert throttle.admit(("u1", "v1")) is False
    clock.now = 10.0
    assert throttle.admit(("u1", "v1")) is True


def test_throttle_mark_and_reset():
    clock = FakeClock()
    throttle = ProgressThrottle(10, clock=clock)
    clock.now = 5.0
    throttle.mark("k")
    clock.now = 14.0
    assert throttle.admit("k") is False
    throttle.reset("k")
    assert throttle.admit("k") is True
    throttle.reset()
    assert throttle.admit("k") is True


@pytest.mark.parametrize(
    "progress,duration,expected",
    [(0, 600, False), (539.9, 600, False), (540, 600, True), (600, 600, True), (10, 0, False)],
)
def test_completion_threshold(progress, duration, expected):
    assert is_watch_completed(progress, duration) is expected


def test_record_validates_before_touching_throttle():
    clock = FakeClock()
    throttle = ProgressThrottle(10, clock=clock)
    service = WatchHistoryService(InMemoryStudyRepo(), throttle)
    with pytest.raises(ValueError, match="invalid_progress"):
        service.record("u1", WatchProgressInput(video_id="v1", lecture_id="l1", progress=True, duration=10))
    saved, row = service.record("u1", WatchProgressInput(video_id="v1", lecture_id="l1", progress=1, duration=10))
    assert saved is True
    assert row["curriculum_id"] is None


def test_favorites_toggle_flips_state():
    service = FavoritesService(InMemoryStudyRepo())
    assert service.toggle("u1", "lec-1") is True
    assert service.is_favorite("u1", "lec-1") is True
    assert service.is_favorite("u2", "lec-1") is False
    assert service.toggle("u1", "lec-1") is False
    assert service.list_favorites("u1") == []
    with pytest.raises(ValueError, match="invalid_lecture_id"):
        service.toggle("u1", "  ")


def test_note_update_normalizes_optional_text():
    repo = InMemoryStudyRepo()
    service = NotesService(repo)
    note = service.create_note("u1", lecture_id="lec-1", content="메모", cue="질문", summary="요약")
    updated = service.update_note("u1", note["id"], cue="   ", summary=None, timestamp=12.7)
    assert updated["cue"] is None
    assert updated["summary"] is None
    assert updated["timestamp"] == 12
    assert service.update_note("u2", note["id"], content="x") is None
    with pytest.raises(ValueError, match="invalid_summary"):
        service.update_note("u1", note["id"], summary=["a"])


def test_throttle_forgets_keys_whose_window_closed():
    clock = FakeClock()
    throttle = ProgressThrottle(10, clock=clock)
    for i in range(50):
        throttle.admit(("u1", f"v{i}"))
    assert len(throttle) == 50

    clock.now = 10.0
    assert throttle.admit(("u2", "v0")) is True

    assert len(throttle) == 1
    clock.now = 15.0
    assert throttle.admit(("u2", "v0")) is False
