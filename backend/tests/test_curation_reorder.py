"""Unit tests for drag-and-drop reorder rules.

Focus:
    - Insert index correction when the dragged row sat before the target
    - `move_item` purity and bounds checks
    - DragTracker gesture lifecycle (over/leave/cancel/end)
"""
from __future__ import annotations

import pytest

from backend.curation.membership import OrderedCollection, PersistedMember
from backend.curation.reorder import DragTracker, compute_insert_index, move_item


@pytest.mark.parametrize(
    "from_index,to_index,position,expected",
    [
        (0, 2, "below", 2),
        (3, 1, "below", 2),
        (0, 2, "above", 1),
        (3, 1, "above", 1),
        (1, 2, "above", 1),
        (2, 1, "below", 2),
    ],
)
def test_compute_insert_index(from_index, to_index, position, expected):
    assert compute_insert_index(from_index, to_index, position) == expected


def test_compute_insert_index_rejects_unknown_position():
    with pytest.raises(ValueError):
        compute_insert_index(0, 1, "middle")  # type: ignore[arg-type]


def test_move_below_later_item():
    assert move_item(list("ABCD"), 0, 2, "below") == list("BCAD")


def test_move_above_earlier_item():
    assert move_item(list("ABCD"), 3, 1, "above") == list("ADBC")


def test_move_to_first_and_last_positions():
    assert move_item(list("ABCD"), 2, 0, "above") == list("CABD")
    assert move_item(list("ABCD"), 1, 3, "below") == list("ACDB")


def test_move_onto_itself_is_noop_and_returns_copy():
    items = list("ABC")
    result = move_item(items, 1, 1, "below")
    assert result == items
    assert result is not items


def test_move_does_not_mutate_input():
    items = list("ABCD")
    move_item(items, 0, 3, "below")
    assert items == list("ABCD")


@pytest.mark.parametrize("from_index,to_index", [(-1, 0), (0, 4), (4, 0)])
def test_move_out_of_range_raises(from_index, to_index):
    with pytest.raises(IndexError):
        move_item(list("ABCD"), from_index, to_index, "above")


def test_move_rejects_invalid_position():
    with pytest.raises(ValueError):
        move_item(list("AB"), 0, 1, "inside")  # type: ignore[arg-type]


def _collection(*child_ids: str) -> OrderedCollection:
    members = [
        PersistedMember(id=f"m-{cid}", parent_id="p1", child_id=cid, order=idx)
        for idx, cid in enumerate(child_ids)
    ]
    return OrderedCollection("p1", members)


def test_drag_over_uses_row_midpoint():
    tracker = DragTracker()
    tracker.start(0)
    tracker.over(2, pointer_y=104.0, row_top=100.0, row_height=20.0)
    assert tracker.drag_over_index == 2
    assert tracker.drop_position == "above"
    assert tracker.indicator(2) == "above"
    tracker.over(2, pointer_y=115.0, row_top=100.0, row_height=20.0)
    assert tracker.drop_position == "below"
    assert tracker.indicator(1) is None


def test_drag_over_own_row_is_ignored():
    tracker = DragTracker()
    tracker.start(1)
    tracker.over(1, pointer_y=0.0, row_top=0.0, row_height=10.0)
    assert tracker.drag_over_index is None
    assert tracker.drop_position is None


def test_drag_over_without_start_is_ignored():
    tracker = DragTracker()
    tracker.over(1, pointer_y=0.0, row_top=0.0, row_height=10.0)
    assert tracker.drag_over_index is None


def test_drag_end_applies_single_move_and_clears():
    coll = _collection("A", "B", "C", "D")
    tracker = DragTracker()
    tracker.start(0)
    tracker.over(2, pointer_y=19.0, row_top=10.0, row_height=10.0)
    assert tracker.end(coll) is True
    assert coll.child_ids() == ["B", "C", "A", "D"]
    assert tracker.dragged_index is None
    assert tracker.drag_over_index is None
    assert tracker.drop_position is None


def test_drag_released_outside_target_leaves_state_untouched():
    coll = _collection("A", "B", "C", "D")
    before = coll.items
    tracker = DragTracker()
    tracker.start(3)
    tracker.over(1, pointer_y=0.0, row_top=0.0, row_height=10.0)
    tracker.leave()
    assert tracker.end(coll) is False
    assert coll.items == before


def test_drag_cancel_leaves_state_untouched():
    coll = _collection("A", "B", "C")
    before = coll.items
    tracker = DragTracker()
    tracker.start(0)
    tracker.over(2, pointer_y=9.0, row_top=0.0, row_height=10.0)
    tracker.cancel()
    assert tracker.end(coll) is False
    assert coll.items == before
