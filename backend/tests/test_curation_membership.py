"""Unit tests for the ordered membership working copy and the candidate picker."""
from __future__ import annotations

import pytest

from backend.curation.membership import (
    OrderedCollection,
    PendingMember,
    PersistedMember,
    member_from_row,
)
from backend.curation.selection import CandidateSelection


def _persisted(*child_ids: str) -> list[PersistedMember]:
    return [
        PersistedMember(id=f"m{idx + 1}", parent_id="lec-1", child_id=cid, order=idx)
        for idx, cid in enumerate(child_ids)
    ]


def test_member_from_row_defaults_missing_order_and_child():
    member = member_from_row({"id": 7, "parent_id": "p", "child_id": "c", "order": None})
    assert member == PersistedMember(id="7", parent_id="p", child_id="c", order=0)
    assert member.child == {}
    assert member.key == "7"


def test_collection_rejects_duplicate_children_on_load():
    rows = _persisted("v1", "v2") + [PersistedMember(id="m9", parent_id="lec-1", child_id="v1", order=2)]
    with pytest.raises(ValueError, match="duplicate_child"):
        OrderedCollection("lec-1", rows)


def test_append_assigns_unique_pending_keys_per_batch():
    coll = OrderedCollection("lec-1", _persisted("v1"))
    first = coll.append(["v2", "v3"], {"v2": {"id": "v2", "title": "둘"}})
    second = coll.append(["v4"])
    assert [m.local_key for m in first] == ["pending-1-0", "pending-1-1"]
    assert [m.local_key for m in second] == ["pending-2-0"]
    assert [m.order for m in first + second] == [1, 2, 3]
    assert first[0].child == {"id": "v2", "title": "둘"}
    assert first[1].child == {}
    assert all(isinstance(m, PendingMember) for m in coll.items[1:])
    assert coll.child_ids() == ["v1", "v2", "v3", "v4"]


def test_append_duplicate_is_rejected_atomically():
    coll = OrderedCollection("lec-1", _persisted("v1", "v2"))
    with pytest.raises(ValueError, match="duplicate_child"):
        coll.append(["v3", "v1"])
    with pytest.raises(ValueError, match="duplicate_child"):
        coll.append(["v3", "v3"])
    assert coll.child_ids() == ["v1", "v2"]


def test_no_duplicate_child_after_append_remove_sequences():
    coll = OrderedCollection("lec-1", _persisted("v1", "v2"))
    coll.append(["v3"])
    assert coll.remove("m1") is True
    coll.append(["v1"])
    pending_key = coll.items[-1].key
    assert coll.remove(pending_key) is True
    coll.append(["v1"])
    ids = coll.child_ids()
    assert len(ids) == len(set(ids))
    assert sorted(ids) == ["v1", "v2", "v3"]


def test_remove_unknown_key_returns_false():
    coll = OrderedCollection("lec-1", _persisted("v1"))
    assert coll.remove("nope") is False
    assert len(coll) == 1


def test_remove_does_not_renumber_orders():
    coll = OrderedCollection("lec-1", _persisted("v1", "v2", "v3"))
    coll.remove("m1")
    assert [m.order for m in coll.items] == [1, 2]


def test_move_and_replace():
    coll = OrderedCollection("lec-1", _persisted("v1", "v2"))
    added = coll.append(["v3"])
    coll.move(2, 0, "above")
    assert coll.child_ids() == ["v3", "v1", "v2"]
    landed = PersistedMember(id="m3", parent_id="lec-1", child_id="v3", order=0)
    coll.replace(added[0].local_key, landed)
    assert coll.items[0] is landed
    assert coll.persisted_ids() == ["m3", "m1", "m2"]
    with pytest.raises(KeyError):
        coll.replace("pending-1-0", landed)


def test_iteration_is_a_snapshot():
    coll = OrderedCollection("lec-1", _persisted("v1", "v2"))
    for member in coll:
        coll.remove(member.key)
    assert len(coll) == 0


def _candidates() -> list[dict]:
    return [
        {"id": "v1", "title": "변수"},
        {"id": "v2", "title": "조건문"},
        {"id": "v3", "title": "반복문"},
    ]


def test_selection_hides_existing_members():
    coll = OrderedCollection("lec-1", _persisted("v1"))
    selection = CandidateSelection(_candidates(), coll)
    assert [c["id"] for c in selection.available()] == ["v2", "v3"]
    with pytest.raises(ValueError, match="unknown_candidate"):
        selection.toggle("v1")
    with pytest.raises(ValueError, match="unknown_candidate"):
        selection.toggle("v404")


def test_selection_toggle_is_reversible():
    selection = CandidateSelection(_candidates(), OrderedCollection("lec-1"))
    selection.toggle("v2")
    selection.toggle("v3")
    selection.toggle("v2")
    assert selection.selected == ["v3"]


def test_selection_confirm_appends_in_selection_order_with_snapshots():
    coll = OrderedCollection("lec-1", _persisted("v1"))
    selection = CandidateSelection(_candidates(), coll)
    selection.toggle("v3")
    selection.toggle("v2")
    added = selection.confirm()
    assert [m.child_id for m in added] == ["v3", "v2"]
    assert added[0].child["title"] == "반복문"
    assert coll.child_ids() == ["v1", "v3", "v2"]
    assert selection.is_open is False
    assert selection.selected == []
    assert selection.available() == []


def test_selection_confirm_with_nothing_selected_keeps_picker_open():
    coll = OrderedCollection("lec-1")
    selection = CandidateSelection(_candidates(), coll)
    assert selection.confirm() == []
    assert selection.is_open is True
    assert len(coll) == 0


def test_selection_cancel_discards_choices():
    coll = OrderedCollection("lec-1")
    selection = CandidateSelection(_candidates(), coll)
    selection.toggle("v1")
    selection.cancel()
    assert selection.is_open is False
    assert selection.selected == []
    assert len(coll) == 0
