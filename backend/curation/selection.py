"""Candidate picker for adding children to an ordered collection."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from .membership import OrderedCollection, PendingMember


class CandidateSelection:
    """Multi-select over candidates that are not yet members.

    Already-added children never appear in `available`, which is what keeps
    duplicate membership out of the collection in the first place.
    """

    def __init__(self, candidates: Sequence[Mapping[str, Any]], collection: OrderedCollection) -> None:
        self._candidates = [dict(c) for c in candidates]
        self._collection = collection
        self._selected: List[str] = []
        self.is_open = True

    @property
    def selected(self) -> List[str]:
        return list(self._selected)

    def available(self) -> List[Dict[str, Any]]:
        added = set(self._collection.child_ids())
        return [c for c in self._candidates if str(c.get("id")) not in added]

    def toggle(self, child_id: str) -> None:
        if child_id in self._selected:
            self._selected.remove(child_id)
            return
        if child_id not in {str(c.get("id")) for c in self.available()}:
            raise ValueError("unknown_candidate")
        self._selected.append(child_id)

    def confirm(self) -> List[PendingMember]:
        if not self._selected:
            return []
        snapshots = {str(c.get("id")): c for c in self._candidates}
        added = self._collection.append(self._selected, snapshots)
        self._selected = []
        self.is_open = False
        return added

    def cancel(self) -> None:
        self._selected = []
        self.is_open = False


__all__ = ["CandidateSelection"]
