"""
Ordered membership state for one parent aggregate during an edit session.

Model:
    A member is either `PersistedMember` (has the data store's id) or
    `PendingMember` (has a session-local key and no id yet). The sequence index
    is the authoritative order; the `order` field on each member is only the
    value it had when loaded or appended and is recomputed at save time.

Invariant:
    At most one member per `child_id`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import itertools
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from .reorder import DropPosition, move_item


@dataclass(frozen=True)
class PersistedMember:
    id: str
    parent_id: str
    child_id: str
    order: int
    child: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def key(self) -> str:
        return self.id


@dataclass(frozen=True)
class PendingMember:
    local_key: str
    parent_id: str
    child_id: str
    order: int
    child: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def key(self) -> str:
        return self.local_key


Member = Union[PersistedMember, PendingMember]


def member_from_row(row: Mapping[str, Any]) -> PersistedMember:
    """Build a persisted member from a repository row dict."""
    return PersistedMember(
        id=str(row["id"]),
        parent_id=str(row["parent_id"]),
        child_id=str(row["child_id"]),
        order=int(row.get("order") or 0),
        child=dict(row.get("child") or {}),
    )


class OrderedCollection:
    """Working copy of a parent's children; index position defines order."""

    def __init__(self, parent_id: str, members: Iterable[Member] = ()) -> None:
        self.parent_id = parent_id
        self._items: List[Member] = list(members)
        self._batches = itertools.count(1)
        seen: set[str] = set()
        for m in self._items:
            if m.child_id in seen:
                raise ValueError("duplicate_child")
            seen.add(m.child_id)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Member]:
        return iter(list(self._items))

    @property
    def items(self) -> tuple[Member, ...]:
        return tuple(self._items)

    def child_ids(self) -> List[str]:
        return [m.child_id for m in self._items]

    def index_of(self, key: str) -> Optional[int]:
        for idx, m in enumerate(self._items):
            if m.key == key:
                return idx
        return None

    def append(self, child_ids: Iterable[str], snapshots: Optional[Mapping[str, Mapping[str, Any]]] = None) -> List[PendingMember]:
        """Append pending members for `child_ids` at the end of the sequence.

        Keys combine a per-collection batch counter with the position inside
        the batch, so several items appended in one call never collide.
        Raises ValueError("duplicate_child") when an id is already present or
        repeated in the batch; nothing is appended in that case.
        """
        incoming = [str(cid) for cid in child_ids]
        present = set(self.child_ids())
        if len(set(incoming)) != len(incoming) or present.intersection(incoming):
            raise ValueError("duplicate_child")
        batch = next(self._batches)
        base = len(self._items)
        added: List[PendingMember] = []
        for i, cid in enumerate(incoming):
            snap = dict((snapshots or {}).get(cid) or {})
            added.append(
                PendingMember(
                    local_key=f"pending-{batch}-{i}",
                    parent_id=self.parent_id,
                    child_id=cid,
                    order=base + i,
                    child=snap,
                )
            )
        self._items.extend(added)
        return added

    def remove(self, key: str) -> bool:
        """Drop the member with id or local key `key`. Orders are not renumbered here."""
        idx = self.index_of(key)
        if idx is None:
            return False
        del self._items[idx]
        return True

    def move(self, from_index: int, to_index: int, position: DropPosition) -> None:
        self._items = move_item(self._items, from_index, to_index, position)

    def replace(self, key: str, member: Member) -> None:
        """Swap the member identified by `key` in place (used after a pending insert lands)."""
        idx = self.index_of(key)
        if idx is None:
            raise KeyError(key)
        self._items[idx] = member

    def persisted_ids(self) -> List[str]:
        return [m.id for m in self._items if isinstance(m, PersistedMember)]


__all__ = [
    "PersistedMember",
    "PendingMember",
    "Member",
    "member_from_row",
    "OrderedCollection",
]
