"""
Diff an edited membership list against its load-time baseline and apply it.

Behavior:
    - Deletes: baseline ids that are no longer in the collection.
    - Inserts: pending members, each at its current index.
    - Order updates: every persisted member gets `order = index`. With
      `skip_unchanged=True` members already at their index are skipped; the
      resulting persisted state is the same.
    - Phases run strictly delete -> insert -> update.

Partial failure:
    There is no transaction around the batch. Progress is written back into
    the session as each operation succeeds (a landed insert replaces its
    pending member and joins the baseline, a landed delete leaves it), so retrying a failed
    save never inserts the same child twice.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable, List, MutableSet, Optional, Protocol, Sequence, Tuple

from .errors import CurationError, SaveFailed
from .kinds import CatalogFilter, MembershipKind
from .membership import Member, OrderedCollection, PendingMember, PersistedMember, member_from_row

logger = logging.getLogger("ganui.curation")


class CurationRepoProtocol(Protocol):
    def get_parent(self, kind: str, parent_id: str) -> Optional[dict]:
        ...

    def list_parents(self, kind: str, filters: CatalogFilter) -> List[dict]:
        ...

    def create_parent(self, kind: str, fields: dict) -> dict:
        ...

    def update_parent(self, kind: str, parent_id: str, fields: dict) -> Optional[dict]:
        ...

    def list_members(self, kind: str, parent_id: str) -> List[dict]:
        ...

    def list_candidates(self, kind: str, filters: CatalogFilter) -> List[dict]:
        ...

    def delete_member(self, kind: str, member_id: str) -> bool:
        ...

    def insert_member(self, kind: str, parent_id: str, child_id: str, order: int) -> dict:
        ...

    def update_member_order(self, kind: str, member_id: str, order: int) -> bool:
        ...


@dataclass(frozen=True)
class InsertOp:
    local_key: str
    child_id: str
    order: int


@dataclass(frozen=True)
class OrderOp:
    member_id: str
    order: int


@dataclass(frozen=True)
class ReconcilePlan:
    to_delete: Tuple[str, ...] = ()
    to_insert: Tuple[InsertOp, ...] = ()
    to_reorder: Tuple[OrderOp, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.to_delete or self.to_insert or self.to_reorder)

    def as_dict(self) -> dict:
        return {
            "delete": list(self.to_delete),
            "insert": [{"child_id": op.child_id, "order": op.order} for op in self.to_insert],
            "reorder": [{"id": op.member_id, "order": op.order} for op in self.to_reorder],
        }


def plan_reconciliation(
    members: Sequence[Member],
    baseline: Iterable[str],
    *,
    skip_unchanged: bool = False,
) -> ReconcilePlan:
    current_ids = {m.id for m in members if isinstance(m, PersistedMember)}
    # Keep baseline iteration order so deletes are issued deterministically.
    to_delete = tuple(dict.fromkeys(mid for mid in baseline if mid not in current_ids))
    to_insert = tuple(
        InsertOp(local_key=m.local_key, child_id=m.child_id, order=idx)
        for idx, m in enumerate(members)
        if isinstance(m, PendingMember)
    )
    to_reorder = tuple(
        OrderOp(member_id=m.id, order=idx)
        for idx, m in enumerate(members)
        if isinstance(m, PersistedMember) and not (skip_unchanged and m.order == idx)
    )
    return ReconcilePlan(to_delete=to_delete, to_insert=to_insert, to_reorder=to_reorder)


def describe_failure(exc: BaseException) -> str:
    """Collapse any repository error into one message for the admin UI."""
    if isinstance(exc, CurationError):
        return str(exc)
    if isinstance(exc, ValueError) and str(exc):
        return f"저장에 실패했습니다 ({exc})"
    if isinstance(exc, PermissionError):
        return "저장 권한이 없습니다"
    if isinstance(exc, LookupError):
        return "저장할 항목을 찾을 수 없습니다"
    return f"저장에 실패했습니다 ({exc.__class__.__name__})"


@dataclass
class ReconcileOutcome:
    plan: ReconcilePlan
    inserted: List[PersistedMember] = field(default_factory=list)


class ReconcileSubmitter:
    """Apply a `ReconcilePlan` for one parent through the repository."""

    def __init__(self, repo: CurationRepoProtocol, kind: MembershipKind, *, skip_unchanged: bool = False) -> None:
        self._repo = repo
        self._kind = kind
        self.skip_unchanged = skip_unchanged

    def submit(self, collection: OrderedCollection, baseline: MutableSet[str]) -> ReconcileOutcome:
        plan = plan_reconciliation(collection.items, list(baseline), skip_unchanged=self.skip_unchanged)
        outcome = ReconcileOutcome(plan=plan)
        kind = self._kind.name
        try:
            for member_id in plan.to_delete:
                if not self._repo.delete_member(kind, member_id):
                    logger.info("member already gone kind=%s mid=%s", kind, member_id[-6:])
                baseline.discard(member_id)
            for op in plan.to_insert:
                pending_idx = collection.index_of(op.local_key)
                pending = collection.items[pending_idx] if pending_idx is not None else None
                row = self._repo.insert_member(kind, collection.parent_id, op.child_id, op.order)
                member = member_from_row(row)
                if not member.child and pending is not None:
                    member = PersistedMember(
                        id=member.id,
                        parent_id=member.parent_id,
                        child_id=member.child_id,
                        order=member.order,
                        child=dict(pending.child),
                    )
                if collection.index_of(op.local_key) is not None:
                    collection.replace(op.local_key, member)
                # a pending item dropped while its insert was in flight is deleted by the next save
                baseline.add(member.id)
                outcome.inserted.append(member)
            for op in plan.to_reorder:
                if not self._repo.update_member_order(kind, op.member_id, op.order):
                    logger.warning("order update matched no row kind=%s mid=%s", kind, op.member_id[-6:])
        except Exception as exc:
            logger.warning(
                "reconcile failed kind=%s pid=%s err=%s",
                kind,
                collection.parent_id[-6:],
                exc.__class__.__name__,
            )
            raise SaveFailed(describe_failure(exc)) from exc
        return outcome


__all__ = [
    "CurationRepoProtocol",
    "InsertOp",
    "OrderOp",
    "ReconcilePlan",
    "plan_reconciliation",
    "describe_failure",
    "ReconcileOutcome",
    "ReconcileSubmitter",
]
