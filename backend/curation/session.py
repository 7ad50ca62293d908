"""
Admin edit sessions for ordered memberships.

Why:
    The admin screens edit a parent (lecture or curriculum) and its ordered
    children as one working copy that is only written back on explicit save.
    An `EditSession` owns that working copy, its load-time baseline, the
    candidate picker and the single in-flight save guard.

Lifecycle:
    load -> (append/remove/move)* -> save [-> more edits -> save] -> discard.
    Discarding never touches the data store.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional

from .errors import LoadFailed, SaveFailed, SaveInProgress
from .kinds import CatalogFilter, MembershipKind, normalize_parent_fields
from .membership import OrderedCollection, PersistedMember, member_from_row
from .reconcile import CurationRepoProtocol, ReconcilePlan, ReconcileSubmitter, describe_failure
from .reorder import DropPosition
from .selection import CandidateSelection

logger = logging.getLogger("ganui.curation")

_NOT_FOUND_MESSAGES = {
    "lecture": "강의를 찾을 수 없습니다",
    "curriculum": "커리큘럼을 찾을 수 없습니다",
}


@dataclass(frozen=True)
class SaveResult:
    kind: str
    parent: dict
    plan: ReconcilePlan
    members: tuple[PersistedMember, ...]


SaveListener = Callable[[SaveResult], None]


class EditSession:
    def __init__(
        self,
        *,
        session_id: str,
        owner_sub: str,
        kind: MembershipKind,
        parent: dict,
        collection: OrderedCollection,
        repo: CurationRepoProtocol,
        expires_at: Optional[float] = None,
        skip_unchanged: bool = False,
    ) -> None:
        self.session_id = session_id
        self.owner_sub = owner_sub
        self.kind = kind
        self.parent = dict(parent)
        self.collection = collection
        self.baseline: set[str] = set(collection.persisted_ids())
        self.expires_at = expires_at
        self._repo = repo
        self._submitter = ReconcileSubmitter(repo, kind, skip_unchanged=skip_unchanged)
        self._save_lock = threading.Lock()
        self._listeners: List[SaveListener] = []
        self.selection: Optional[CandidateSelection] = None

    @classmethod
    def load(
        cls,
        repo: CurationRepoProtocol,
        kind: MembershipKind,
        parent_id: str,
        *,
        owner_sub: str,
        ttl_seconds: Optional[int] = None,
        skip_unchanged: bool = False,
    ) -> "EditSession":
        """Fetch the parent and its ordered members; raise LoadFailed otherwise."""
        try:
            parent = repo.get_parent(kind.name, parent_id)
        except Exception as exc:
            logger.warning("load parent failed kind=%s pid=%s err=%s", kind.name, parent_id[-6:], exc.__class__.__name__)
            raise LoadFailed("데이터를 불러오지 못했습니다") from exc
        if not parent:
            raise LoadFailed(_NOT_FOUND_MESSAGES.get(kind.name, "찾을 수 없습니다"), not_found=True)
        try:
            rows = repo.list_members(kind.name, parent_id)
        except Exception as exc:
            logger.warning("load members failed kind=%s pid=%s err=%s", kind.name, parent_id[-6:], exc.__class__.__name__)
            raise LoadFailed("데이터를 불러오지 못했습니다") from exc
        members = [member_from_row(r) for r in sorted(rows, key=lambda r: int(r.get("order") or 0))]
        expires_at = time.time() + ttl_seconds if ttl_seconds else None
        return cls(
            session_id=secrets.token_urlsafe(18),
            owner_sub=owner_sub,
            kind=kind,
            parent=parent,
            collection=OrderedCollection(str(parent["id"]), members),
            repo=repo,
            expires_at=expires_at,
            skip_unchanged=skip_unchanged,
        )

    @property
    def parent_id(self) -> str:
        return self.collection.parent_id

    @property
    def saving(self) -> bool:
        return self._save_lock.locked()

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now if now is not None else time.time())

    def on_saved(self, listener: SaveListener) -> None:
        self._listeners.append(listener)

    def open_selection(self) -> CandidateSelection:
        candidates = self._repo.list_candidates(self.kind.name, CatalogFilter(include_unpublished=True))
        self.selection = CandidateSelection(candidates, self.collection)
        return self.selection

    @contextmanager
    def _editing(self) -> Iterator[None]:
        # Edits and saves share one lock: the working copy is frozen while a
        # save diffs and writes it.
        if not self._save_lock.acquire(blocking=False):
            raise SaveInProgress("저장 중에는 편집할 수 없습니다")
        try:
            yield
        finally:
            self._save_lock.release()

    def add_children(self, child_ids: List[str]) -> None:
        """Select `child_ids` in a fresh picker and confirm in one step."""
        selection = self.open_selection()
        with self._editing():
            try:
                for cid in child_ids:
                    selection.toggle(cid)
            except ValueError:
                selection.cancel()
                raise
            selection.confirm()

    def remove_item(self, key: str) -> bool:
        with self._editing():
            return self.collection.remove(key)

    def move_item(self, from_index: int, to_index: int, position: DropPosition) -> None:
        with self._editing():
            self.collection.move(from_index, to_index, position)

    def save(self, fields: Optional[dict] = None) -> SaveResult:
        """Write parent attributes and reconcile members.

        Raises:
            SaveInProgress: another save of this session is running.
            ValueError: `fields` failed validation (nothing was written).
            SaveFailed: a write was rejected; edits stay in memory for retry.
        """
        if not self._save_lock.acquire(blocking=False):
            raise SaveInProgress("이미 저장 중입니다")
        try:
            cleaned = normalize_parent_fields(self.kind, fields, partial=True) if fields else {}
            if cleaned:
                try:
                    updated = self._repo.update_parent(self.kind.name, self.parent_id, cleaned)
                except Exception as exc:
                    logger.warning("parent update failed kind=%s pid=%s err=%s", self.kind.name, self.parent_id[-6:], exc.__class__.__name__)
                    raise SaveFailed(describe_failure(exc)) from exc
                if not updated:
                    raise SaveFailed(_NOT_FOUND_MESSAGES.get(self.kind.name, "찾을 수 없습니다"))
                self.parent = dict(updated)
            outcome = self._submitter.submit(self.collection, self.baseline)
            self._rebase(outcome.plan)
            result = SaveResult(
                kind=self.kind.name,
                parent=dict(self.parent),
                plan=outcome.plan,
                members=tuple(m for m in self.collection.items if isinstance(m, PersistedMember)),
            )
        finally:
            self._save_lock.release()
        logger.info(
            "saved kind=%s pid=%s deleted=%d inserted=%d reordered=%d",
            self.kind.name,
            self.parent_id[-6:],
            len(result.plan.to_delete),
            len(result.plan.to_insert),
            len(result.plan.to_reorder),
        )
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as exc:
                logger.warning("save listener failed kind=%s err=%s", self.kind.name, exc.__class__.__name__)
        return result

    def _rebase(self, plan: ReconcilePlan) -> None:
        """Record the orders the executed plan wrote.

        The baseline itself was kept current by the submitter (landed deletes
        left it, landed inserts joined it), so it reflects the data store even
        if the working copy changed behind the session's back.
        """
        written = {op.member_id: op.order for op in plan.to_reorder}
        for member in self.collection.items:
            if not isinstance(member, PersistedMember) or member.id not in written:
                continue
            if member.order != written[member.id]:
                self.collection.replace(
                    member.id,
                    PersistedMember(
                        id=member.id,
                        parent_id=member.parent_id,
                        child_id=member.child_id,
                        order=written[member.id],
                        child=member.child,
                    ),
                )


class EditSessionStore:
    """In-memory registry of open edit sessions keyed by opaque id.

    Abandoned sessions (tab closed without discard) are swept whenever a new
    session is registered, so the registry stays bounded by live sessions.
    """

    def __init__(self) -> None:
        self._data: Dict[str, EditSession] = {}
        self._lock = threading.Lock()

    def add(self, session: EditSession) -> EditSession:
        with self._lock:
            self._purge_expired_locked(time.time())
            self._data[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[EditSession]:
        with self._lock:
            rec = self._data.get(session_id)
            if rec and rec.is_expired():
                self._data.pop(session_id, None)
                return None
            return rec

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._data.pop(session_id, None) is not None

    def purge_expired(self, now: Optional[float] = None) -> int:
        with self._lock:
            return self._purge_expired_locked(now if now is not None else time.time())

    def _purge_expired_locked(self, now: float) -> int:
        stale = [sid for sid, rec in self._data.items() if rec.is_expired(now)]
        for sid in stale:
            del self._data[sid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._data)


__all__ = ["SaveResult", "EditSession", "EditSessionStore"]
