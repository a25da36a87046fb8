"""
StagingEngine — holds the AI's proposed vault changes until the author
approves or rejects them.

Pure Python + asyncio. No UI imports. The presentation layer reads the
snapshot properties (`pending`, `pending_count`, `pending_breakdown`,
`get_live_change`) and subscribes for change notifications; every mutation
goes through the methods below.

Rules the engine keeps:
  - at most one pending record per target; a newer proposal for the same
    target replaces the older one in place
  - status only moves pending → approved or pending → rejected
  - a record is flipped to approved only after its store write resolves; if
    the write fails the record stays pending with its edits intact
  - one store write per approval, even if approve() is called again while
    the first call is still in flight
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from models.changes import (
    CHANGE_TYPES,
    ENTITY_TYPES,
    ChangeRecord,
    change_list_adapter,
    change_record_adapter,
)
from models.entities import LorebookEntry, VaultLorebook
from staging.errors import ChangeValidationError, CommitError, UnknownChangeError

logger = logging.getLogger("StagingEngine")

Listener = Callable[[str, Any], None]

_NOUNS = {
    "character": ("character", "characters"),
    "lorebook-entry": ("entry", "entries"),
    "scenario": ("scenario", "scenarios"),
    "lorebook": ("lorebook", "lorebooks"),
}


def parse_change(raw: Any) -> ChangeRecord:
    """Validate a raw proposal (dict or model) into a change record.

    Raises:
        ChangeValidationError: the proposal matches no (entity_type, action) shape.
    """
    if isinstance(raw, CHANGE_TYPES):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    try:
        return change_record_adapter.validate_python(raw)
    except ValidationError as e:
        raise ChangeValidationError(f"Malformed change proposal: {e}") from e


def _is_lorebook_create(change) -> bool:
    return change.entity_type == "lorebook" and change.action == "create"


def _consume_result(task: "asyncio.Task") -> None:
    # Keeps asyncio quiet when every awaiting caller was cancelled.
    if not task.cancelled():
        task.exception()


class StagingEngine:
    """Explicit state container for pending vault changes.

    Usage:
        engine = StagingEngine(adapter=CommitAdapter(characters, lorebooks, scenarios))
        change = engine.add(raw_proposal)
        engine.update(change.id, {"name": "Anna"})
        await engine.approve(change.id)
    """

    def __init__(self, adapter=None):
        self.adapter = adapter
        self._records: Dict[str, ChangeRecord] = {}  # insertion-ordered
        self._aliases: Dict[str, str] = {}  # superseded id → replacement id
        self._inflight: Dict[str, asyncio.Task] = {}
        self._deferred: Dict[Tuple[str, ...], ChangeRecord] = {}
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener(event, change)`. Returns an unsubscribe callable.

        Events: added, replaced, updated, approved, rejected.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, change) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, change)
            except Exception as e:
                logger.error(f"Listener failed on '{event}' for {change.id[:8]}: {e}")

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def add(self, raw: Any) -> Optional[ChangeRecord]:
        """Stage a proposal. Returns the staged (or deferred) record, or None if dropped.

        Malformed proposals are logged and dropped. A pending record for the
        same target is replaced in place; the newcomer keeps its own id and the
        old id keeps resolving through get_live_change(). Re-delivery of an id
        the engine already holds is a no-op, so replaying a stream never
        clobbers the author's edits.

        A proposal whose target has an approval in flight is deferred: it is
        returned, `is_deferred()` is True for it, and it is staged once that
        commit settles.
        """
        try:
            change = parse_change(raw)
        except ChangeValidationError as e:
            logger.warning(f"Dropped proposal: {e}")
            return None

        if not change.is_pending:
            logger.warning(f"Dropped {change.status} proposal {change.id[:8]} (only pending changes stage)")
            return None

        if change.id in self._records or self.is_deferred(change.id):
            logger.debug(f"Change {change.id[:8]} already staged, ignoring re-delivery")
            return None

        key = change.target_key
        if key is not None:
            if self._inflight_for(key):
                superseded = self._deferred.get(key)
                if superseded is not None:
                    self._aliases[superseded.id] = change.id
                self._deferred[key] = change
                logger.info(
                    f"Deferred {change.entity_type} {change.action} {change.id[:8]}: "
                    f"target has an approval in flight"
                )
                return change
            old = self._find_pending(key)
            if old is not None:
                self._replace(old, change)
                logger.info(
                    f"Replaced pending {change.entity_type} {change.action} "
                    f"{old.id[:8]} → {change.id[:8]}"
                )
                self._notify("replaced", change)
                return change

        self._records[change.id] = change
        logger.info(
            f"Staged {change.entity_type} {change.action} "
            f"\"{change.display_name}\" (id={change.id[:8]})"
        )
        self._notify("added", change)
        return change

    def update(self, change_id: str, payload: Dict[str, Any]) -> bool:
        """Merge the author's edits into a pending record's data. Returns True if applied.

        `previous` / `previous_entries` are never touched. Unknown, terminal,
        in-flight and delete records are left alone.
        """
        change = self._records.get(change_id)
        if change is None or not change.is_pending or change_id in self._inflight:
            return False
        if "data" not in type(change).model_fields:
            logger.warning(f"Change {change_id[:8]} is a {change.action}; it has no data to edit")
            return False
        payload = {k: v for k, v in payload.items() if k != "id"}
        if not payload:
            return False
        try:
            edited = change.with_edits(payload)
        except ValidationError as e:
            logger.warning(f"Rejected edit to {change_id[:8]}: {e}")
            return False
        self._records[change_id] = edited
        self._notify("updated", edited)
        return True

    def reject(self, change_id: str) -> bool:
        """Mark a pending record rejected. Never touches the stores.

        Returns True if the status changed.
        """
        change = self._records.get(change_id)
        if change is None or not change.is_pending:
            return False
        if change_id in self._inflight:
            logger.warning(f"Ignoring reject of {change_id[:8]}: approval already in flight")
            return False
        rejected = change.with_status("rejected")
        self._records[change_id] = rejected
        logger.info(f"Rejected {change.entity_type} {change.action} \"{change.display_name}\"")
        self._notify("rejected", rejected)
        return True

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def approve(self, change_id: str, adapter=None) -> None:
        """Commit a pending record through the commit adapter.

        Approving a terminal record is a no-op. A second call while the first
        is in flight waits on the same commit instead of writing again.

        Raises:
            UnknownChangeError: the id was never staged.
            CommitError: the store write failed; the record stays pending.
        """
        change = self._records.get(change_id)
        if change is None:
            raise UnknownChangeError(change_id)

        task = self._inflight.get(change_id)
        if task is None:
            if not change.is_pending:
                logger.debug(f"Change {change_id[:8]} already {change.status}")
                return
            adapter = adapter or self.adapter
            if adapter is None:
                raise RuntimeError("StagingEngine has no commit adapter configured.")
            task = asyncio.ensure_future(self._commit(change, adapter))
            task.add_done_callback(_consume_result)
            self._inflight[change_id] = task

        # Shielded: a cancelled caller must not abort a write already issued.
        await asyncio.shield(task)

    async def _commit(self, change, adapter) -> None:
        try:
            await adapter.commit(change)
        except CommitError as e:
            logger.warning(f"Approval of {change.id[:8]} failed, left pending: {e}")
            raise
        except Exception as e:
            logger.warning(f"Approval of {change.id[:8]} failed, left pending: {e}")
            raise CommitError(change.id, str(e), cause=e) from e
        else:
            current = self._records.get(change.id)
            if current is not None:
                approved = current.with_status("approved")
                self._records[change.id] = approved
                self._notify("approved", approved)
        finally:
            self._inflight.pop(change.id, None)
            self._release_deferred(change.target_key)

    async def approve_all(self, adapter=None) -> List[CommitError]:
        """Approve every pending record, one at a time.

        Lorebook creates go first (entry changes may target them); otherwise
        insertion order is kept. Failures are collected, not raised, and the
        failed records stay pending.

        Returns:
            The commit errors, empty on full success.
        """
        queue = sorted(self.pending, key=lambda c: 0 if _is_lorebook_create(c) else 1)
        failures: List[CommitError] = []
        applied = 0
        for change in queue:
            current = self._records.get(change.id)
            if current is None or not current.is_pending:
                continue
            try:
                await self.approve(change.id, adapter)
            except CommitError as e:
                failures.append(e)
            else:
                applied += 1
        logger.info(f"Approve all: {applied} applied, {len(failures)} failed")
        return failures

    def is_in_flight(self, change_id: str) -> bool:
        return change_id in self._inflight

    def is_deferred(self, change_id: str) -> bool:
        """True while a proposal waits for its target's in-flight approval to settle."""
        return any(c.id == change_id for c in self._deferred.values())

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    def get_live_change(self, change_id: str) -> Optional[ChangeRecord]:
        """Current state of a change, following replacements by newer proposals.

        Deferred proposals resolve too, before they are staged.
        """
        seen = set()
        while change_id in self._aliases and change_id not in seen:
            seen.add(change_id)
            change_id = self._aliases[change_id]
        change = self._records.get(change_id)
        if change is None:
            change = next((c for c in self._deferred.values() if c.id == change_id), None)
        return change

    @property
    def records(self) -> List[ChangeRecord]:
        """Every record in insertion order, including approved and rejected ones."""
        return list(self._records.values())

    @property
    def pending(self) -> List[ChangeRecord]:
        return [c for c in self._records.values() if c.is_pending]

    @property
    def pending_count(self) -> int:
        return sum(1 for c in self._records.values() if c.is_pending)

    @property
    def pending_breakdown(self) -> Dict[str, int]:
        counts = {entity_type: 0 for entity_type in ENTITY_TYPES}
        for change in self.pending:
            counts[change.entity_type] += 1
        return counts

    def breakdown_summary(self) -> str:
        """Human-readable breakdown, e.g. "2 characters, 1 entry"."""
        counts: Dict[str, int] = {}
        for change in self.pending:
            counts[change.entity_type] = counts.get(change.entity_type, 0) + 1
        parts = []
        for entity_type, count in counts.items():
            singular, plural = _NOUNS[entity_type]
            parts.append(f"{count} {plural if count > 1 else singular}")
        return ", ".join(parts)

    def pending_for_lorebook(self, lorebook_id: str) -> List[ChangeRecord]:
        """Pending entry changes for one lorebook, in insertion order."""
        return [
            c for c in self.pending
            if c.entity_type == "lorebook-entry" and c.lorebook_id == lorebook_id
        ]

    def preview_lorebook(self, lorebook_id: str, lorebooks) -> Optional[VaultLorebook]:
        """A throwaway copy of a lorebook with its pending entry updates overlaid.

        For a lorebook that only exists as a create proposal, returns an empty
        lorebook built from the proposal. Nothing here is persisted.
        """
        stored = lorebooks.get_by_id(lorebook_id)
        if stored is None:
            proposal = next(
                (c for c in self._records.values()
                 if _is_lorebook_create(c) and c.lorebook_id == lorebook_id
                 and c.status != "rejected"),
                None,
            )
            if proposal is None:
                return None
            return VaultLorebook(id=lorebook_id, **proposal.data.model_dump())

        preview = stored.model_copy(deep=True)
        entries = list(preview.entries)
        for change in self.pending_for_lorebook(lorebook_id):
            if change.action != "update":
                continue
            idx = preview.find_entry(change.target_id)
            if idx is None:
                continue
            entries[idx] = LorebookEntry.model_validate({
                **entries[idx].model_dump(),
                **change.data,
                "id": entries[idx].id,
            })
        return preview.model_copy(update={"entries": entries})

    # ------------------------------------------------------------------
    # Persistence of the change list (conversation save / load)
    # ------------------------------------------------------------------

    def dump(self) -> List[Dict[str, Any]]:
        """JSON-safe snapshot of every record, for saving a conversation."""
        return [change.model_dump(mode="json") for change in self._records.values()]

    def load(self, data: List[Dict[str, Any]]) -> int:
        """Replace the engine state with a snapshot from dump(). Returns the record count.

        Raises:
            ChangeValidationError: the snapshot is malformed; state is untouched.
        """
        try:
            changes = change_list_adapter.validate_python(data)
        except ValidationError as e:
            raise ChangeValidationError(f"Malformed change snapshot: {e}") from e
        self.reset()
        for change in changes:
            if change.is_pending:
                self.add(change)
            else:
                self._records[change.id] = change
        logger.info(f"Loaded {len(self._records)} changes ({self.pending_count} pending)")
        return len(self._records)

    def reset(self) -> None:
        """Forget every record (new conversation). In-flight commits still finish."""
        self._records.clear()
        self._aliases.clear()
        self._deferred.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find_pending(self, key: Tuple[str, ...]) -> Optional[ChangeRecord]:
        for change in self._records.values():
            if change.is_pending and change.target_key == key:
                return change
        return None

    def _inflight_for(self, key: Tuple[str, ...]) -> bool:
        for change_id in self._inflight:
            change = self._records.get(change_id)
            if change is not None and change.target_key == key:
                return True
        return False

    def _replace(self, old, new) -> None:
        self._records = {
            (new.id if cid == old.id else cid): (new if cid == old.id else change)
            for cid, change in self._records.items()
        }
        self._aliases[old.id] = new.id

    def _release_deferred(self, key: Optional[Tuple[str, ...]]) -> None:
        if key is None:
            return
        deferred = self._deferred.pop(key, None)
        if deferred is not None:
            self.add(deferred)
