"""
CommitAdapter — turns an approved change record into entity store calls.

One branch per (entity_type, action). Every approval performs exactly one
logical store write (a single add, update or delete), so the only window in
which the vault and the staging engine can disagree is between that write
resolving and the engine flipping the record to approved.

Lorebook entries have no store of their own: entry changes read the owning
lorebook, edit its entry list by entry id, and write the whole list back.
"""

import logging
from typing import List, Optional, Tuple

from models.changes import EntryMerge
from models.entities import LorebookEntry, VaultLorebook
from stores.base import EntityStore, EntityNotFoundError
from staging.errors import CommitError, StaleTargetError

logger = logging.getLogger("CommitAdapter")


def merge_entries(
    entries: List[LorebookEntry], source_ids: List[str], merged: LorebookEntry
) -> Tuple[List[LorebookEntry], List[str]]:
    """Replace the source entries of a merge with the merged entry.

    Sources are matched by entry id, never by position. The merged entry takes
    the slot of the first source still present (or goes last if none are).

    Returns:
        (new_entries, missing_source_ids)
    """
    wanted = set(source_ids)
    found = set()
    result: List[LorebookEntry] = []
    inserted = False
    for entry in entries:
        if entry.id in wanted:
            found.add(entry.id)
            if not inserted:
                result.append(merged)
                inserted = True
            continue
        result.append(entry)
    if not inserted:
        result.append(merged)
    missing = [sid for sid in source_ids if sid not in found]
    return result, missing


class CommitAdapter:
    """Routes approved changes to the character, lorebook and scenario stores."""

    def __init__(self, characters: EntityStore, lorebooks: EntityStore, scenarios: EntityStore):
        self.characters = characters
        self.lorebooks = lorebooks
        self.scenarios = scenarios

    async def commit(self, change) -> None:
        """Apply one change. Raises CommitError (or StaleTargetError) on failure."""
        try:
            if change.entity_type == "character":
                await self._commit_simple(self.characters, change)
            elif change.entity_type == "scenario":
                await self._commit_simple(self.scenarios, change)
            elif change.entity_type == "lorebook":
                await self._commit_lorebook(change)
            elif change.entity_type == "lorebook-entry":
                await self._commit_entry(change)
            else:
                raise CommitError(change.id, f"Unsupported entity type {change.entity_type!r}")
        except CommitError:
            raise
        except EntityNotFoundError as e:
            raise StaleTargetError(change.id, str(e), cause=e) from e
        except Exception as e:
            logger.error(f"Commit failed for {change.entity_type} {change.action} ({change.id[:8]}): {e}")
            raise CommitError(change.id, f"{type(e).__name__}: {e}", cause=e) from e
        logger.info(
            f"Committed {change.entity_type} {change.action} "
            f"\"{change.display_name}\" (id={change.id[:8]})"
        )

    # ------------------------------------------------------------------
    # Characters / scenarios
    # ------------------------------------------------------------------

    def _require(self, store: EntityStore, change, entity_id: str):
        entity = store.get_by_id(entity_id)
        if entity is None:
            raise StaleTargetError(change.id, f"{store.name} {entity_id!r} no longer exists")
        return entity

    async def _commit_simple(self, store: EntityStore, change) -> None:
        if change.action == "create":
            await store.add(change.data.model_dump())
        elif change.action == "update":
            self._require(store, change, change.target_id)
            await store.update(change.target_id, dict(change.data))
        elif change.action == "delete":
            self._require(store, change, change.target_id)
            await store.delete(change.target_id)
        else:
            raise CommitError(change.id, f"Cannot {change.action} a {change.entity_type}")

    # ------------------------------------------------------------------
    # Lorebooks
    # ------------------------------------------------------------------

    async def _commit_lorebook(self, change) -> None:
        if change.action == "create":
            await self.lorebooks.add({
                **change.data.model_dump(),
                "id": change.lorebook_id,
                "entries": [],
            })
        elif change.action == "update":
            self._require(self.lorebooks, change, change.target_id)
            await self.lorebooks.update(change.target_id, dict(change.data))
        elif change.action == "delete":
            self._require(self.lorebooks, change, change.target_id)
            await self.lorebooks.delete(change.target_id)
        else:
            raise CommitError(change.id, f"Cannot {change.action} a lorebook")

    # ------------------------------------------------------------------
    # Lorebook entries (read-modify-write of the owning lorebook)
    # ------------------------------------------------------------------

    async def _commit_entry(self, change) -> None:
        lorebook: VaultLorebook = self._require(self.lorebooks, change, change.lorebook_id)
        entries = list(lorebook.entries)

        if change.action == "create":
            self._require_new_id(lorebook, change, change.data.id)
            entries.append(change.data)

        elif change.action == "update":
            idx = self._require_entry(lorebook, change)
            current = entries[idx]
            entries[idx] = LorebookEntry.model_validate({
                **current.model_dump(),
                **change.data,
                "id": current.id,
            })

        elif change.action == "delete":
            idx = self._require_entry(lorebook, change)
            entries.pop(idx)

        elif change.action == "merge":
            if change.data.id not in change.source_ids:
                self._require_new_id(lorebook, change, change.data.id)
            entries = self._merged_entries(entries, change)

        await self.lorebooks.update(change.lorebook_id, {"entries": entries})

    def _require_entry(self, lorebook: VaultLorebook, change) -> int:
        idx: Optional[int] = lorebook.find_entry(change.target_id)
        if idx is None:
            raise StaleTargetError(
                change.id,
                f"Entry {change.target_id!r} is no longer in lorebook \"{lorebook.name}\"",
            )
        return idx

    def _require_new_id(self, lorebook: VaultLorebook, change, entry_id: str) -> None:
        if lorebook.find_entry(entry_id) is not None:
            raise CommitError(
                change.id,
                f"Lorebook \"{lorebook.name}\" already has an entry with id {entry_id!r}",
            )

    def _merged_entries(self, entries: List[LorebookEntry], change: EntryMerge) -> List[LorebookEntry]:
        merged, missing = merge_entries(entries, change.source_ids, change.data)
        if len(missing) == len(change.source_ids):
            raise StaleTargetError(change.id, "None of the entries to merge are still in the lorebook")
        if missing:
            # Best effort: the author may have removed some sources already.
            logger.warning(
                f"Merge {change.id[:8]}: {len(missing)} of {len(change.source_ids)} "
                f"source entries already gone, merging the rest"
            )
        return merged
