"""
Tests for staging/commit.py — CommitAdapter branches and merge_entries.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from staging.commit import merge_entries
from staging.engine import parse_change
from staging.errors import CommitError, StaleTargetError
from stores.base import StoreError

from conftest import (
    character_create,
    character_update,
    entry_create,
    lorebook_create,
    make_entry,
)


def commit(adapter, raw):
    asyncio.run(adapter.commit(parse_change(raw)))


def merge_proposal(source_ids, lorebook_id="lb1", **data):
    return {
        "entity_type": "lorebook-entry",
        "action": "merge",
        "lorebook_id": lorebook_id,
        "previous_entries": [{"id": sid, "name": sid} for sid in source_ids],
        "data": {"name": "Docks", "type": "location", "description": "Both piers.", **data},
    }


# ---------------------------------------------------------------------------
# Characters / scenarios
# ---------------------------------------------------------------------------

class TestCharacters:

    def test_create(self, adapter, characters):
        commit(adapter, character_create(name="Mira"))
        assert characters.count == 3
        mira = next(c for c in characters.all() if c.name == "Mira")
        assert mira.traits == ["curious"]

    def test_partial_update_keeps_other_fields(self, adapter, characters):
        commit(adapter, character_update(data={"name": "Anna"}))
        anna = characters.get_by_id("c1")
        assert anna.name == "Anna"
        assert anna.description == "A sailor"

    def test_delete(self, adapter, characters):
        commit(adapter, {"entity_type": "character", "action": "delete", "target_id": "c2"})
        assert characters.get_by_id("c2") is None

    def test_update_of_missing_character_is_stale(self, adapter):
        with pytest.raises(StaleTargetError):
            commit(adapter, character_update(target_id="gone"))

    def test_delete_of_missing_character_is_stale(self, adapter):
        with pytest.raises(StaleTargetError):
            commit(adapter, {"entity_type": "character", "action": "delete", "target_id": "gone"})


class TestScenarios:

    def test_create(self, adapter, scenarios):
        commit(adapter, {
            "entity_type": "scenario", "action": "create",
            "data": {"name": "Harbor Fire", "setting_seed": "Smoke over the water."},
        })
        assert scenarios.count == 2

    def test_update(self, adapter, scenarios):
        commit(adapter, {
            "entity_type": "scenario", "action": "update",
            "target_id": "s1", "data": {"first_message": "Thunder rolls in."},
        })
        storm = scenarios.get_by_id("s1")
        assert storm.first_message == "Thunder rolls in."
        assert storm.setting_seed == "A harbor town before a storm."

    def test_delete(self, adapter, scenarios):
        commit(adapter, {"entity_type": "scenario", "action": "delete", "target_id": "s1"})
        assert scenarios.count == 0


# ---------------------------------------------------------------------------
# Lorebooks
# ---------------------------------------------------------------------------

class TestLorebooks:

    def test_create_uses_preassigned_id(self, adapter, lorebooks):
        commit(adapter, lorebook_create(lorebook_id="lb-new", name="Harbor Lore"))
        book = lorebooks.get_by_id("lb-new")
        assert book.name == "Harbor Lore"
        assert book.entries == []

    def test_create_twice_fails(self, adapter):
        commit(adapter, lorebook_create(lorebook_id="lb-new"))
        with pytest.raises(CommitError) as exc_info:
            commit(adapter, lorebook_create(lorebook_id="lb-new"))
        assert not isinstance(exc_info.value, StaleTargetError)

    def test_update_keeps_entries(self, adapter, lorebooks):
        commit(adapter, {
            "entity_type": "lorebook", "action": "update",
            "target_id": "lb1", "data": {"name": "Port Town Lore"},
        })
        book = lorebooks.get_by_id("lb1")
        assert book.name == "Port Town Lore"
        assert len(book.entries) == 4

    def test_delete(self, adapter, lorebooks):
        commit(adapter, {"entity_type": "lorebook", "action": "delete", "target_id": "lb1"})
        assert lorebooks.count == 0


# ---------------------------------------------------------------------------
# Lorebook entries
# ---------------------------------------------------------------------------

class TestEntries:

    def test_create_appends_with_stable_id(self, adapter, lorebooks):
        change = parse_change(entry_create(lorebook_id="lb1", name="Lighthouse"))
        asyncio.run(adapter.commit(change))
        book = lorebooks.get_by_id("lb1")
        assert len(book.entries) == 5
        assert book.entries[-1].id == change.data.id
        assert book.entries[-1].name == "Lighthouse"

    def test_create_in_missing_lorebook_is_stale(self, adapter):
        with pytest.raises(StaleTargetError):
            commit(adapter, entry_create(lorebook_id="nowhere"))

    def test_update_by_id_not_position(self, adapter, lorebooks):
        # Author reordered the entries after the proposal was made.
        book = lorebooks.get_by_id("lb1")
        lorebooks._entities["lb1"] = book.model_copy(update={"entries": list(reversed(book.entries))})

        commit(adapter, {
            "entity_type": "lorebook-entry", "action": "update",
            "lorebook_id": "lb1", "target_id": "e3", "data": {"priority": 7},
        })

        guild = next(e for e in lorebooks.get_by_id("lb1").entries if e.id == "e3")
        assert guild.priority == 7
        assert guild.name == "Harbor Guild"

    def test_update_of_missing_entry_is_stale(self, adapter, lorebooks):
        with pytest.raises(StaleTargetError) as exc_info:
            commit(adapter, {
                "entity_type": "lorebook-entry", "action": "update",
                "lorebook_id": "lb1", "target_id": "e99", "data": {"priority": 1},
            })
        assert "no longer exists" in exc_info.value.user_message
        assert len(lorebooks.get_by_id("lb1").entries) == 4

    def test_delete(self, adapter, lorebooks):
        commit(adapter, {
            "entity_type": "lorebook-entry", "action": "delete",
            "lorebook_id": "lb1", "target_id": "e4",
        })
        assert [e.id for e in lorebooks.get_by_id("lb1").entries] == ["e1", "e2", "e3"]

    def test_merge_two_entries(self, adapter, lorebooks):
        change = parse_change(merge_proposal(["e1", "e2"]))
        asyncio.run(adapter.commit(change))

        entries = lorebooks.get_by_id("lb1").entries
        ids = [e.id for e in entries]
        assert len(entries) == 3
        assert "e1" not in ids and "e2" not in ids
        assert entries[0].id == change.data.id
        assert entries[0].description == "Both piers."

    def test_merge_three_entries(self, adapter, lorebooks):
        commit(adapter, merge_proposal(["e2", "e3", "e4"]))
        entries = lorebooks.get_by_id("lb1").entries
        assert len(entries) == 2
        assert entries[0].id == "e1"
        assert entries[1].name == "Docks"

    def test_merge_with_missing_source(self, adapter, lorebooks):
        commit(adapter, merge_proposal(["e1", "e99"]))
        entries = lorebooks.get_by_id("lb1").entries
        assert len(entries) == 4
        assert [e.id for e in entries][1:] == ["e2", "e3", "e4"]
        assert entries[0].name == "Docks"


    def test_merge_with_every_source_gone_is_stale(self, adapter, lorebooks):
        with pytest.raises(StaleTargetError):
            commit(adapter, merge_proposal(["e98", "e99"]))
        assert len(lorebooks.get_by_id("lb1").entries) == 4

    def test_create_with_taken_id_rejected(self, adapter, lorebooks):
        raw = entry_create(lorebook_id="lb1")
        raw["data"] = {"id": "e1", "name": "Dup"}
        with pytest.raises(CommitError) as exc_info:
            commit(adapter, raw)
        assert not isinstance(exc_info.value, StaleTargetError)
        assert [e.id for e in lorebooks.get_by_id("lb1").entries] == ["e1", "e2", "e3", "e4"]

    def test_merge_into_taken_id_rejected(self, adapter, lorebooks):
        with pytest.raises(CommitError):
            commit(adapter, merge_proposal(["e1", "e2"], id="e3"))
        assert len(lorebooks.get_by_id("lb1").entries) == 4

    def test_merge_may_keep_a_source_id(self, adapter, lorebooks):
        commit(adapter, merge_proposal(["e1", "e2"], id="e1"))
        assert [e.id for e in lorebooks.get_by_id("lb1").entries] == ["e1", "e3", "e4"]


class TestMergeEntries:

    def test_merged_entry_takes_first_source_slot(self):
        entries = [make_entry("a", "A"), make_entry("b", "B"), make_entry("c", "C")]
        merged = make_entry("m", "M")
        result, missing = merge_entries(entries, ["c", "b"], merged)
        assert [e.id for e in result] == ["a", "m"]
        assert missing == []

    def test_all_sources_gone_appends(self):
        entries = [make_entry("a", "A")]
        merged = make_entry("m", "M")
        result, missing = merge_entries(entries, ["x", "y"], merged)
        assert [e.id for e in result] == ["a", "m"]
        assert missing == ["x", "y"]

    def test_input_list_untouched(self):
        entries = [make_entry("a", "A"), make_entry("b", "B")]
        merge_entries(entries, ["a", "b"], make_entry("m", "M"))
        assert [e.id for e in entries] == ["a", "b"]


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------

class TestStoreFailures:

    def test_store_error_wrapped(self, adapter, characters, failing_update):
        change = parse_change(character_update())
        with pytest.raises(CommitError) as exc_info:
            asyncio.run(adapter.commit(change))
        err = exc_info.value
        assert err.change_id == change.id
        assert isinstance(err.cause, StoreError)
        assert characters.get_by_id("c1").name == "Ana"

    def test_entry_write_failure_leaves_lorebook_alone(self, adapter, lorebooks):
        lorebooks.update = AsyncMock(side_effect=OSError("read-only vault"))
        with pytest.raises(CommitError) as exc_info:
            commit(adapter, merge_proposal(["e1", "e2"]))
        assert "read-only vault" in str(exc_info.value)
        assert len(lorebooks.get_by_id("lb1").entries) == 4
