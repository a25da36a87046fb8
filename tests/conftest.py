"""
Shared pytest fixtures for the pending change engine test suite.

Stores are in-memory; a store can be made to fail by swapping one of its
methods for an AsyncMock with a side_effect.
"""

import pytest
from unittest.mock import AsyncMock

from models.entities import LorebookEntry, VaultCharacter, VaultLorebook, VaultScenario
from stores.base import InMemoryEntityStore, StoreError
from staging.commit import CommitAdapter
from staging.engine import StagingEngine


# ---------------------------------------------------------------------------
# Sample data helpers
# ---------------------------------------------------------------------------

def make_entry(entry_id: str, name: str, **kwargs) -> LorebookEntry:
    return LorebookEntry(id=entry_id, name=name, **kwargs)


def character_update(target_id="c1", data=None, previous=None, **kwargs) -> dict:
    return {
        "entity_type": "character",
        "action": "update",
        "target_id": target_id,
        "data": data if data is not None else {"name": "Anna"},
        "previous": previous if previous is not None else {"name": "Ana"},
        **kwargs,
    }


def character_create(name="Mira", **kwargs) -> dict:
    return {
        "entity_type": "character",
        "action": "create",
        "data": {"name": name, "traits": ["curious"]},
        **kwargs,
    }


def lorebook_create(lorebook_id="lb-new", name="Harbor Lore", **kwargs) -> dict:
    return {
        "entity_type": "lorebook",
        "action": "create",
        "lorebook_id": lorebook_id,
        "data": {"name": name, "description": None, "tags": []},
        **kwargs,
    }


def entry_create(lorebook_id="lb1", name="Lighthouse", **kwargs) -> dict:
    return {
        "entity_type": "lorebook-entry",
        "action": "create",
        "lorebook_id": lorebook_id,
        "data": {"name": name, "type": "location", "description": "A tall tower."},
        **kwargs,
    }


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def characters():
    return InMemoryEntityStore(VaultCharacter, "character", [
        VaultCharacter(id="c1", name="Ana", description="A sailor"),
        VaultCharacter(id="c2", name="Bram"),
    ])


@pytest.fixture
def lorebooks():
    return InMemoryEntityStore(VaultLorebook, "lorebook", [
        VaultLorebook(id="lb1", name="Port Town", entries=[
            make_entry("e1", "Old Docks", type="location"),
            make_entry("e2", "The Docks", type="location"),
            make_entry("e3", "Harbor Guild", type="faction"),
            make_entry("e4", "Salt Market", type="location"),
        ]),
    ])


@pytest.fixture
def scenarios():
    return InMemoryEntityStore(VaultScenario, "scenario", [
        VaultScenario(id="s1", name="Storm Night", setting_seed="A harbor town before a storm."),
    ])


@pytest.fixture
def adapter(characters, lorebooks, scenarios):
    return CommitAdapter(characters, lorebooks, scenarios)


@pytest.fixture
def engine(adapter):
    return StagingEngine(adapter)


@pytest.fixture
def failing_update(characters):
    """Make characters.update raise a persistence error."""
    characters.update = AsyncMock(side_effect=StoreError("disk full"))
    return characters.update
