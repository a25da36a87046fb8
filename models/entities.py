"""
Vault entity schemas — characters, lorebooks (with entries) and scenarios.

These models gate ALL writes to the entity stores. The *Input models are the
shapes an AI proposal may carry; the Vault* models add the store-managed
fields (id, timestamps).
"""

import time
from typing import List, Optional, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


EntryType = Literal["character", "location", "item", "faction", "concept", "event"]
InjectionMode = Literal["always", "keyword", "relevant", "never"]


def new_id() -> str:
    return str(uuid4())


class VisualDescriptors(BaseModel):
    """Visual appearance details used for portrait generation."""

    face: Optional[str] = None
    hair: Optional[str] = None
    eyes: Optional[str] = None
    build: Optional[str] = None
    clothing: Optional[str] = None
    accessories: Optional[str] = None

    model_config = {"extra": "allow"}


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class CharacterInput(BaseModel):
    """Character fields an author (or the assistant) can set."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    traits: List[str] = []
    visual_descriptors: VisualDescriptors = Field(default_factory=VisualDescriptors)
    portrait: Optional[str] = None  # data URL, usually not set by the AI
    tags: List[str] = []
    favorite: bool = False


class VaultCharacter(CharacterInput):
    """A character as persisted in the vault."""

    id: str = Field(default_factory=new_id)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Lorebooks
# ---------------------------------------------------------------------------

class LorebookEntry(BaseModel):
    """A single lorebook entry.

    `id` is assigned once when the entry is created and never changes, so
    updates, deletes and merges can find the entry even after the author
    reorders or renames entries.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    type: EntryType = "concept"
    description: str = ""
    keywords: List[str] = []
    aliases: List[str] = []
    injection_mode: InjectionMode = "keyword"
    priority: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v


class EntrySnapshot(LorebookEntry):
    """An existing entry as the assistant saw it. The id must be the real one."""

    id: str = Field(min_length=1)


class LorebookInput(BaseModel):
    """Lorebook-level fields (entries are edited through entry changes)."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    tags: List[str] = []


class VaultLorebook(LorebookInput):
    """A lorebook as persisted in the vault."""

    id: str = Field(default_factory=new_id)
    entries: List[LorebookEntry] = []
    favorite: bool = False
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    def find_entry(self, entry_id: str) -> Optional[int]:
        """Index of the entry with this id, or None."""
        for i, entry in enumerate(self.entries):
            if entry.id == entry_id:
                return i
        return None


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class ScenarioNpc(BaseModel):
    """A non-player character bundled with a scenario."""

    name: str
    role: str = ""
    description: str = ""
    relationship: str = ""
    traits: List[str] = []


class ScenarioInput(BaseModel):
    """Scenario fields an author (or the assistant) can set."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    setting_seed: str = ""
    npcs: List[ScenarioNpc] = []
    primary_character_name: str = ""
    first_message: Optional[str] = None
    alternate_greetings: List[str] = []
    tags: List[str] = []
    favorite: bool = False


class VaultScenario(ScenarioInput):
    """A scenario as persisted in the vault."""

    id: str = Field(default_factory=new_id)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
