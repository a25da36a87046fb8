"""
Pydantic v2 data models — the contract for the vault and its pending changes.

Every store write and every staged AI proposal passes through these models.
If validation fails, nothing is staged and nothing is written.
"""

from models.entities import (
    CharacterInput,
    EntrySnapshot,
    LorebookEntry,
    LorebookInput,
    ScenarioInput,
    ScenarioNpc,
    VaultCharacter,
    VaultLorebook,
    VaultScenario,
    VisualDescriptors,
)
from models.changes import (
    ChangeRecord,
    CharacterCreate,
    CharacterUpdate,
    CharacterDelete,
    ScenarioCreate,
    ScenarioUpdate,
    ScenarioDelete,
    LorebookCreate,
    LorebookUpdate,
    LorebookDelete,
    EntryCreate,
    EntryUpdate,
    EntryDelete,
    EntryMerge,
    ENTITY_TYPES,
)
from models.events import (
    StreamEvent,
    ToolCallDisplay,
    ChatMessage,
    ThinkingEvent,
    ToolStartEvent,
    ToolEndEvent,
    MessageEvent,
    DoneEvent,
    ErrorEvent,
)

__all__ = [
    "CharacterInput",
    "EntrySnapshot",
    "LorebookEntry",
    "LorebookInput",
    "ScenarioInput",
    "ScenarioNpc",
    "VaultCharacter",
    "VaultLorebook",
    "VaultScenario",
    "VisualDescriptors",
    "ChangeRecord",
    "CharacterCreate",
    "CharacterUpdate",
    "CharacterDelete",
    "ScenarioCreate",
    "ScenarioUpdate",
    "ScenarioDelete",
    "LorebookCreate",
    "LorebookUpdate",
    "LorebookDelete",
    "EntryCreate",
    "EntryUpdate",
    "EntryDelete",
    "EntryMerge",
    "ENTITY_TYPES",
    "StreamEvent",
    "ToolCallDisplay",
    "ChatMessage",
    "ThinkingEvent",
    "ToolStartEvent",
    "ToolEndEvent",
    "MessageEvent",
    "DoneEvent",
    "ErrorEvent",
]
