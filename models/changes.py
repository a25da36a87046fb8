"""
Change records — the staged description of one proposed vault mutation.

A change record is a tagged variant keyed by (entity_type, action). Each
variant carries only the payload fields that make sense for it, and pydantic
enforces the shape at construction time, so a malformed AI proposal never
becomes a record.

Records are frozen. The staging engine produces modified copies
(`with_status`, `with_edits`) instead of mutating them in place, which keeps
`previous` / `previous_entries` as the untouched "before" baseline for diffs.
"""

import time
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from models.entities import (
    CharacterInput,
    EntrySnapshot,
    LorebookEntry,
    LorebookInput,
    ScenarioInput,
    new_id,
)

EntityType = Literal["character", "lorebook-entry", "scenario", "lorebook"]
ChangeAction = Literal["create", "update", "delete", "merge"]
ChangeStatus = Literal["pending", "approved", "rejected"]

ENTITY_TYPES: Tuple[str, ...] = ("character", "lorebook-entry", "scenario", "lorebook")


class _ChangeBase(BaseModel):
    """Fields shared by every change variant."""

    id: str = Field(default_factory=new_id)
    tool_call_id: Optional[str] = None
    status: ChangeStatus = "pending"
    created_at: float = Field(default_factory=time.time)

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def target_key(self) -> Optional[Tuple[str, ...]]:
        """Identity of the entity this change mutates, used for dedup.

        None for creates, which never replace one another.
        """
        target_id = getattr(self, "target_id", None)
        if target_id is None:
            return None
        return (self.entity_type, target_id)

    @property
    def display_name(self) -> str:
        data = getattr(self, "data", None)
        name = _field(data, "name")
        if name:
            return name
        name = _field(getattr(self, "previous", None), "name")
        return name or "unknown"

    def with_status(self, status: ChangeStatus) -> "_ChangeBase":
        return self.model_copy(update={"status": status})

    def with_edits(self, payload: Dict[str, Any]) -> "_ChangeBase":
        """Return a re-validated copy with `payload` merged into `data`."""
        dumped = self.model_dump()
        dumped["data"] = {**dumped["data"], **payload}
        return type(self).model_validate(dumped)


def _field(obj: Any, name: str) -> Optional[str]:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _check_partial(data: Dict[str, Any], model: Type[BaseModel], exclude=()) -> Dict[str, Any]:
    """Check a partial update: known field names, and each value valid for its field."""
    allowed = set(model.model_fields) - set(exclude)
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"unknown {model.__name__} fields: {', '.join(unknown)}")
    # Unvalidated instance; validate_assignment checks one field at a time.
    scratch = model.model_construct()
    for key, value in data.items():
        try:
            model.__pydantic_validator__.validate_assignment(scratch, key, value)
        except ValidationError as e:
            raise ValueError(f"invalid {model.__name__}.{key}: {e.errors()[0]['msg']}") from e
    return data


class _PartialUpdate(_ChangeBase):
    """Update whose `data` is a partial dict over an input model."""

    input_model: ClassVar[Type[BaseModel]]
    action: Literal["update"]
    target_id: str = Field(min_length=1)
    data: Dict[str, Any]
    previous: Optional[Dict[str, Any]] = None

    @field_validator("data")
    @classmethod
    def data_keys_known(cls, v):
        if not v:
            raise ValueError("update carries no fields")
        return _check_partial(v, cls.input_model)


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class CharacterCreate(_ChangeBase):
    entity_type: Literal["character"]
    action: Literal["create"]
    data: CharacterInput


class CharacterUpdate(_PartialUpdate):
    input_model: ClassVar[Type[BaseModel]] = CharacterInput
    entity_type: Literal["character"]


class CharacterDelete(_ChangeBase):
    entity_type: Literal["character"]
    action: Literal["delete"]
    target_id: str = Field(min_length=1)
    previous: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class ScenarioCreate(_ChangeBase):
    entity_type: Literal["scenario"]
    action: Literal["create"]
    data: ScenarioInput


class ScenarioUpdate(_PartialUpdate):
    input_model: ClassVar[Type[BaseModel]] = ScenarioInput
    entity_type: Literal["scenario"]


class ScenarioDelete(_ChangeBase):
    entity_type: Literal["scenario"]
    action: Literal["delete"]
    target_id: str = Field(min_length=1)
    previous: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Lorebooks
# ---------------------------------------------------------------------------

class LorebookCreate(_ChangeBase):
    """Create a lorebook under a pre-assigned id.

    The id is chosen at proposal time so entry proposals from the same AI
    turn can already point at the new lorebook.
    """

    entity_type: Literal["lorebook"]
    action: Literal["create"]
    lorebook_id: str = Field(default_factory=new_id)
    data: LorebookInput


class LorebookUpdate(_PartialUpdate):
    input_model: ClassVar[Type[BaseModel]] = LorebookInput
    entity_type: Literal["lorebook"]


class LorebookDelete(_ChangeBase):
    entity_type: Literal["lorebook"]
    action: Literal["delete"]
    target_id: str = Field(min_length=1)
    previous: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Lorebook entries
# ---------------------------------------------------------------------------

class _EntryChange(_ChangeBase):
    lorebook_id: str = Field(min_length=1)

    @property
    def target_key(self) -> Optional[Tuple[str, ...]]:
        target_id = getattr(self, "target_id", None)
        if target_id is None:
            return None
        return (self.entity_type, self.lorebook_id, target_id)


class EntryCreate(_EntryChange):
    entity_type: Literal["lorebook-entry"]
    action: Literal["create"]
    data: LorebookEntry


class EntryUpdate(_EntryChange):
    entity_type: Literal["lorebook-entry"]
    action: Literal["update"]
    target_id: str = Field(min_length=1)  # entry id
    data: Dict[str, Any]
    previous: Optional[EntrySnapshot] = None

    @field_validator("data")
    @classmethod
    def data_keys_known(cls, v):
        if not v:
            raise ValueError("update carries no fields")
        return _check_partial(v, LorebookEntry, exclude=("id",))


class EntryDelete(_EntryChange):
    entity_type: Literal["lorebook-entry"]
    action: Literal["delete"]
    target_id: str = Field(min_length=1)  # entry id
    previous: Optional[EntrySnapshot] = None


class EntryMerge(_EntryChange):
    """Combine two or more entries of one lorebook into `data`."""

    entity_type: Literal["lorebook-entry"]
    action: Literal["merge"]
    previous_entries: List[EntrySnapshot] = Field(min_length=2)
    data: LorebookEntry

    @field_validator("previous_entries")
    @classmethod
    def sources_distinct(cls, v):
        ids = [entry.id for entry in v]
        if len(set(ids)) != len(ids):
            raise ValueError("merge lists the same source entry twice")
        return v

    @property
    def source_ids(self) -> List[str]:
        return [entry.id for entry in self.previous_entries]

    @property
    def target_key(self) -> Optional[Tuple[str, ...]]:
        # A re-proposed merge of the same sources supersedes the older one.
        return (self.entity_type, self.lorebook_id, "merge", *sorted(self.source_ids))


# ---------------------------------------------------------------------------
# Tagged union
# ---------------------------------------------------------------------------

CharacterChange = Annotated[
    Union[CharacterCreate, CharacterUpdate, CharacterDelete],
    Field(discriminator="action"),
]
ScenarioChange = Annotated[
    Union[ScenarioCreate, ScenarioUpdate, ScenarioDelete],
    Field(discriminator="action"),
]
LorebookChange = Annotated[
    Union[LorebookCreate, LorebookUpdate, LorebookDelete],
    Field(discriminator="action"),
]
EntryChange = Annotated[
    Union[EntryCreate, EntryUpdate, EntryDelete, EntryMerge],
    Field(discriminator="action"),
]

ChangeRecord = Annotated[
    Union[CharacterChange, ScenarioChange, LorebookChange, EntryChange],
    Field(discriminator="entity_type"),
]

change_record_adapter: TypeAdapter = TypeAdapter(ChangeRecord)
change_list_adapter: TypeAdapter = TypeAdapter(List[ChangeRecord])

CHANGE_TYPES = (
    CharacterCreate, CharacterUpdate, CharacterDelete,
    ScenarioCreate, ScenarioUpdate, ScenarioDelete,
    LorebookCreate, LorebookUpdate, LorebookDelete,
    EntryCreate, EntryUpdate, EntryDelete, EntryMerge,
)
