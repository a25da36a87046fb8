"""
EntityStore — the persisted collection behind each vault entity type.

Stores are the source of truth once a change is committed. Every write is
validated through the store's pydantic model first; if validation fails,
nothing is written.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

logger = logging.getLogger("EntityStore")


class StoreError(Exception):
    """Base class for entity store failures."""
    pass


class EntityNotFoundError(StoreError):
    """update/delete referenced an id the store does not hold."""

    def __init__(self, store_name: str, entity_id: str):
        super().__init__(f"{store_name} {entity_id!r} not found")
        self.store_name = store_name
        self.entity_id = entity_id


class EntityStore:
    """Async entity store with partial-update semantics.

    Subclasses persist through `_persist` / `_unpersist`; the in-memory index
    is only touched after persistence succeeds, so a failed write leaves the
    store exactly as it was.

    Args:
        model: Pydantic model for the stored entity (must have an `id` field).
        name: Label for logging and error messages.
    """

    def __init__(self, model: Type[BaseModel], name: str):
        self.model = model
        self.name = name
        self._entities: Dict[str, BaseModel] = {}

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------

    def _persist(self, entity: BaseModel) -> None:
        raise NotImplementedError

    def _unpersist(self, entity_id: str) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_by_id(self, entity_id: str) -> Optional[BaseModel]:
        return self._entities.get(entity_id)

    def all(self) -> List[BaseModel]:
        return list(self._entities.values())

    @property
    def count(self) -> int:
        return len(self._entities)

    async def add(self, fields: Dict[str, Any]) -> BaseModel:
        """Validate and insert a new entity. Returns the stored entity."""
        try:
            entity = self.model.model_validate(fields)
        except ValidationError as e:
            raise StoreError(f"Invalid {self.name}: {e}") from e
        if entity.id in self._entities:
            raise StoreError(f"{self.name} {entity.id!r} already exists")
        self._persist(entity)
        self._entities[entity.id] = entity
        logger.info(f"[{self.name}] Added {entity.id[:8]}")
        return entity

    async def update(self, entity_id: str, fields: Dict[str, Any]) -> None:
        """Merge `fields` into an existing entity (partial update)."""
        existing = self._entities.get(entity_id)
        if existing is None:
            raise EntityNotFoundError(self.name, entity_id)
        merged = {**existing.model_dump(), **fields}
        merged["id"] = entity_id
        if "updated_at" in self.model.model_fields:
            merged["updated_at"] = time.time()
        try:
            entity = self.model.model_validate(merged)
        except ValidationError as e:
            raise StoreError(f"Invalid {self.name} update: {e}") from e
        self._persist(entity)
        self._entities[entity_id] = entity
        logger.info(f"[{self.name}] Updated {entity_id[:8]} ({', '.join(fields)})")

    async def delete(self, entity_id: str) -> None:
        if entity_id not in self._entities:
            raise EntityNotFoundError(self.name, entity_id)
        self._unpersist(entity_id)
        del self._entities[entity_id]
        logger.info(f"[{self.name}] Deleted {entity_id[:8]}")


class InMemoryEntityStore(EntityStore):
    """Store with no backing file. Used in tests and for scratch sessions."""

    def __init__(self, model: Type[BaseModel], name: str, entities: Optional[List[Any]] = None):
        super().__init__(model, name)
        for raw in entities or []:
            entity = self.model.model_validate(raw)
            self._entities[entity.id] = entity

    def _persist(self, entity: BaseModel) -> None:
        pass

    def _unpersist(self, entity_id: str) -> None:
        pass
