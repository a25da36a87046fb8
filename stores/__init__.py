"""
Entity stores — the persisted character, lorebook and scenario collections.
"""

from stores.base import EntityStore, InMemoryEntityStore, StoreError, EntityNotFoundError
from stores.vault_store import VaultEntityStore, open_vault

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "StoreError",
    "EntityNotFoundError",
    "VaultEntityStore",
    "open_vault",
]
