"""
VaultEntityStore — Markdown + YAML frontmatter persistence for vault entities.

One file per entity, `<vault>/<folder>/<id>.md`. The entity's fields live in
the frontmatter; its description is the markdown body so the vault stays
readable in Obsidian.

Writes go to a temp file first and are swapped in with os.replace, so a
crash mid-write never leaves a half-written entity behind.
"""

import os
import logging
from typing import Any, Dict, List, Tuple, Type

import yaml
from pydantic import BaseModel, ValidationError

from models.entities import VaultCharacter, VaultLorebook, VaultScenario
from stores.base import EntityStore, StoreError

logger = logging.getLogger("VaultStore")

# ---------------------------------------------------------------------------
# YAML Frontmatter Helpers
# ---------------------------------------------------------------------------

def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Parse YAML frontmatter from a markdown file.

    Returns:
        (frontmatter_dict, body_text)
    """
    if not content.startswith('---'):
        return {}, content

    end_idx = content.find('\n---', 3)
    if end_idx == -1:
        return {}, content

    yaml_str = content[3:end_idx].strip()
    body = content[end_idx + 4:].strip()

    try:
        frontmatter = yaml.safe_load(yaml_str) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parse error: {e}")
        frontmatter = {}

    return frontmatter, body


def build_frontmatter(frontmatter: Dict[str, Any], body: str) -> str:
    """Reconstruct a markdown file with YAML frontmatter."""
    yaml_str = yaml.safe_dump(frontmatter, default_flow_style=False, allow_unicode=True, sort_keys=False)
    return f"---\n{yaml_str}---\n{body}\n"


# ---------------------------------------------------------------------------
# VaultEntityStore
# ---------------------------------------------------------------------------

class VaultEntityStore(EntityStore):
    """Entity store backed by a folder of frontmatter markdown files."""

    # Vault subdirectory constants
    CHARACTERS = "Characters"
    LOREBOOKS = "Lorebooks"
    SCENARIOS = "Scenarios"

    def __init__(self, vault_path: str, folder: str, model: Type[BaseModel], name: str):
        super().__init__(model, name)
        self.vault_path = os.path.abspath(vault_path)
        self.folder_path = os.path.join(self.vault_path, folder)
        os.makedirs(self.folder_path, exist_ok=True)
        self.load()

    def _path(self, entity_id: str) -> str:
        return os.path.join(self.folder_path, f"{entity_id}.md")

    def load(self) -> int:
        """(Re)load every entity file in the folder. Returns the count loaded.

        Files that fail validation are skipped and logged, never half-loaded.
        """
        self._entities.clear()
        for fname in sorted(os.listdir(self.folder_path)):
            if not fname.endswith('.md'):
                continue
            full_path = os.path.join(self.folder_path, fname)
            with open(full_path, 'r', encoding='utf-8') as f:
                fm, body = parse_frontmatter(f.read())
            fm.setdefault("description", body or None)
            try:
                entity = self.model.model_validate(fm)
            except ValidationError as e:
                logger.error(f"[{self.name}] Skipping invalid file {fname}: {e}")
                continue
            self._entities[entity.id] = entity
        logger.info(f"[{self.name}] Loaded {len(self._entities)} from {self.folder_path}")
        return len(self._entities)

    def _persist(self, entity: BaseModel) -> None:
        fm = entity.model_dump(mode="json")
        body = fm.pop("description", None) or ""
        full_path = self._path(entity.id)
        tmp_path = f"{full_path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(build_frontmatter(fm, body))
            os.replace(tmp_path, full_path)
        except OSError as e:
            logger.error(f"Error writing {full_path}: {e}")
            raise StoreError(f"Could not write {self.name} {entity.id!r}: {e}") from e

    def _unpersist(self, entity_id: str) -> None:
        full_path = self._path(entity_id)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            logger.warning(f"Vault file already gone: {full_path}")
        except OSError as e:
            raise StoreError(f"Could not delete {self.name} {entity_id!r}: {e}") from e


def open_vault(vault_path: str) -> Dict[str, VaultEntityStore]:
    """Open the three vault stores under one vault root.

    Returns a dict with keys "characters", "lorebooks" and "scenarios".
    """
    return {
        "characters": VaultEntityStore(vault_path, VaultEntityStore.CHARACTERS, VaultCharacter, "character"),
        "lorebooks": VaultEntityStore(vault_path, VaultEntityStore.LOREBOOKS, VaultLorebook, "lorebook"),
        "scenarios": VaultEntityStore(vault_path, VaultEntityStore.SCENARIOS, VaultScenario, "scenario"),
    }


def list_entity_files(store: VaultEntityStore) -> List[str]:
    """Relative paths (from the vault root) of every entity file in a store."""
    return sorted(
        os.path.relpath(os.path.join(store.folder_path, fname), store.vault_path)
        for fname in os.listdir(store.folder_path)
        if fname.endswith('.md')
    )
