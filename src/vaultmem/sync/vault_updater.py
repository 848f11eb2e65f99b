"""
Apply fetched memories to the vault.

Each memory maps to an entity name derived from its labels and content.
The name is a best-effort dedup key: memories that derive the same name
merge into one entity, and re-syncing the same memory adds nothing new
because the store ignores observations it already has.
"""

import re

from vaultmem.core.config import get_logger
from vaultmem.core.errors import VaultMemError
from vaultmem.core.types import Entity, Neo4jMemory, ObservationUpdate, VaultUpdateResult
from vaultmem.storage.manager import MarkdownStorageManager

logger = get_logger("sync.vault_updater")

ACTION_WORDS = (
    "decision",
    "chose",
    "selected",
    "meeting",
    "met",
    "discussed",
    "deployed",
    "implemented",
    "learned",
    "discovered",
)

SLUG_MAX_LENGTH = 30


def slugify(text: str) -> str:
    """Lowercase, drop punctuation, join words with underscores, cap at 30 chars."""
    slug = re.sub(r"[^\w\s-]", "", text.lower(), flags=re.ASCII)
    slug = re.sub(r"[\s-]+", "_", slug)
    return slug[:SLUG_MAX_LENGTH]


def detect_action(content: str) -> str | None:
    """First action keyword found in the content, capitalized."""
    lowered = content.lower()
    for action in ACTION_WORDS:
        if action in lowered:
            return action.capitalize()
    return None


def generate_entity_name(memory: Neo4jMemory) -> str:
    """
    Derive a deterministic entity name for a memory.

    - two labels:  `a_vs_b_Action` or `a_and_b_Sec`
    - one label:   `a_Action` or `a_Sect`
    - no labels:   first three words longer than 3 chars, then
                   `_Action` or `_Sec`
    """
    action = detect_action(memory.content)
    sector = memory.sector

    if memory.entities:
        primary = slugify(memory.entities[0])
        if len(memory.entities) > 1:
            secondary = slugify(memory.entities[1])
            if action:
                return f"{primary}_vs_{secondary}_{action}"
            return f"{primary}_and_{secondary}_{sector[:3]}"
        if action:
            return f"{primary}_{action}"
        return f"{primary}_{sector[:4]}"

    keywords = [word for word in memory.content.split() if len(word) > 3][:3]
    prefix = "_".join(slugify(word) for word in keywords)
    if action:
        return f"{prefix}_{action}"
    return f"{prefix}_{sector[:3]}"


def format_salience(value: float) -> str:
    number = float(value)
    return str(int(number)) if number.is_integer() else repr(number)


def memory_observations(memory: Neo4jMemory) -> list[str]:
    """System observations identifying the memory, then its own observations."""
    return [
        f"Content: {memory.content}",
        f"Salience: {format_salience(memory.salience)}",
        f"Neo4j ID: {memory.id}",
        f"Created: {memory.created_at}",
        *memory.observations,
    ]


class VaultUpdater:
    """Creates or extends vault entities from fetched memories."""

    def __init__(self, storage: MarkdownStorageManager):
        self.storage = storage

    async def apply(self, memories: list[Neo4jMemory]) -> VaultUpdateResult:
        """
        Upsert each memory into the vault.

        The existing name set is read once; names created during this run
        are added to it so later memories with the same name append
        instead of colliding. One failing memory does not stop the rest.
        """
        result = VaultUpdateResult()

        try:
            graph = await self.storage.read_graph()
        except OSError as e:
            message = f"Vault update failed: {e}"
            logger.error(message)
            result.errors.append(message)
            return result

        existing_names = {entity.name for entity in graph.entities}

        for memory in memories:
            try:
                entity_name = generate_entity_name(memory)
                observations = memory_observations(memory)

                if entity_name in existing_names:
                    await self._append(entity_name, observations)
                    result.updated += 1
                    continue

                created = await self.storage.create_entities([
                    Entity(name=entity_name, entity_type=memory.sector, observations=observations),
                ])
                if created.errors:
                    raise VaultMemError(created.errors[0].message)
                if created.skipped:
                    # File appeared after the graph was read
                    await self._append(entity_name, observations)
                    result.updated += 1
                else:
                    result.created += 1
                existing_names.add(entity_name)
            except (VaultMemError, OSError) as e:
                message = f"Failed to sync memory {memory.id}: {e}"
                result.errors.append(message)
                logger.error(message)

        logger.info(
            f"Vault update complete: {result.created} created, "
            f"{result.updated} updated, {len(result.errors)} errors"
        )
        return result

    async def _append(self, entity_name: str, observations: list[str]) -> None:
        outcome = await self.storage.add_observations([
            ObservationUpdate(entity_name=entity_name, contents=observations),
        ])
        if outcome.errors:
            raise VaultMemError(outcome.errors[0].message)
