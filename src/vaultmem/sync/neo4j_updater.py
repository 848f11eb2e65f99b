"""
Push user-edited observations from changed vault files back to the graph.

Only files that carry a `Neo4j ID:` (or `Neo4j:`) observation can be
pushed. System observations written by the vault updater are filtered
out, and the remaining ones replace the memory's observations outright.
"""

import asyncio

from vaultmem.core.config import get_logger
from vaultmem.core.errors import VaultMemError
from vaultmem.core.types import ChangedFile, Neo4jUpdateResult
from vaultmem.storage.markdown import parse_entity
from vaultmem.sync.client import MemoryClient

logger = get_logger("sync.neo4j_updater")

FOREIGN_KEY_PREFIXES = ("Neo4j ID:", "Neo4j:")
SYSTEM_PREFIXES = ("Content:", "Salience:", "Created:", *FOREIGN_KEY_PREFIXES)


def extract_memory_id(observations: list[str]) -> str | None:
    """The memory id from the first foreign-key observation, if any."""
    for observation in observations:
        for prefix in FOREIGN_KEY_PREFIXES:
            if observation.startswith(prefix):
                memory_id = observation[len(prefix):].strip()
                if memory_id:
                    return memory_id
    return None


def user_observations(observations: list[str]) -> list[str]:
    return [obs for obs in observations if not obs.startswith(SYSTEM_PREFIXES)]


class Neo4jUpdater:
    """Replaces memory observations with the vault's user-edited ones."""

    def __init__(self, client: MemoryClient):
        self.client = client

    async def push(self, changed_files: list[ChangedFile]) -> Neo4jUpdateResult:
        """Push each changed file; failures are recorded per file."""
        result = Neo4jUpdateResult()

        for changed in changed_files:
            try:
                text = await asyncio.to_thread(changed.path.read_text, encoding="utf-8")
                entity = parse_entity(text, changed.entity_name)

                memory_id = extract_memory_id(entity.observations)
                if memory_id is None:
                    result.errors.append(f"No Neo4j ID in {changed.entity_name}")
                    continue

                await self.client.update_memory_observations(
                    memory_id,
                    user_observations(entity.observations),
                    append=False,
                )
                result.updated += 1
                logger.info(f"Updated memory {memory_id} from {changed.entity_name}")
            except (VaultMemError, OSError, UnicodeDecodeError) as e:
                message = f"Failed to sync {changed.entity_name}: {e}"
                result.errors.append(message)
                logger.error(message)

        logger.info(f"Neo4j update complete: {result.updated} updated, {len(result.errors)} errors")
        return result
