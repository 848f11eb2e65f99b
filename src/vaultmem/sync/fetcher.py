"""
Fetch memories changed since the last pull.

The memory service has no server-side time filter, so one bounded page
is fetched and filtered here on each record's `last_accessed`.
"""

from typing import Any

from pydantic import ValidationError

from vaultmem.core.config import get_logger
from vaultmem.core.errors import ParseFailureError
from vaultmem.core.types import EPOCH, Neo4jMemory, parse_timestamp, utcnow
from vaultmem.storage.watermark import Watermark
from vaultmem.sync.client import MemoryClient

logger = get_logger("sync.fetcher")

DEFAULT_SECTOR = "Semantic"
DEFAULT_SALIENCE = 0.5


def to_memory(bubble: dict[str, Any]) -> Neo4jMemory:
    """Normalize a raw record, filling the service's defaults."""
    return Neo4jMemory(
        id=bubble["id"],
        content=bubble.get("content") or "",
        sector=bubble.get("sector") or DEFAULT_SECTOR,
        salience=bubble.get("salience") or DEFAULT_SALIENCE,
        entities=bubble.get("entities") or [],
        observations=bubble.get("observations") or [],
        created_at=bubble.get("created_at") or utcnow().isoformat(),
        last_accessed=bubble.get("last_accessed"),
    )


class Neo4jFetcher:
    """Pulls the memories accessed after the `.last_neo4j_sync` watermark."""

    def __init__(self, client: MemoryClient, watermark: Watermark, limit: int = 1000):
        self.client = client
        self.watermark = watermark
        self.limit = limit

    async def fetch(self) -> list[Neo4jMemory]:
        """
        Fetch changed memories and advance the watermark.

        Transport failures propagate and leave the watermark alone. A page
        that cannot be parsed yields no memories, also without advancing.
        """
        since = self.watermark.read()
        logger.info(f"Fetching memories modified since {since.isoformat()}...")

        try:
            bubbles = await self.client.list_memories(self.limit)
        except ParseFailureError as e:
            logger.error(f"Failed to parse memory page: {e}")
            return []

        memories = []
        for bubble in bubbles:
            if not isinstance(bubble, dict):
                logger.warning(f"Skipping malformed memory record: {bubble!r}")
                continue

            last_accessed = parse_timestamp(bubble.get("last_accessed")) or EPOCH
            if last_accessed <= since:
                continue

            try:
                memories.append(to_memory(bubble))
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping malformed memory record {bubble.get('id')}: {e}")

        self.watermark.advance()

        logger.info(f"Fetched {len(memories)} memories modified since last sync")
        return memories
