"""
Sync Orchestrator - sequences the two sync directions.

    Neo4j → vault:  fetcher.fetch() → vault_updater.apply()
    vault → Neo4j:  file_watcher.read_changed_files() → neo4j_updater.push()

Each direction is gated by its own watermark. The orchestrator is the
failure boundary: once the direction is valid, `sync()` returns a
SyncResult whatever happens.
"""

import time

from vaultmem.core.config import Settings, settings as default_settings, get_logger
from vaultmem.core.errors import SyncError
from vaultmem.core.types import SyncDirection, SyncResult
from vaultmem.storage.manager import MarkdownStorageManager
from vaultmem.storage.watermark import Watermark
from vaultmem.sync.client import MemoryClient, create_memory_client
from vaultmem.sync.fetcher import Neo4jFetcher
from vaultmem.sync.file_watcher import FileWatcher
from vaultmem.sync.neo4j_updater import Neo4jUpdater
from vaultmem.sync.vault_updater import VaultUpdater

logger = get_logger("sync.orchestrator")


class _Abort(Exception):
    """Carries an unexpected failure out of the direction that raised it."""


class SyncOrchestrator:
    """Runs one sync pass in the requested direction(s)."""

    def __init__(
        self,
        storage: MarkdownStorageManager,
        client: MemoryClient,
        fetch_limit: int = 1000,
    ):
        self.storage = storage
        self.client = client

        memory_dir = storage.memory_dir
        self.fetcher = Neo4jFetcher(client, Watermark(memory_dir / ".last_neo4j_sync"), limit=fetch_limit)
        self.vault_updater = VaultUpdater(storage)
        self.file_watcher = FileWatcher(memory_dir, Watermark(memory_dir / ".last_obsidian_sync"))
        self.neo4j_updater = Neo4jUpdater(client)

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        storage: MarkdownStorageManager | None = None,
    ) -> "SyncOrchestrator":
        config = config or default_settings
        return cls(
            storage=storage or MarkdownStorageManager(config.memory_dir),
            client=create_memory_client(config),
            fetch_limit=config.fetch_limit,
        )

    async def sync(self, direction: SyncDirection | str = SyncDirection.BOTH) -> SyncResult:
        """
        Run the selected direction(s) and return the aggregated result.

        A SyncError (transport or parse) fails only the direction it came
        from; the other direction still runs. Any other exception aborts
        the remaining steps. `success` is False whenever either direction
        recorded an error.

        An unknown direction is the caller's error: ValueError is raised
        before either direction runs or any watermark is read.
        """
        direction = SyncDirection(direction)
        started = time.monotonic()
        result = SyncResult()

        try:
            if direction.pulls:
                await self._pull(result)
            if direction.pushes:
                await self._push(result)
        except _Abort as e:
            logger.error(f"Sync aborted: {e}")

        result.success = result.error_count == 0
        result.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            f"Sync {direction.value} finished in {result.duration_ms}ms "
            f"({'ok' if result.success else f'{result.error_count} errors'})"
        )
        return result

    async def _pull(self, result: SyncResult) -> None:
        stats = result.neo4j_to_obsidian
        logger.info("Starting Neo4j → vault sync...")
        try:
            memories = await self.fetcher.fetch()
            stats.fetched = len(memories)

            if memories:
                applied = await self.vault_updater.apply(memories)
                stats.created = applied.created
                stats.updated = applied.updated
                stats.errors.extend(applied.errors)
        except SyncError as e:
            logger.error(f"Neo4j → vault sync failed: {e}")
            stats.errors.append(str(e))
            return
        except Exception as e:
            stats.errors.append(str(e))
            raise _Abort(e) from e

        logger.info(
            f"Neo4j → vault complete: {stats.fetched} fetched, "
            f"{stats.created} created, {stats.updated} updated"
        )

    async def _push(self, result: SyncResult) -> None:
        stats = result.obsidian_to_neo4j
        logger.info("Starting vault → Neo4j sync...")
        try:
            changed_files = await self.file_watcher.read_changed_files()
            stats.changed_files = len(changed_files)

            if changed_files:
                pushed = await self.neo4j_updater.push(changed_files)
                stats.updated_memories = pushed.updated
                stats.errors.extend(pushed.errors)
        except SyncError as e:
            logger.error(f"Vault → Neo4j sync failed: {e}")
            stats.errors.append(str(e))
            return
        except Exception as e:
            stats.errors.append(str(e))
            raise _Abort(e) from e

        logger.info(
            f"Vault → Neo4j complete: {stats.changed_files} files changed, "
            f"{stats.updated_memories} memories updated"
        )

    async def close(self) -> None:
        await self.client.close()
