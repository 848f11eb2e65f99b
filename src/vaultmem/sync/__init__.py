"""
Sync module - Bidirectional sync between the vault and the Neo4j memory service.
"""

from vaultmem.sync.client import BoltMemoryClient, McpMemoryClient, MemoryClient, create_memory_client
from vaultmem.sync.fetcher import Neo4jFetcher
from vaultmem.sync.file_watcher import FileWatcher
from vaultmem.sync.neo4j_updater import Neo4jUpdater
from vaultmem.sync.orchestrator import SyncOrchestrator
from vaultmem.sync.scheduler import SyncScheduler
from vaultmem.sync.vault_updater import VaultUpdater, generate_entity_name

__all__ = [
    "BoltMemoryClient",
    "McpMemoryClient",
    "MemoryClient",
    "create_memory_client",
    "Neo4jFetcher",
    "FileWatcher",
    "Neo4jUpdater",
    "SyncOrchestrator",
    "SyncScheduler",
    "VaultUpdater",
    "generate_entity_name",
]
