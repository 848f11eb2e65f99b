"""
Pytest configuration and fixtures for Vault Memory tests.
"""

import asyncio
import os
import tempfile
from pathlib import Path

import pytest

# Set test environment before importing app modules
os.environ["VAULTMEM_MEMORY_DIR"] = tempfile.mkdtemp()
os.environ["VAULTMEM_ENABLE_SYNC"] = "false"
os.environ["VAULTMEM_SYNC_BACKEND"] = "mcp"

from vaultmem.core.errors import TransportError
from vaultmem.core.types import SyncDirection, SyncResult
from vaultmem.storage.manager import MarkdownStorageManager


@pytest.fixture
def memory_dir(tmp_path) -> Path:
    """An empty storage root."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def storage(memory_dir) -> MarkdownStorageManager:
    return MarkdownStorageManager(memory_dir)


# ============================================
# Memory service fakes
# ============================================

class FakeMemoryClient:
    """In-memory stand-in for the Neo4j memory service."""

    def __init__(self, bubbles: list[dict] | None = None):
        self.bubbles = list(bubbles or [])
        self.updates: list[tuple[str, list[str], bool]] = []
        self.list_error: Exception | None = None
        self.failing_ids: set[str] = set()
        self.closed = False

    async def list_memories(self, limit: int) -> list[dict]:
        if self.list_error is not None:
            raise self.list_error
        return self.bubbles[:limit]

    async def update_memory_observations(self, memory_id, observations, append=False):
        if memory_id in self.failing_ids:
            raise TransportError(f"update rejected for {memory_id}")
        self.updates.append((memory_id, list(observations), append))

    async def close(self):
        self.closed = True


class FakeOrchestrator:
    """Records sync calls; optionally blocks on a gate or raises."""

    def __init__(self, gate: asyncio.Event | None = None, error: Exception | None = None):
        self.calls: list[SyncDirection] = []
        self.gate = gate
        self.error = error
        self.closed = False

    async def sync(self, direction=SyncDirection.BOTH) -> SyncResult:
        self.calls.append(SyncDirection(direction))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return SyncResult(duration_ms=1)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_client() -> FakeMemoryClient:
    return FakeMemoryClient()


@pytest.fixture
def make_orchestrator():
    """Factory for FakeOrchestrator instances."""
    return FakeOrchestrator


@pytest.fixture
def sample_bubble() -> dict:
    """A raw memory record as returned by get_all_memories."""
    return {
        "id": 42,
        "content": "We chose Postgres over MySQL for the ledger",
        "sector": "Semantic",
        "salience": 0.8,
        "entities": ["Postgres", "MySQL"],
        "observations": ["Team agreed in standup"],
        "created_at": "2024-05-01T09:00:00Z",
        "last_accessed": "2024-05-01T10:00:00Z",
    }
