"""Tests for the vault → Neo4j direction: file watcher and Neo4j updater."""

import os
import time

import pytest

from vaultmem.core.types import ChangedFile, utcnow
from vaultmem.storage.watermark import Watermark
from vaultmem.sync.file_watcher import FileWatcher
from vaultmem.sync.neo4j_updater import Neo4jUpdater, extract_memory_id, user_observations


def _touch_future(path, seconds: int = 120):
    future = time.time() + seconds
    os.utime(path, (future, future))


class TestFileWatcher:
    """Tests for FileWatcher."""

    @pytest.mark.asyncio
    async def test_first_scan_sees_every_entity(self, memory_dir):
        (memory_dir / "Alice.md").write_text("# Alice\n")
        (memory_dir / "Bob.md").write_text("# Bob\n")
        (memory_dir / "notes.txt").write_text("ignored")
        (memory_dir / ".last_neo4j_sync").write_text("2024-01-01T00:00:00+00:00")
        (memory_dir / ".Alice.md.tmp").write_text("partial")

        watcher = FileWatcher(memory_dir, Watermark(memory_dir / ".last_obsidian_sync"))
        changed = await watcher.read_changed_files()

        assert [c.entity_name for c in changed] == ["Alice", "Bob"]
        assert all(c.modified_time.tzinfo is not None for c in changed)

    @pytest.mark.asyncio
    async def test_second_scan_sees_only_new_edits(self, memory_dir):
        (memory_dir / "Alice.md").write_text("# Alice\n")
        (memory_dir / "Bob.md").write_text("# Bob\n")
        watcher = FileWatcher(memory_dir, Watermark(memory_dir / ".last_obsidian_sync"))

        await watcher.read_changed_files()
        assert await watcher.read_changed_files() == []

        _touch_future(memory_dir / "Bob.md")
        changed = await watcher.read_changed_files()

        assert [c.entity_name for c in changed] == ["Bob"]

    @pytest.mark.asyncio
    async def test_watermark_advanced_after_scan(self, memory_dir):
        watermark = Watermark(memory_dir / ".last_obsidian_sync")
        before = utcnow()

        await FileWatcher(memory_dir, watermark).read_changed_files()

        assert watermark.read() >= before


class TestForeignKey:
    """Tests for Neo4j ID extraction and system line filtering."""

    def test_neo4j_id_prefix(self):
        assert extract_memory_id(["Content: x", "Neo4j ID: 42"]) == "42"

    def test_short_prefix(self):
        assert extract_memory_id(["Neo4j: abc-123"]) == "abc-123"

    def test_absent_or_empty(self):
        assert extract_memory_id(["just a note"]) is None
        assert extract_memory_id(["Neo4j ID:   "]) is None

    def test_user_observations(self):
        observations = [
            "Content: x",
            "Salience: 0.5",
            "Neo4j ID: 42",
            "Neo4j: 42",
            "Created: 2024-01-01",
            "User wrote this",
        ]

        assert user_observations(observations) == ["User wrote this"]


class TestNeo4jUpdater:
    """Tests for Neo4jUpdater.push."""

    async def _changed(self, storage, name, observations) -> ChangedFile:
        await storage.create_entities([{"name": name, "entityType": "Semantic", "observations": observations}])
        return ChangedFile(path=storage.entity_path(name), entity_name=name, modified_time=utcnow())

    @pytest.mark.asyncio
    async def test_pushes_user_observations_as_replace(self, storage, fake_client):
        changed = await self._changed(storage, "alice_Sema", [
            "Content: Alice likes tea",
            "Salience: 0.5",
            "Neo4j ID: 42",
            "Created: 2024-05-01",
            "Actually prefers coffee",
        ])

        result = await Neo4jUpdater(fake_client).push([changed])

        assert result.updated == 1
        assert result.errors == []
        assert fake_client.updates == [("42", ["Actually prefers coffee"], False)]

    @pytest.mark.asyncio
    async def test_file_without_id_is_an_error(self, storage, fake_client):
        changed = await self._changed(storage, "Local", ["hand written"])

        result = await Neo4jUpdater(fake_client).push([changed])

        assert result.updated == 0
        assert result.errors == ["No Neo4j ID in Local"]
        assert fake_client.updates == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(self, storage, fake_client):
        failing = await self._changed(storage, "one", ["Neo4j ID: 1", "a"])
        working = await self._changed(storage, "two", ["Neo4j: 2", "b"])
        fake_client.failing_ids.add("1")

        result = await Neo4jUpdater(fake_client).push([failing, working])

        assert result.updated == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to sync one:")
        assert fake_client.updates == [("2", ["b"], False)]

    @pytest.mark.asyncio
    async def test_vanished_file_is_an_error(self, storage, fake_client, memory_dir):
        changed = ChangedFile(path=memory_dir / "gone.md", entity_name="gone", modified_time=utcnow())

        result = await Neo4jUpdater(fake_client).push([changed])

        assert result.errors[0].startswith("Failed to sync gone:")
