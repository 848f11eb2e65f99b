"""Tests for sync watermarks."""

from datetime import datetime, timezone

from vaultmem.core.types import EPOCH
from vaultmem.storage.watermark import Watermark


class TestWatermark:
    """Tests for Watermark."""

    def test_missing_file_is_epoch(self, tmp_path):
        assert Watermark(tmp_path / ".last_neo4j_sync").read() == EPOCH

    def test_advance_then_read(self, tmp_path):
        mark = Watermark(tmp_path / ".last_neo4j_sync")
        now = datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)

        mark.advance(now)

        assert mark.read() == now
        assert (tmp_path / ".last_neo4j_sync").read_text() == now.isoformat()

    def test_advance_defaults_to_now(self, tmp_path):
        mark = Watermark(tmp_path / ".last_obsidian_sync")
        before = datetime.now(timezone.utc)

        written = mark.advance()

        assert before <= written <= datetime.now(timezone.utc)
        assert mark.read() == written

    def test_malformed_file_is_epoch(self, tmp_path):
        path = tmp_path / ".last_neo4j_sync"
        path.write_text("not a timestamp")

        assert Watermark(path).read() == EPOCH

    def test_failed_write_is_not_raised(self, tmp_path):
        """A watermark path that cannot be written is logged and ignored."""
        path = tmp_path / ".last_neo4j_sync"
        path.mkdir()

        Watermark(path).advance()

        assert path.is_dir()
