"""
Detect vault files changed since the last push.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from vaultmem.core.config import get_logger
from vaultmem.core.types import ChangedFile
from vaultmem.storage.manager import ENTITY_SUFFIX
from vaultmem.storage.watermark import Watermark

logger = get_logger("sync.file_watcher")


class FileWatcher:
    """Compares entity file mtimes against the `.last_obsidian_sync` watermark."""

    def __init__(self, memory_dir: Path, watermark: Watermark):
        self.memory_dir = Path(memory_dir)
        self.watermark = watermark

    def _scan(self, since: datetime) -> list[ChangedFile]:
        changed = []
        for path in sorted(self.memory_dir.iterdir()):
            if path.name.startswith(".") or path.suffix != ENTITY_SUFFIX or path.name == self.watermark.path.name:
                continue
            if not path.is_file():
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            if modified > since:
                changed.append(ChangedFile(
                    path=path,
                    entity_name=path.stem,
                    modified_time=modified,
                ))
        return changed

    async def read_changed_files(self) -> list[ChangedFile]:
        """
        List entity files modified after the watermark, then advance it.

        The watermark moves as soon as the scan is done, before the caller
        pushes anything.
        """
        since = self.watermark.read()
        logger.info(f"Checking for files modified since {since.isoformat()}...")

        changed = await asyncio.to_thread(self._scan, since)
        self.watermark.advance()

        logger.info(f"Found {len(changed)} changed files")
        return changed
