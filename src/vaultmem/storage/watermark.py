"""
Sync watermarks - one ISO-8601 timestamp per sync direction.

A missing or unreadable watermark means "sync everything" (Unix epoch).
Callers advance the watermark as soon as their scan completes, before
anything downstream has been applied: a crash in between skips those
records on the next run rather than replaying them.
"""

from datetime import datetime
from pathlib import Path

from vaultmem.core.config import get_logger
from vaultmem.core.types import EPOCH, parse_timestamp, utcnow

logger = get_logger("storage.watermark")


class Watermark:
    """A timestamp persisted as a single-line file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> datetime:
        """Return the stored timestamp, or the epoch on first run."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return EPOCH
        except OSError as e:
            logger.warning(f"Cannot read watermark {self.path}: {e}")
            return EPOCH

        value = parse_timestamp(text.strip())
        if value is None:
            logger.warning(f"Ignoring malformed watermark in {self.path}: {text.strip()!r}")
            return EPOCH
        return value

    def advance(self, now: datetime | None = None) -> datetime:
        """
        Overwrite the watermark with `now` (default: current UTC time).

        A failed write is logged, not raised; the next run then re-scans
        from the previous watermark.
        """
        now = now or utcnow()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(now.isoformat(), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to update watermark {self.path}: {e}")
        return now
