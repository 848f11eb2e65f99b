"""
Storage Layer - Markdown vault and sync watermarks.

The storage hierarchy:
1. Markdown files → Canonical source of truth (one file per entity)
2. Watermark files → Per-direction sync boundaries inside the vault

All entity mutations should go through MarkdownStorageManager.
"""

from vaultmem.storage.manager import MarkdownStorageManager
from vaultmem.storage.markdown import parse_entity, render_entity
from vaultmem.storage.watermark import Watermark

__all__ = [
    "MarkdownStorageManager",
    "parse_entity",
    "render_entity",
    "Watermark",
]
