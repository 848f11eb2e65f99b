"""
Core module - Configuration, types and errors.
"""

from vaultmem.core.config import settings, setup_logging, get_logger
from vaultmem.core.errors import (
    EntityNotFoundError,
    InvalidEntityNameError,
    ParseFailureError,
    SyncAlreadyRunningError,
    SyncError,
    ToolError,
    TransportError,
    VaultMemError,
)
from vaultmem.core.types import (
    Entity,
    EntityNode,
    KnowledgeGraph,
    Relation,
    RelationLink,
    SyncDirection,
    SyncResult,
)

__all__ = [
    "settings",
    "setup_logging",
    "get_logger",
    "EntityNotFoundError",
    "InvalidEntityNameError",
    "ParseFailureError",
    "SyncAlreadyRunningError",
    "SyncError",
    "ToolError",
    "TransportError",
    "VaultMemError",
    "Entity",
    "EntityNode",
    "KnowledgeGraph",
    "Relation",
    "RelationLink",
    "SyncDirection",
    "SyncResult",
]
