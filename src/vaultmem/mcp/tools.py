"""
MCP Tools - knowledge graph and sync tools exposed over JSON-RPC.

Graph tools call straight into the MarkdownStorageManager; the two sync
tools go through the SyncScheduler so manual runs respect single-flight.

Every successful call returns one text content item holding the JSON
result. Failures raise ToolError, which the server turns into a
JSON-RPC error object.
"""

import asyncio
import json
from typing import Any

from pydantic import ValidationError

from vaultmem.core.config import get_logger
from vaultmem.core.errors import SyncAlreadyRunningError, ToolError
from vaultmem.core.types import SyncDirection
from vaultmem.storage.manager import MarkdownStorageManager
from vaultmem.sync.scheduler import SyncScheduler

logger = get_logger("mcp.tools")

INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


_ENTITY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Entity name, also the filename"},
        "entityType": {"type": "string", "description": "Classification, e.g. Person or Project"},
        "observations": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Facts about the entity, one line each",
        },
    },
    "required": ["name", "entityType"],
}

_RELATION_SCHEMA = {
    "type": "object",
    "properties": {
        "from": {"type": "string", "description": "Source entity name"},
        "to": {"type": "string", "description": "Target entity name"},
        "relationType": {"type": "string", "description": "Relation type (optional)"},
    },
    "required": ["from", "to"],
}


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    # ===================
    # Graph Mutation Tools
    # ===================
    {
        "name": "create_entities",
        "description": "Create entities. Names that already exist are skipped, never overwritten.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "entities": {"type": "array", "items": _ENTITY_SCHEMA},
            },
            "required": ["entities"],
        },
    },
    {
        "name": "create_relations",
        "description": "Create directed relations. Identical relations are not duplicated.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "relations": {"type": "array", "items": _RELATION_SCHEMA},
            },
            "required": ["relations"],
        },
    },
    {
        "name": "add_observations",
        "description": "Add observations to existing entities. Observations already present are ignored.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "observations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "entityName": {"type": "string"},
                            "contents": {"type": "array", "items": {"type": "string"}},
                        },
                        "required": ["entityName", "contents"],
                    },
                },
            },
            "required": ["observations"],
        },
    },
    {
        "name": "delete_entities",
        "description": "Delete entities and the relations that point at them.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "entityNames": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["entityNames"],
        },
    },
    {
        "name": "delete_observations",
        "description": "Remove exact observation matches from entities.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "deletions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "entityName": {"type": "string"},
                            "observations": {"type": "array", "items": {"type": "string"}},
                        },
                        "required": ["entityName", "observations"],
                    },
                },
            },
            "required": ["deletions"],
        },
    },
    {
        "name": "delete_relations",
        "description": "Remove exact (from, to, relationType) matches.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "relations": {"type": "array", "items": _RELATION_SCHEMA},
            },
            "required": ["relations"],
        },
    },

    # ===================
    # Query Tools
    # ===================
    {
        "name": "read_graph",
        "description": "Read the whole knowledge graph.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "search_nodes",
        "description": "Case-insensitive search over entity names, types and observations.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "open_nodes",
        "description": "Get entities by exact name. Unknown names are left out.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "names": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["names"],
        },
    },
    {
        "name": "get_all_nodes",
        "description": "Every entity with its rendered markdown content.",
        "inputSchema": {"type": "object", "properties": {}},
    },

    # ===================
    # Sync Tools
    # ===================
    {
        "name": "sync_obsidian_neo4j",
        "description": "Run a sync between the vault and the Neo4j memory service now.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "direction": {
                    "type": "string",
                    "enum": [d.value for d in SyncDirection],
                    "default": SyncDirection.BOTH.value,
                },
            },
        },
    },
    {
        "name": "get_scheduler_status",
        "description": "Whether periodic sync is enabled, and the last and next run.",
        "inputSchema": {"type": "object", "properties": {}},
    },
]


def text_content(result: Any) -> dict[str, Any]:
    """Wrap a JSON-able result in the tool response envelope."""
    return {
        "content": [
            {
                "type": "text",
                "text": json.dumps(result, indent=2, default=str),
            }
        ]
    }


class ToolRegistry:
    """Tool list plus dispatch for `tools/call`."""

    def __init__(
        self,
        storage: MarkdownStorageManager,
        scheduler: SyncScheduler | None = None,
        sync_timeout: float = 60.0,
    ):
        self.storage = storage
        self.scheduler = scheduler
        self.sync_timeout = sync_timeout

    def list_tools(self) -> list[dict[str, Any]]:
        return TOOL_DEFINITIONS

    async def call(self, name: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a tool and wrap its result."""
        args = args or {}
        if not isinstance(args, dict):
            raise ToolError("Tool arguments must be an object", INVALID_PARAMS)

        try:
            result = await self._execute(name, args)
        except KeyError as e:
            raise ToolError(f"Missing argument for {name}: {e}", INVALID_PARAMS) from e
        except (ValidationError, ValueError, TypeError) as e:
            raise ToolError(f"Invalid arguments for {name}: {e}", INVALID_PARAMS) from e

        return text_content(result)

    async def _execute(self, name: str, args: dict[str, Any]) -> Any:
        # Graph mutation tools
        if name == "create_entities":
            result = await self.storage.create_entities(_as_list(args["entities"]))
            return result.to_wire()

        elif name == "create_relations":
            result = await self.storage.create_relations(_as_list(args["relations"]))
            return result.to_wire()

        elif name == "add_observations":
            result = await self.storage.add_observations(_as_list(args["observations"]))
            return result.to_wire()

        elif name == "delete_entities":
            result = await self.storage.delete_entities(_as_list(args["entityNames"]))
            return result.to_wire()

        elif name == "delete_observations":
            result = await self.storage.delete_observations(_as_list(args["deletions"]))
            return result.to_wire()

        elif name == "delete_relations":
            result = await self.storage.delete_relations(_as_list(args["relations"]))
            return result.to_wire()

        # Query tools
        elif name == "read_graph":
            graph = await self.storage.read_graph()
            return graph.to_wire()

        elif name == "search_nodes":
            graph = await self.storage.search_nodes(str(args["query"]))
            return graph.to_wire()

        elif name == "open_nodes":
            graph = await self.storage.open_nodes(_as_list(args["names"]))
            return graph.to_wire()

        elif name == "get_all_nodes":
            nodes = await self.storage.get_all_nodes()
            return {"nodes": [node.to_wire() for node in nodes]}

        # Sync tools
        elif name == "sync_obsidian_neo4j":
            direction = SyncDirection(args.get("direction") or SyncDirection.BOTH)
            result = await self._sync(direction)
            return result.model_dump(mode="json")

        elif name == "get_scheduler_status":
            return self._require_scheduler().status().to_wire()

        else:
            raise ToolError(f"Unknown tool: {name}", METHOD_NOT_FOUND)

    def _require_scheduler(self) -> SyncScheduler:
        if self.scheduler is None:
            raise ToolError("Sync is not configured", INTERNAL_ERROR)
        return self.scheduler

    async def _sync(self, direction: SyncDirection):
        """
        Run a manual sync, waiting at most `sync_timeout` seconds.

        On timeout the caller gets an error but the run keeps going in the
        background and still updates the scheduler's last result.
        """
        scheduler = self._require_scheduler()
        try:
            task = scheduler.start_manual_sync(direction)
        except SyncAlreadyRunningError as e:
            raise ToolError(str(e), INTERNAL_ERROR) from e

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.sync_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Sync still running after {self.sync_timeout}s, no longer waiting")
            raise ToolError(
                f"Sync timed out after {self.sync_timeout:g} seconds; it continues in the background",
                INTERNAL_ERROR,
            ) from e


def _as_list(value: Any) -> list:
    if not isinstance(value, list):
        raise TypeError(f"expected an array, got {type(value).__name__}")
    return value
