"""
MCP Server - Model Context Protocol server over WebSockets.

Exposes the vault as an MCP tool server:
- Graph operations (create_entities, add_observations, delete_relations, ...)
- Query operations (read_graph, search_nodes, open_nodes, get_all_nodes)
- Sync operations (sync_obsidian_neo4j, get_scheduler_status)

`MCPServer.handle_message` is transport-independent; the HTTP API
reuses it for `POST /mcp`.
"""

import asyncio
import json
from typing import Any

import websockets
from websockets.asyncio.server import serve

from vaultmem import __version__
from vaultmem.core.config import Settings, settings as default_settings, setup_logging, get_logger
from vaultmem.core.errors import ToolError
from vaultmem.mcp.tools import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND, ToolRegistry
from vaultmem.storage.manager import MarkdownStorageManager
from vaultmem.sync.orchestrator import SyncOrchestrator
from vaultmem.sync.scheduler import SyncScheduler

logger = get_logger("mcp_server")

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
PROTOCOL_VERSION = "2024-11-05"


def error_response(msg_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": msg_id,
        "error": {"code": code, "message": message},
    }


def build_registry(config: Settings | None = None) -> ToolRegistry:
    """Wire store, orchestrator and scheduler from settings."""
    config = config or default_settings
    storage = MarkdownStorageManager(config.memory_dir)
    orchestrator = SyncOrchestrator.from_settings(config, storage=storage)
    scheduler = SyncScheduler(orchestrator, config.sync_interval_minutes)
    return ToolRegistry(storage, scheduler, sync_timeout=config.sync_timeout_seconds)


class MCPServer:
    """
    MCP (Model Context Protocol) server for Vault Memory.

    Provides a WebSocket interface that MCP-compatible clients can use
    to read and edit the knowledge graph and trigger syncs.
    """

    def __init__(self, registry: ToolRegistry | None = None, config: Settings | None = None):
        self.config = config or default_settings
        self.registry = registry or build_registry(self.config)

    @property
    def scheduler(self) -> SyncScheduler | None:
        return self.registry.scheduler

    async def handle_message(self, message: Any) -> dict[str, Any]:
        """Handle an incoming JSON-RPC message and return the response envelope."""
        if not isinstance(message, dict):
            return error_response(None, INVALID_REQUEST, "Invalid request")

        method = message.get("method")
        params = message.get("params") or {}
        msg_id = message.get("id")

        if method == "initialize":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "protocolVersion": PROTOCOL_VERSION,
                    "serverInfo": {
                        "name": "vault-memory",
                        "version": __version__,
                    },
                    "capabilities": {
                        "tools": {}
                    },
                },
            }

        elif method == "ping":
            return {"jsonrpc": "2.0", "id": msg_id, "result": {}}

        elif method == "tools/list":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "tools": self.registry.list_tools()
                },
            }

        elif method == "tools/call":
            if not isinstance(params, dict) or not params.get("name"):
                return error_response(msg_id, INVALID_PARAMS, "Missing tool name")

            tool_name = params["name"]
            tool_args = params.get("arguments") or {}

            try:
                result = await self.registry.call(tool_name, tool_args)
            except ToolError as e:
                logger.warning(f"Tool {tool_name} failed: {e}")
                return error_response(msg_id, e.code, str(e))
            except Exception as e:
                logger.exception(f"Tool execution error in {tool_name}: {e}")
                return error_response(msg_id, INTERNAL_ERROR, f"Tool execution failed: {e}")

            return {"jsonrpc": "2.0", "id": msg_id, "result": result}

        else:
            return error_response(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    async def handle_connection(self, websocket):
        """Handle a WebSocket connection."""
        logger.info(f"New connection from {websocket.remote_address}")

        try:
            async for message in websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    await websocket.send(json.dumps(error_response(None, PARSE_ERROR, "Parse error")))
                    continue

                response = await self.handle_message(data)
                await websocket.send(json.dumps(response, default=str))
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed")

    async def start(self, host: str | None = None, port: int | None = None):
        """Start the MCP server, and the sync scheduler when enabled."""
        host = host or self.config.host
        port = self.config.ws_port if port is None else port

        if self.config.enable_sync and self.scheduler is not None:
            self.scheduler.start()

        logger.info(f"Starting MCP server on {host}:{port}")

        try:
            async with serve(self.handle_connection, host, port):
                await asyncio.Future()  # Run forever
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Stop the scheduler and release the memory service client."""
        if self.scheduler is not None:
            self.scheduler.stop()
            await self.scheduler.orchestrator.close()


def main():
    """Main entry point for MCP server."""
    setup_logging()
    default_settings.ensure_directories()

    server = MCPServer()

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
