"""
FastAPI backend for Vault Memory.

Provides:
- POST /mcp     JSON-RPC tool calls (same handler as the WebSocket server)
- GET  /health  liveness
- GET  /status  storage root and scheduler status

Run with `vaultmem serve` or `uvicorn vaultmem.interface.api:create_app --factory`.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vaultmem import __version__
from vaultmem.core.config import Settings, settings as default_settings, get_logger
from vaultmem.interface.mcp_server import PARSE_ERROR, MCPServer, error_response

logger = get_logger("api")


def create_app(server: MCPServer | None = None, config: Settings | None = None) -> FastAPI:
    """Build the app around an MCPServer (one is created from settings if omitted)."""
    config = config or default_settings
    server = server or MCPServer(config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.enable_sync and server.scheduler is not None:
            server.scheduler.start()
        yield
        await server.shutdown()

    app = FastAPI(
        title="Vault Memory API",
        description="Markdown-backed knowledge graph with Neo4j sync",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.mcp_server = server

    # CORS for browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================
    # Health & Status
    # ==========================================

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/status")
    async def status():
        """Storage root, entity count and scheduler status."""
        storage = server.registry.storage
        scheduler = server.scheduler
        return {
            "memory_dir": str(storage.memory_dir),
            "entities": len(storage.list_entity_names()),
            "scheduler": scheduler.status().to_wire() if scheduler else None,
        }

    # ==========================================
    # JSON-RPC
    # ==========================================

    @app.post("/mcp")
    async def mcp(request: Request):
        """Handle one JSON-RPC message. Protocol errors are returned in the body."""
        try:
            message = json.loads(await request.body())
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JSONResponse(error_response(None, PARSE_ERROR, "Parse error"))

        response = await server.handle_message(message)
        return JSONResponse(response)

    return app
