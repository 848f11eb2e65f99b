"""
Interface module - All external interfaces to Vault Memory.

This module contains:
- api.py: FastAPI app serving JSON-RPC over HTTP
- cli.py: Command-line interface
- mcp_server.py: MCP (Model Context Protocol) server over WebSockets
"""

from vaultmem.interface.api import create_app
from vaultmem.interface.mcp_server import MCPServer

__all__ = [
    "create_app",
    "MCPServer",
]
