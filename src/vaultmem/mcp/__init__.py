"""
MCP module - Tool definitions and dispatch for the knowledge graph.
"""

from vaultmem.mcp.tools import TOOL_DEFINITIONS, ToolRegistry, text_content

__all__ = [
    "TOOL_DEFINITIONS",
    "ToolRegistry",
    "text_content",
]
