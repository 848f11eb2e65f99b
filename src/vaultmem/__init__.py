"""
Vault Memory - a knowledge-graph memory kept as markdown files.

One markdown file per entity, exposed as MCP tools, with a periodic
bidirectional sync against a Neo4j memory service.
"""

__version__ = "0.1.0"
