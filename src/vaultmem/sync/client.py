"""
Memory service clients - the sync engine's view of the graph database.

Two backends expose the same two capabilities:
- list_memories(limit): one page of raw memory records
- update_memory_observations(memory_id, observations, append)

McpMemoryClient talks JSON-RPC `tools/call` over HTTP to a memory MCP
server. BoltMemoryClient runs Cypher directly against Neo4j.
"""

import asyncio
import itertools
import json
from contextlib import contextmanager
from typing import Any, Protocol

import httpx
from neo4j import Driver, GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from vaultmem.core.config import Settings, settings as default_settings, get_logger
from vaultmem.core.errors import ParseFailureError, SyncError, TransportError

logger = get_logger("sync.client")


class MemoryClient(Protocol):
    """What the fetcher and updater need from the external system."""

    async def list_memories(self, limit: int) -> list[dict[str, Any]]:
        ...

    async def update_memory_observations(
        self,
        memory_id: str,
        observations: list[str],
        append: bool = False,
    ) -> None:
        ...

    async def close(self) -> None:
        ...


# ============================================
# JSON-RPC over HTTP
# ============================================

class McpMemoryClient:
    """
    Memory service reached through its MCP tool endpoint.

    Tools used:
    - get_all_memories {limit} → text content holding {"bubbles": [...]}
    - update_memory_observations {memory_id, observations, append}
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or default_settings.neo4j_mcp_url
        self.timeout = httpx.Timeout(timeout or default_settings.http_timeout_seconds)
        self._transport = transport
        self._ids = itertools.count(1)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Call a remote tool and return the JSON-RPC `result` member.

        Raises TransportError when the service is unreachable, answers
        with a non-2xx status, returns a non-JSON body, reports a JSON-RPC
        error, or sends a `result` that is not an object.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Memory service unreachable at {self.url}: {e}") from e

        if not response.is_success:
            raise TransportError(f"Memory service returned HTTP {response.status_code} for {name}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Malformed response from memory service for {name}") from e

        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response shape from memory service for {name}")

        error = data.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise TransportError(f"Memory service error for {name}: {message}")

        result = data.get("result") or {}
        if not isinstance(result, dict):
            raise TransportError(f"Unexpected result shape from memory service for {name}")
        return result

    async def list_memories(self, limit: int) -> list[dict[str, Any]]:
        """
        Fetch one page of memories.

        A response without text content is an empty page. Text that is
        not JSON raises ParseFailureError.
        """
        result = await self.call_tool("get_all_memories", {"limit": limit})

        content = result.get("content") or []
        if not isinstance(content, list):
            raise TransportError(f"Unexpected content shape from memory service: {type(content).__name__}")
        if not content or not isinstance(content[0], dict) or "text" not in content[0]:
            return []

        try:
            page = json.loads(content[0]["text"])
        except (TypeError, ValueError) as e:
            raise ParseFailureError(f"Unparseable memory page: {e}") from e

        if isinstance(page, list):
            return page
        if isinstance(page, dict) and isinstance(page.get("bubbles"), list):
            return page["bubbles"]
        return []

    async def update_memory_observations(
        self,
        memory_id: str,
        observations: list[str],
        append: bool = False,
    ) -> None:
        await self.call_tool("update_memory_observations", {
            "memory_id": memory_id,
            "observations": observations,
            "append": append,
        })

    async def close(self) -> None:
        pass


# ============================================
# Direct Bolt access
# ============================================

LIST_MEMORIES_QUERY = """
MATCH (m:Memory)
RETURN m
ORDER BY coalesce(m.last_accessed, m.created_at) DESC
LIMIT $limit
"""

UPDATE_OBSERVATIONS_QUERY = """
MATCH (m:Memory)
WHERE toString(m.id) = $id
SET m.observations = CASE
    WHEN $append THEN coalesce(m.observations, []) + $observations
    ELSE $observations
END
RETURN count(m) AS updated
"""


def _plain_value(value: Any) -> Any:
    """Convert neo4j temporal values to ISO strings."""
    if hasattr(value, "iso_format"):
        return value.iso_format()
    return value


class BoltMemoryClient:
    """
    Memory service reached directly over Bolt.

    Memories are (:Memory) nodes carrying id, content, sector, salience,
    entities, observations, created_at and last_accessed properties.
    """

    def __init__(
        self,
        uri: str | None = None,
        user: str | None = None,
        password: str | None = None,
        driver: Driver | None = None,
    ):
        self.uri = uri or default_settings.neo4j_uri
        self.user = user or default_settings.neo4j_user
        self.password = password or default_settings.neo4j_password
        self._driver = driver

    @property
    def driver(self) -> Driver:
        """Lazy initialization of the Neo4j driver."""
        if self._driver is None:
            self._driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password),
            )
        return self._driver

    @contextmanager
    def session(self):
        """Get a database session."""
        session = self.driver.session()
        try:
            yield session
        finally:
            session.close()

    def ensure_schema(self) -> None:
        """Create the Memory id constraint and last_accessed index."""
        with self.session() as session:
            session.run("""
                CREATE CONSTRAINT memory_id_unique IF NOT EXISTS
                FOR (m:Memory) REQUIRE m.id IS UNIQUE
            """)
            session.run("""
                CREATE INDEX memory_last_accessed IF NOT EXISTS
                FOR (m:Memory) ON (m.last_accessed)
            """)
        logger.info("Ensured Memory schema")

    def _list_sync(self, limit: int) -> list[dict[str, Any]]:
        with self.session() as session:
            result = session.run(LIST_MEMORIES_QUERY, limit=limit)
            return [
                {key: _plain_value(value) for key, value in dict(record["m"]).items()}
                for record in result
            ]

    def _update_sync(self, memory_id: str, observations: list[str], append: bool) -> int:
        with self.session() as session:
            record = session.run(
                UPDATE_OBSERVATIONS_QUERY,
                id=memory_id,
                observations=observations,
                append=append,
            ).single()
            return record["updated"] if record else 0

    async def list_memories(self, limit: int) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._list_sync, limit)
        except (DriverError, Neo4jError) as e:
            raise TransportError(f"Neo4j query failed: {e}") from e

    async def update_memory_observations(
        self,
        memory_id: str,
        observations: list[str],
        append: bool = False,
    ) -> None:
        try:
            updated = await asyncio.to_thread(self._update_sync, memory_id, observations, append)
        except (DriverError, Neo4jError) as e:
            raise TransportError(f"Neo4j update failed for memory {memory_id}: {e}") from e
        if not updated:
            raise SyncError(f"Memory {memory_id} not found in Neo4j")

    async def close(self) -> None:
        """Close the driver connection."""
        if self._driver:
            self._driver.close()
            self._driver = None


def create_memory_client(config: Settings | None = None) -> MemoryClient:
    """Build the client selected by `sync_backend`."""
    config = config or default_settings
    if config.sync_backend == "bolt":
        return BoltMemoryClient(config.neo4j_uri, config.neo4j_user, config.neo4j_password)
    return McpMemoryClient(config.neo4j_mcp_url, config.http_timeout_seconds)
