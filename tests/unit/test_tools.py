"""Tests for the MCP tool registry and message handling."""

import asyncio
import json

import pytest

from vaultmem.core.errors import ToolError
from vaultmem.interface.mcp_server import MCPServer
from vaultmem.mcp.tools import INVALID_PARAMS, METHOD_NOT_FOUND, TOOL_DEFINITIONS, ToolRegistry
from vaultmem.sync.scheduler import SyncScheduler


def _payload(response: dict):
    """Decode the JSON text of a tool response."""
    content = response["content"]
    assert content[0]["type"] == "text"
    return json.loads(content[0]["text"])


@pytest.fixture
def registry(storage, make_orchestrator) -> ToolRegistry:
    return ToolRegistry(storage, SyncScheduler(make_orchestrator()), sync_timeout=5)


class TestToolRegistry:
    """Tests for ToolRegistry.call."""

    def test_tool_list(self, registry):
        names = {tool["name"] for tool in registry.list_tools()}

        assert names == {
            "create_entities", "create_relations", "add_observations",
            "delete_entities", "delete_observations", "delete_relations",
            "read_graph", "search_nodes", "open_nodes", "get_all_nodes",
            "sync_obsidian_neo4j", "get_scheduler_status",
        }
        assert all("inputSchema" in tool for tool in TOOL_DEFINITIONS)

    @pytest.mark.asyncio
    async def test_graph_tools(self, registry):
        created = _payload(await registry.call("create_entities", {
            "entities": [
                {"name": "Alice", "entityType": "Person", "observations": ["Likes tea"]},
                {"name": "Bob", "entityType": "Person"},
            ],
        }))
        await registry.call("create_relations", {"relations": [{"from": "Alice", "to": "Bob", "relationType": "knows"}]})
        added = _payload(await registry.call("add_observations", {
            "observations": [{"entityName": "Alice", "contents": ["Likes tea", "Likes coffee"]}],
        }))
        graph = _payload(await registry.call("read_graph", {}))

        assert [e["name"] for e in created["created"]] == ["Alice", "Bob"]
        assert added["results"] == [{"entityName": "Alice", "addedObservations": ["Likes coffee"]}]
        assert graph["relations"] == [{"from": "Alice", "to": "Bob", "relationType": "knows"}]
        alice = graph["entities"][0]
        assert alice["entityType"] == "Person"
        assert alice["observations"] == ["Likes tea", "Likes coffee"]

    @pytest.mark.asyncio
    async def test_query_tools(self, registry):
        await registry.call("create_entities", {"entities": [{"name": "Alice", "entityType": "Person"}]})

        found = _payload(await registry.call("search_nodes", {"query": "ali"}))
        opened = _payload(await registry.call("open_nodes", {"names": ["Alice", "Nobody"]}))
        nodes = _payload(await registry.call("get_all_nodes"))

        assert [e["name"] for e in found["entities"]] == ["Alice"]
        assert [e["name"] for e in opened["entities"]] == ["Alice"]
        assert nodes["nodes"][0]["content"].startswith("# Alice")

    @pytest.mark.asyncio
    async def test_delete_tools(self, registry):
        await registry.call("create_entities", {"entities": [
            {"name": "A", "entityType": "T", "observations": ["x", "y"]},
            {"name": "B", "entityType": "T"},
        ]})
        await registry.call("create_relations", {"relations": [{"from": "A", "to": "B"}, {"from": "B", "to": "A"}]})

        obs = _payload(await registry.call("delete_observations", {"deletions": [{"entityName": "A", "observations": ["x"]}]}))
        rels = _payload(await registry.call("delete_relations", {"relations": [{"from": "A", "to": "B"}]}))
        ents = _payload(await registry.call("delete_entities", {"entityNames": ["A"]}))

        assert obs["removed"] == 1
        assert rels["removed"] == 1
        assert ents["deleted"] == ["A"]
        assert ents["relationsPruned"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        with pytest.raises(ToolError) as exc:
            await registry.call("drop_database", {})

        assert exc.value.code == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,args", [
        ("create_entities", {}),
        ("create_entities", {"entities": "Alice"}),
        ("search_nodes", {}),
        ("sync_obsidian_neo4j", {"direction": "sideways"}),
    ])
    async def test_bad_arguments(self, registry, name, args):
        with pytest.raises(ToolError) as exc:
            await registry.call(name, args)

        assert exc.value.code == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_sync_tool(self, registry):
        result = _payload(await registry.call("sync_obsidian_neo4j", {"direction": "neo4j_to_obsidian"}))

        assert result["success"] is True
        assert set(result) == {"success", "neo4j_to_obsidian", "obsidian_to_neo4j", "duration_ms"}
        assert registry.scheduler.orchestrator.calls[-1].value == "neo4j_to_obsidian"

    @pytest.mark.asyncio
    async def test_sync_tool_while_running(self, registry):
        registry.scheduler.in_flight = True

        with pytest.raises(ToolError, match="already in progress"):
            await registry.call("sync_obsidian_neo4j", {})

    @pytest.mark.asyncio
    async def test_sync_timeout_leaves_run_going(self, storage, make_orchestrator):
        """The caller stops waiting; the sync itself finishes later."""
        gate = asyncio.Event()
        scheduler = SyncScheduler(make_orchestrator(gate=gate))
        registry = ToolRegistry(storage, scheduler, sync_timeout=0.05)

        with pytest.raises(ToolError, match="timed out"):
            await registry.call("sync_obsidian_neo4j", {})

        assert scheduler.in_flight
        gate.set()
        await scheduler.wait_idle()

        assert not scheduler.in_flight
        assert scheduler.last_result is not None

    @pytest.mark.asyncio
    async def test_scheduler_status_tool(self, registry):
        status = _payload(await registry.call("get_scheduler_status", {}))

        assert status == {
            "enabled": False,
            "lastSync": None,
            "nextSync": None,
            "interval": 5,
            "isRunning": False,
            "lastResult": None,
        }


class TestMCPServer:
    """Tests for JSON-RPC message handling."""

    @pytest.fixture
    def server(self, registry) -> MCPServer:
        return MCPServer(registry=registry)

    @pytest.mark.asyncio
    async def test_initialize(self, server):
        response = await server.handle_message({"jsonrpc": "2.0", "id": 1, "method": "initialize"})

        assert response["id"] == 1
        assert response["result"]["serverInfo"]["name"] == "vault-memory"
        assert "tools" in response["result"]["capabilities"]

    @pytest.mark.asyncio
    async def test_tools_list(self, server):
        response = await server.handle_message({"id": 2, "method": "tools/list"})

        assert len(response["result"]["tools"]) == len(TOOL_DEFINITIONS)

    @pytest.mark.asyncio
    async def test_tools_call(self, server):
        response = await server.handle_message({
            "id": 3,
            "method": "tools/call",
            "params": {"name": "create_entities", "arguments": {"entities": [{"name": "Alice", "entityType": "Person"}]}},
        })

        assert "error" not in response
        assert _payload(response["result"])["created"][0]["name"] == "Alice"

    @pytest.mark.asyncio
    async def test_tool_error_becomes_protocol_error(self, server):
        response = await server.handle_message({
            "id": 4,
            "method": "tools/call",
            "params": {"name": "nope", "arguments": {}},
        })

        assert response["error"]["code"] == METHOD_NOT_FOUND
        assert "result" not in response

    @pytest.mark.asyncio
    async def test_missing_tool_name(self, server):
        response = await server.handle_message({"id": 5, "method": "tools/call", "params": {}})

        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_method(self, server):
        response = await server.handle_message({"id": 6, "method": "resources/list"})

        assert response["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_not_an_object(self, server):
        response = await server.handle_message(["not", "a", "request"])

        assert response["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_ping(self, server):
        assert (await server.handle_message({"id": 7, "method": "ping"}))["result"] == {}

    @pytest.mark.asyncio
    async def test_shutdown_stops_scheduler_and_closes_client(self, server):
        server.scheduler.start()

        await server.shutdown()

        assert not server.scheduler.enabled
        assert server.scheduler.orchestrator.closed

    @pytest.mark.asyncio
    async def test_start_closes_client_when_cancelled(self, server):
        running = asyncio.create_task(server.start("127.0.0.1", 0))
        await asyncio.sleep(0.05)

        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running

        assert server.scheduler.orchestrator.closed
