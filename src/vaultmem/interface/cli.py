"""
Vault Memory CLI - Command-line interface.

Commands:
- vaultmem serve → HTTP server (POST /mcp)
- vaultmem serve-ws → WebSocket MCP server
- vaultmem sync → Run one sync now
- vaultmem graph → List entities
- vaultmem search "query" → Search entities
- vaultmem status → Storage, watermarks and memory service
- vaultmem init → Create the storage root (and Neo4j schema for bolt)
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vaultmem.core.config import settings, setup_logging
from vaultmem.core.types import KnowledgeGraph, SyncDirection
from vaultmem.storage.manager import MarkdownStorageManager
from vaultmem.storage.watermark import Watermark
from vaultmem.sync.client import BoltMemoryClient
from vaultmem.sync.orchestrator import SyncOrchestrator

app = typer.Typer(
    name="vaultmem",
    help="Vault Memory - markdown knowledge graph with Neo4j sync",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _entity_table(graph: KnowledgeGraph, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Observations", justify="right")
    table.add_column("Relations", justify="right")

    for entity in graph.entities:
        table.add_row(
            entity.name,
            entity.entity_type or "-",
            str(len(entity.observations)),
            str(len(entity.relations)),
        )
    return table


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
):
    """Serve the tools over HTTP (POST /mcp)."""
    import uvicorn

    setup_logging()
    settings.ensure_directories()

    uvicorn.run(
        "vaultmem.interface.api:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command("serve-ws")
def serve_ws(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
):
    """Serve the tools over WebSockets."""
    from vaultmem.interface.mcp_server import MCPServer

    setup_logging()
    settings.ensure_directories()

    try:
        run_async(MCPServer().start(host, port))
    except KeyboardInterrupt:
        console.print("[dim]Server stopped[/dim]")


@app.command()
def sync(
    direction: str = typer.Option("both", help="neo4j_to_obsidian, obsidian_to_neo4j or both"),
):
    """Run one sync now."""
    setup_logging()

    try:
        selected = SyncDirection(direction)
    except ValueError:
        console.print(f"[red]Unknown direction: {direction}[/red]")
        raise typer.Exit(code=2)

    async def _run():
        orchestrator = SyncOrchestrator.from_settings()
        try:
            return await orchestrator.sync(selected)
        finally:
            await orchestrator.close()

    with console.status("Syncing..."):
        result = run_async(_run())

    pulled = result.neo4j_to_obsidian
    pushed = result.obsidian_to_neo4j
    summary = (
        f"Neo4j → vault: {pulled.fetched} fetched, {pulled.created} created, {pulled.updated} updated\n"
        f"Vault → Neo4j: {pushed.changed_files} changed files, {pushed.updated_memories} memories updated\n"
        f"Duration: {result.duration_ms}ms"
    )

    if result.success:
        console.print(Panel(f"[green]✓ Sync complete[/green]\n\n{summary}", title="Success"))
        return

    console.print(Panel(f"[yellow]Sync finished with errors[/yellow]\n\n{summary}", title="Errors"))
    for error in pulled.errors + pushed.errors:
        console.print(f"  • [red]{error}[/red]")
    raise typer.Exit(code=1)


@app.command()
def graph():
    """List every entity."""
    setup_logging("WARNING")

    storage = MarkdownStorageManager()
    result = run_async(storage.read_graph())

    if result.entities:
        console.print(_entity_table(result, "Entities"))
        console.print(f"\n[dim]{len(result.relations)} relations[/dim]")
    else:
        console.print("[dim]No entities found[/dim]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Substring to look for"),
):
    """Search entity names, types and observations."""
    setup_logging("WARNING")

    storage = MarkdownStorageManager()
    result = run_async(storage.search_nodes(query))

    if result.entities:
        console.print(_entity_table(result, f"Matches for '{query}'"))
    else:
        console.print("[dim]No matches[/dim]")


@app.command()
def init():
    """Create the storage root and, for the bolt backend, the Neo4j schema."""
    setup_logging()

    console.print("[bold]Initializing Vault Memory...[/bold]\n")

    settings.ensure_directories()
    console.print(f"  ✓ Memory directory: {settings.memory_dir}")

    if settings.sync_backend == "bolt":
        client = BoltMemoryClient()
        try:
            client.ensure_schema()
            console.print("  ✓ Neo4j schema initialized")
        except Exception as e:
            console.print(f"  [yellow]⚠ Neo4j initialization skipped: {e}[/yellow]")
        finally:
            run_async(client.close())

    console.print("\n[green]✓ Initialization complete![/green]")


@app.command()
def status():
    """Show storage, watermarks and memory service configuration."""
    setup_logging("WARNING")

    console.print("[bold]Vault Memory Status[/bold]\n")

    console.print(f"Memory directory: {settings.memory_dir}")
    console.print(f"  Exists: {'✓' if settings.memory_dir.exists() else '✗'}")
    if settings.memory_dir.exists():
        storage = MarkdownStorageManager()
        console.print(f"  Entities: {len(storage.list_entity_names())}")

    console.print("\nWatermarks:")
    for label, path in (
        ("Neo4j → vault", settings.neo4j_watermark_path),
        ("Vault → Neo4j", settings.obsidian_watermark_path),
    ):
        mark = "never" if not path.exists() else Watermark(path).read().isoformat()
        console.print(f"  {label}: {mark}")

    console.print("\nMemory service:")
    console.print(f"  Backend: {settings.sync_backend}")
    if settings.sync_backend == "bolt":
        console.print(f"  URI: {settings.neo4j_uri}")
        client = BoltMemoryClient()
        try:
            client.driver.verify_connectivity()
            console.print("  Status: [green]Connected[/green]")
        except Exception as e:
            console.print(f"  Status: [red]Not connected ({e})[/red]")
        finally:
            run_async(client.close())
    else:
        console.print(f"  URL: {settings.neo4j_mcp_url}")

    console.print("\nScheduler:")
    console.print(f"  Enabled: {'✓' if settings.enable_sync else '✗'}")
    console.print(f"  Interval: {settings.sync_interval_minutes} minutes")


if __name__ == "__main__":
    app()

