from __future__ import annotations

import typer

from . import __version__
from .commands.maintenance_cmds import embed_backfill_cmd, maintenance_cmd, stats_cmd
from .commands.memory_cmds import (
    context_cmd,
    distill_cmd,
    forget_cmd,
    recent_cmd,
    remember_cmd,
    search_cmd,
    show_cmd,
)
from .commands.server_cmds import serve_cmd
from .config import RecollectConfig, load_config
from .service import MemoryService

app = typer.Typer(help="recollect: persistent memory for coding agents")


def _config(db_path: str | None) -> RecollectConfig:
    config = load_config()
    if db_path:
        config.db_path = db_path
    return config


def _service(db_path: str | None) -> MemoryService:
    service = MemoryService(_config(db_path))
    service.initialize()
    return service


@app.command()
def version() -> None:
    """Print the installed version."""
    typer.echo(__version__)


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (defaults to config)"),
    port: int = typer.Option(None, help="Port (defaults to config)"),
    log_level: str = typer.Option("INFO", help="Root log level"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Run the HTTP memory service."""
    serve_cmd(config=_config(db_path), host=host, port=port, log_level=log_level)


@app.command()
def remember(
    title: str,
    content: str,
    memory_type: str = typer.Option("note", "--type", help="Memory type"),
    importance: float = typer.Option(None, help="Importance 0-10 (fractions x10)"),
    concept: list[str] = typer.Option(None, help="Repeat for multiple concepts"),
    fact: list[str] = typer.Option(None, help="Repeat for multiple facts"),
    private: bool = typer.Option(False, help="Store with private visibility"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Manually add a memory."""
    remember_cmd(
        service_from_path=_service,
        db_path=db_path,
        memory_type=memory_type,
        title=title,
        content=content,
        importance=importance,
        concepts=concept,
        facts=fact,
        private=private,
    )


@app.command()
def show(memory_id: int, db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Print a memory as JSON."""
    show_cmd(service_from_path=_service, db_path=db_path, memory_id=memory_id)


@app.command()
def search(
    query: str,
    limit: int = typer.Option(10, min=1, max=50, help="Max results"),
    memory_type: list[str] = typer.Option(None, "--type", help="Repeat to filter by type"),
    min_importance: float = typer.Option(None, help="Minimum importance 0-10 (fractions x10)"),
    include_private: bool = typer.Option(False, help="Include private memories"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Hybrid keyword and semantic search."""
    search_cmd(
        service_from_path=_service,
        db_path=db_path,
        query=query,
        limit=limit,
        types=memory_type,
        min_importance=min_importance,
        include_private=include_private,
    )


@app.command()
def recent(
    limit: int = typer.Option(10, min=1, max=100, help="Max results"),
    memory_type: list[str] = typer.Option(None, "--type", help="Repeat to filter by type"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show recent memories."""
    recent_cmd(service_from_path=_service, db_path=db_path, limit=limit, types=memory_type)


@app.command()
def forget(
    memory_id: int, db_path: str = typer.Option(None, help="Path to SQLite database")
) -> None:
    """Delete a memory by id."""
    forget_cmd(service_from_path=_service, db_path=db_path, memory_id=memory_id)


@app.command()
def stats(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Show storage and vector index statistics."""
    stats_cmd(service_from_path=_service, db_path=db_path)


@app.command()
def context(
    query: str = typer.Argument(None, help="Query to build context for"),
    phase: str = typer.Option(None, help="Use memories from this workflow phase"),
    limit: int = typer.Option(10, help="Max memories for recent/phase context"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Print a context block for prompt injection."""
    context_cmd(service_from_path=_service, db_path=db_path, query=query, phase=phase, limit=limit)


@app.command()
def distill(
    source: str = typer.Argument(None, help="JSON event file (reads stdin when omitted)"),
    dry_run: bool = typer.Option(False, help="Show the distilled memory without saving"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Distill one raw agent event into a memory."""
    distill_cmd(service_from_path=_service, db_path=db_path, source=source, dry_run=dry_run)


@app.command()
def maintenance(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Run retention, the max-memories limit and orphan cleanup."""
    maintenance_cmd(service_from_path=_service, db_path=db_path)


@app.command("embed-backfill")
def embed_backfill(
    limit: int = typer.Option(None, help="Max memories to embed"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Embed memories that have no vector yet."""
    embed_backfill_cmd(service_from_path=_service, db_path=db_path, limit=limit)
