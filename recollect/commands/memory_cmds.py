from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from rich import print
from rich.markup import escape

from ..memory_types import validate_memory_type
from ..store import MemoryInput, SearchFilters, normalize_importance
from ..store.types import DEFAULT_IMPORTANCE


def _fail(message: str) -> None:
    print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(code=1)


def remember_cmd(
    *,
    service_from_path,
    db_path: str | None,
    memory_type: str,
    title: str,
    content: str,
    importance: float | None,
    concepts: list[str] | None,
    facts: list[str] | None,
    private: bool,
) -> None:
    """Manually add a memory."""

    service = service_from_path(db_path)
    try:
        item = MemoryInput(
            type=validate_memory_type(memory_type),
            title=title,
            content=content,
            importance=DEFAULT_IMPORTANCE if importance is None else importance,
            concepts=list(concepts or []),
            facts=list(facts or []),
            visibility="private" if private else "public",
        )
        memory = service.create(item)
        print(f"Stored memory {memory.id}")
    except ValueError as exc:
        _fail(str(exc))
    finally:
        service.close()


def show_cmd(*, service_from_path, db_path: str | None, memory_id: int) -> None:
    """Print a memory as JSON."""

    service = service_from_path(db_path)
    try:
        memory = service.get(memory_id)
        if memory is None:
            _fail(f"Memory {memory_id} not found")
        typer.echo(json.dumps(memory.to_dict(), indent=2, ensure_ascii=False))
    finally:
        service.close()


def search_cmd(
    *,
    service_from_path,
    db_path: str | None,
    query: str,
    limit: int,
    types: list[str] | None,
    min_importance: float | None,
    include_private: bool,
) -> None:
    service = service_from_path(db_path)
    try:
        filters = SearchFilters(
            types=tuple(validate_memory_type(t) for t in types or []),
            min_importance=(
                None if min_importance is None else normalize_importance(min_importance)
            ),
            include_private=include_private,
        )
        results = service.search(query, limit=limit, filters=filters)
    except ValueError as exc:
        _fail(str(exc))
    else:
        if not results:
            print("No results")
            return
        for result in results:
            memory = result.memory
            print(
                f"[bold]{memory.id}[/bold] ({escape(memory.type)}, {result.match_type}, "
                f"{result.score:.3f}) {escape(memory.title)}"
            )
    finally:
        service.close()


def recent_cmd(
    *, service_from_path, db_path: str | None, limit: int, types: list[str] | None
) -> None:
    service = service_from_path(db_path)
    try:
        memories = service.recent(limit, types=[validate_memory_type(t) for t in types or []])
    except ValueError as exc:
        _fail(str(exc))
    else:
        for memory in memories:
            print(
                f"[bold]{memory.id}[/bold] ({escape(memory.type)}) {escape(memory.title)} "
                f"[dim]{memory.created_at}[/dim]"
            )
    finally:
        service.close()


def forget_cmd(*, service_from_path, db_path: str | None, memory_id: int) -> None:
    """Delete a memory and its embedding."""

    service = service_from_path(db_path)
    try:
        if not service.delete(memory_id):
            _fail(f"Memory {memory_id} not found")
        print(f"Deleted memory {memory_id}")
    finally:
        service.close()


def context_cmd(
    *,
    service_from_path,
    db_path: str | None,
    query: str | None,
    phase: str | None,
    limit: int,
) -> None:
    """Print an injection block for a query, a phase, or recent memories."""

    service = service_from_path(db_path)
    try:
        if query:
            text = service.context(query)
        elif phase:
            text = service.phase_context(phase, limit)
        else:
            text = service.recent_context(limit)
    finally:
        service.close()
    if not text:
        print("[dim]No relevant memories[/dim]")
        return
    typer.echo(text)


def distill_cmd(
    *, service_from_path, db_path: str | None, source: str | None, dry_run: bool
) -> None:
    """Distill one raw JSON event; reads stdin when no file is given."""

    raw = Path(source).read_text(encoding="utf-8") if source else sys.stdin.read()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        _fail("event must be valid JSON")
    if not isinstance(payload, dict):
        _fail("event must be a JSON object")
    service = service_from_path(db_path)
    try:
        result, memory = service.distill_event(payload, save=not dry_run)
    except ValueError as exc:
        _fail(str(exc))
    else:
        if not result.captured:
            print(f"[yellow]Skipped:[/yellow] {escape(result.reason or 'not captured')}")
            return
        if memory is not None:
            print(f"Stored memory {memory.id}")
            return
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    finally:
        service.close()
