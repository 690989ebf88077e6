from __future__ import annotations

from rich import print
from rich.markup import escape


def stats_cmd(*, service_from_path, db_path: str | None) -> None:
    service = service_from_path(db_path)
    try:
        data = service.stats()
        storage = str(service.db_path)
    finally:
        service.close()

    print("[bold]Storage[/bold]")
    print(f"- Path: {escape(storage)}")
    print(f"- Memories: {data['memories']}")
    print(f"- Oldest: {data['oldest'] or '-'}")
    print(f"- Newest: {data['newest'] or '-'}")
    vector_state = "available" if data["vectorsAvailable"] else "unavailable"
    print(f"- Vectors: {data['vectors']} ({vector_state})")

    print("\n[bold]By type[/bold]")
    if not data["byType"]:
        print("- No memories stored yet")
        return
    for memory_type, count in sorted(data["byType"].items()):
        print(f"- {memory_type}: {count}")
    for visibility, count in sorted(data["byVisibility"].items()):
        print(f"- visibility {visibility}: {count}")


def maintenance_cmd(*, service_from_path, db_path: str | None) -> None:
    """Apply retention, the max-memories limit and orphan cleanup once."""

    service = service_from_path(db_path)
    try:
        result = service.run_maintenance()
    finally:
        service.close()
    retention = result.retention
    max_limit = result.max_limit
    retention_note = f" ({retention.reason})" if retention.reason else ""
    limit_note = f" ({max_limit.reason})" if max_limit.reason else ""
    print(f"Retention: deleted {retention.deleted}{retention_note}")
    print(f"Max limit: deleted {max_limit.deleted}{limit_note}")
    print(f"Orphaned vectors removed: {result.orphans_removed}")


def embed_backfill_cmd(*, service_from_path, db_path: str | None, limit: int | None) -> None:
    """Embed memories that have no vector yet."""

    service = service_from_path(db_path)
    try:
        if not service.vectors.is_available():
            print("[yellow]Vector search unavailable; nothing to backfill[/yellow]")
            return
        counts = service.backfill_embeddings(limit)
    finally:
        service.close()
    print(
        f"Checked {counts['checked']} memories: "
        f"embedded {counts['embedded']}, failed {counts['failed']}"
    )
