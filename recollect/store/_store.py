from __future__ import annotations

import datetime as dt
import sqlite3
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from .. import db
from ..memory_types import validate_memory_type
from . import search as store_search
from . import utils as store_utils
from .types import (
    UPDATABLE_FIELDS,
    Memory,
    MemoryInput,
    SearchFilters,
    SearchResult,
    normalize_concepts,
    normalize_importance,
)

_JSON_FIELDS = ("facts", "concepts", "source_files")


class MemoryStore:
    """Durable CRUD and full-text search over memory records.

    Every mutation runs as a single statement followed by a commit, so a
    failed write leaves nothing behind.
    """

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH, *, check_same_thread: bool = True):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)

    @staticmethod
    def _now_iso() -> str:
        return store_utils.now_iso()

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return store_utils.estimate_tokens(text)

    @staticmethod
    def row_to_memory(row: sqlite3.Row | dict[str, Any]) -> Memory:
        return Memory(
            id=int(row["id"]),
            type=row["type"],
            title=row["title"],
            content=row["content"],
            facts=list(db.from_json(row["facts"])),
            concepts=list(db.from_json(row["concepts"])),
            source_files=list(db.from_json(row["source_files"])),
            importance=float(row["importance"]),
            visibility=row["visibility"],
            phase=row["phase"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            accessed_at=row["accessed_at"],
            access_count=int(row["access_count"] or 0),
        )

    def create(self, memory: MemoryInput, *, created_at: str | None = None) -> Memory:
        item = memory.normalized()
        if not item.title or not item.content:
            raise ValueError("title and content must not be empty")
        now = created_at or self._now_iso()
        cur = self.conn.execute(
            """
            INSERT INTO memories(
                type, title, content, facts, concepts, source_files, importance,
                visibility, phase, session_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.type,
                item.title,
                item.content,
                db.to_json(item.facts),
                db.to_json(item.concepts),
                db.to_json(item.source_files),
                normalize_importance(item.importance),
                item.visibility,
                item.phase,
                item.session_id,
                now,
                now,
            ),
        )
        self.conn.commit()
        memory_id = int(cur.lastrowid or 0)
        created = self.get(memory_id, touch=False)
        if created is None:  # pragma: no cover
            raise RuntimeError(f"memory {memory_id} vanished after insert")
        return created

    def get(self, memory_id: int, *, touch: bool = True) -> Memory | None:
        """Fetch one record; ``touch`` counts the read as an access."""
        if touch:
            self.touch([memory_id])
        row = self.conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        if row is None:
            return None
        return self.row_to_memory(row)

    def exists(self, memory_id: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return row is not None

    def get_many(self, memory_ids: Sequence[int]) -> dict[int, Memory]:
        if not memory_ids:
            return {}
        placeholders = ", ".join("?" for _ in memory_ids)
        rows = self.conn.execute(
            f"SELECT * FROM memories WHERE id IN ({placeholders})",
            tuple(memory_ids),
        ).fetchall()
        return {int(row["id"]): self.row_to_memory(row) for row in rows}

    def touch(self, memory_ids: Iterable[int]) -> None:
        ids = sorted({int(memory_id) for memory_id in memory_ids})
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        self.conn.execute(
            f"""
            UPDATE memories
            SET access_count = access_count + 1, accessed_at = ?
            WHERE id IN ({placeholders})
            """,
            (self._now_iso(), *ids),
        )
        self.conn.commit()

    def update(self, memory_id: int, changes: dict[str, Any]) -> Memory | None:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"cannot update fields: {', '.join(sorted(unknown))}")
        changes = dict(changes)
        if "type" in changes:
            changes["type"] = validate_memory_type(changes["type"])
        if "importance" in changes:
            changes["importance"] = normalize_importance(changes["importance"])
        if "concepts" in changes:
            changes["concepts"] = normalize_concepts(changes["concepts"])
        for key in ("title", "content"):
            if key in changes and not str(changes[key] or "").strip():
                raise ValueError(f"{key} must not be empty")
        if not self.exists(memory_id):
            return None
        if not changes:
            return self.get(memory_id, touch=False)
        assignments: list[str] = []
        params: list[Any] = []
        for key, value in changes.items():
            assignments.append(f"{key} = ?")
            params.append(db.to_json(value) if key in _JSON_FIELDS else value)
        assignments.append("updated_at = ?")
        params.append(self._now_iso())
        self.conn.execute(
            f"UPDATE memories SET {', '.join(assignments)} WHERE id = ?",
            (*params, memory_id),
        )
        self.conn.commit()
        return self.get(memory_id, touch=False)

    def delete(self, memory_id: int) -> bool:
        cur = self.conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def search_fts(
        self, query: str, limit: int = 10, filters: SearchFilters | None = None
    ) -> list[SearchResult]:
        return store_search.search_fts(self, query, limit=limit, filters=filters)

    def get_recent(
        self,
        limit: int = 10,
        types: Sequence[str] | None = None,
        *,
        include_private: bool = False,
    ) -> list[Memory]:
        filters = SearchFilters(types=tuple(types or ()), include_private=include_private)
        clauses, params = store_search.filter_clauses(filters)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"""
            SELECT * FROM memories
            {where}
            ORDER BY julianday(created_at) DESC, id DESC
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
        return [self.row_to_memory(row) for row in rows]

    def get_by_phase(
        self, phase: str, limit: int = 10, *, include_private: bool = False
    ) -> list[Memory]:
        privacy = "" if include_private else "AND visibility != 'private'"
        rows = self.conn.execute(
            f"""
            SELECT * FROM memories
            WHERE phase = ? {privacy}
            ORDER BY importance DESC, julianday(created_at) DESC, id DESC
            LIMIT ?
            """,
            (phase, limit),
        ).fetchall()
        return [self.row_to_memory(row) for row in rows]

    def get_by_session(self, session_id: str, limit: int = 50) -> list[Memory]:
        rows = self.conn.execute(
            """
            SELECT * FROM memories
            WHERE session_id = ?
            ORDER BY julianday(created_at) ASC, id ASC
            LIMIT ?
            """,
            (session_id, limit),
        ).fetchall()
        return [self.row_to_memory(row) for row in rows]

    def get_by_concepts(
        self, concepts: Sequence[str], limit: int = 10, *, include_private: bool = False
    ) -> list[Memory]:
        wanted = [concept.strip().lower() for concept in concepts if concept.strip()]
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        privacy = "" if include_private else "AND memories.visibility != 'private'"
        rows = self.conn.execute(
            f"""
            SELECT DISTINCT memories.* FROM memories, json_each(memories.concepts)
            WHERE json_each.value IN ({placeholders}) {privacy}
            ORDER BY memories.importance DESC, julianday(memories.created_at) DESC
            LIMIT ?
            """,
            (*wanted, limit),
        ).fetchall()
        return [self.row_to_memory(row) for row in rows]

    def count(self, filters: SearchFilters | None = None) -> int:
        clauses, params = store_search.filter_clauses(filters or SearchFilters())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        row = self.conn.execute(f"SELECT COUNT(*) AS n FROM memories {where}", params).fetchone()
        return int(row["n"] or 0)

    def all_ids(self) -> list[int]:
        rows = self.conn.execute("SELECT id FROM memories ORDER BY id").fetchall()
        return [int(row["id"]) for row in rows]

    def delete_older_than(self, days: float, *, now: dt.datetime | None = None) -> int:
        cutoff = store_utils.days_ago_iso(days, now=now)
        cur = self.conn.execute(
            "DELETE FROM memories WHERE julianday(created_at) < julianday(?)",
            (cutoff,),
        )
        self.conn.commit()
        return int(cur.rowcount or 0)

    def trim_to_max(self, max_count: int) -> int:
        """Delete the oldest records beyond ``max_count``; ties go by lowest id."""
        if max_count < 0:
            raise ValueError("max_count must be non-negative")
        cur = self.conn.execute(
            """
            DELETE FROM memories WHERE id IN (
                SELECT id FROM memories
                ORDER BY julianday(created_at) ASC, id ASC
                LIMIT MAX((SELECT COUNT(*) FROM memories) - ?, 0)
            )
            """,
            (max_count,),
        )
        self.conn.commit()
        return int(cur.rowcount or 0)

    def stats(self) -> dict[str, Any]:
        by_type = {
            row["type"]: int(row["n"])
            for row in self.conn.execute(
                "SELECT type, COUNT(*) AS n FROM memories GROUP BY type ORDER BY type"
            )
        }
        by_visibility = {
            row["visibility"]: int(row["n"])
            for row in self.conn.execute(
                "SELECT visibility, COUNT(*) AS n FROM memories GROUP BY visibility"
            )
        }
        bounds = self.conn.execute(
            "SELECT MIN(created_at) AS oldest, MAX(created_at) AS newest FROM memories"
        ).fetchone()
        return {
            "total": sum(by_type.values()),
            "by_type": by_type,
            "by_visibility": by_visibility,
            "oldest": bounds["oldest"],
            "newest": bounds["newest"],
        }

    def optimize_fts(self) -> None:
        self.conn.execute("INSERT INTO memories_fts(memories_fts) VALUES('rebuild')")
        self.conn.execute("INSERT INTO memories_fts(memories_fts) VALUES('optimize')")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()
