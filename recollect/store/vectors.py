from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass

import sqlite_vec

from .. import db

logger = logging.getLogger(__name__)

VECTOR_TABLE = "memory_vectors"
# sqlite-vec refuses KNN queries with k above this.
MAX_KNN = 4096

_DIMS_RE = re.compile(r"float\[(\d+)\]", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class VectorMatch:
    memory_id: int
    distance: float


class VectorIndex:
    """One fixed-dimension embedding per memory, searched by exact L2 distance."""

    def __init__(self, conn: sqlite3.Connection, dimensions: int) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self.conn = conn
        self.dimensions = dimensions
        self._table_ready = False
        self._generator_ready = False

    def initialize(self) -> bool:
        if self._table_ready:
            return True
        try:
            db.load_sqlite_vec(self.conn)
        except RuntimeError as exc:
            logger.warning("vector index disabled: %s", exc)
            return False
        existing = self._existing_dimensions()
        if existing is not None and existing != self.dimensions:
            logger.error(
                "vector index disabled: table has %s dimensions, configured %s",
                existing,
                self.dimensions,
            )
            return False
        self.conn.execute(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {VECTOR_TABLE} USING vec0(
                memory_id INTEGER PRIMARY KEY,
                embedding FLOAT[{self.dimensions}]
            )
            """
        )
        self.conn.commit()
        self._table_ready = True
        return True

    def _existing_dimensions(self) -> int | None:
        row = self.conn.execute(
            "SELECT sql FROM sqlite_master WHERE name = ?", (VECTOR_TABLE,)
        ).fetchone()
        if row is None or not row["sql"]:
            return None
        match = _DIMS_RE.search(row["sql"])
        return int(match.group(1)) if match else None

    def set_generator_ready(self, ready: bool) -> None:
        self._generator_ready = ready

    def is_available(self) -> bool:
        return self._table_ready and self._generator_ready

    @property
    def table_ready(self) -> bool:
        return self._table_ready

    def _check_vector(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimensions:
            raise ValueError(
                f"embedding has {len(vector)} dimensions, index expects {self.dimensions}"
            )

    def store_embedding(self, memory_id: int, vector: Sequence[float]) -> None:
        """Insert or replace the vector for ``memory_id``."""
        self._check_vector(vector)
        if not self._table_ready:
            raise RuntimeError("vector index is not initialized")
        blob = sqlite_vec.serialize_float32([float(value) for value in vector])
        try:
            self.conn.execute(f"DELETE FROM {VECTOR_TABLE} WHERE memory_id = ?", (memory_id,))
            self.conn.execute(
                f"INSERT INTO {VECTOR_TABLE}(memory_id, embedding) VALUES (?, ?)",
                (memory_id, blob),
            )
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise

    def delete_embedding(self, memory_id: int) -> bool:
        if not self._table_ready:
            return False
        cur = self.conn.execute(f"DELETE FROM {VECTOR_TABLE} WHERE memory_id = ?", (memory_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def search_similar(self, vector: Sequence[float], limit: int = 10) -> list[VectorMatch]:
        self._check_vector(vector)
        if not self._table_ready or limit <= 0:
            return []
        k = min(limit, MAX_KNN)
        rows = self.conn.execute(
            f"""
            SELECT memory_id, distance
            FROM {VECTOR_TABLE}
            WHERE embedding MATCH ? AND k = ?
            ORDER BY distance
            """,
            (sqlite_vec.serialize_float32([float(value) for value in vector]), k),
        ).fetchall()
        return [
            VectorMatch(memory_id=int(row["memory_id"]), distance=float(row["distance"]))
            for row in rows
        ]

    def get_embedding(self, memory_id: int) -> list[float] | None:
        if not self._table_ready:
            return None
        row = self.conn.execute(
            f"SELECT vec_to_json(embedding) AS embedding FROM {VECTOR_TABLE} WHERE memory_id = ?",
            (memory_id,),
        ).fetchone()
        if row is None:
            return None
        return [float(value) for value in db.from_json(row["embedding"])]

    def has_embedding(self, memory_id: int) -> bool:
        if not self._table_ready:
            return False
        row = self.conn.execute(
            f"SELECT 1 FROM {VECTOR_TABLE} WHERE memory_id = ?", (memory_id,)
        ).fetchone()
        return row is not None

    def count(self) -> int:
        if not self._table_ready:
            return 0
        row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {VECTOR_TABLE}").fetchone()
        return int(row["n"] or 0)

    def clean_orphans(self) -> int:
        """Drop vectors whose memory row no longer exists."""
        if not self._table_ready:
            return 0
        orphans = [
            int(row["memory_id"])
            for row in self.conn.execute(
                f"""
                SELECT memory_id FROM {VECTOR_TABLE}
                WHERE memory_id NOT IN (SELECT id FROM memories)
                """
            )
        ]
        for memory_id in orphans:
            self.conn.execute(f"DELETE FROM {VECTOR_TABLE} WHERE memory_id = ?", (memory_id,))
        self.conn.commit()
        return len(orphans)

    def missing_embeddings(self, limit: int | None = None) -> list[int]:
        if not self._table_ready:
            return []
        limit_clause = "LIMIT ?" if limit else ""
        params: tuple[int, ...] = (limit,) if limit else ()
        rows = self.conn.execute(
            f"""
            SELECT id FROM memories
            WHERE id NOT IN (SELECT memory_id FROM {VECTOR_TABLE})
            ORDER BY id ASC
            {limit_clause}
            """,
            params,
        ).fetchall()
        return [int(row["id"]) for row in rows]
