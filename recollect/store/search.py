from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from .types import SearchFilters, SearchResult

if TYPE_CHECKING:
    from ._store import MemoryStore

_FTS_STRIP_RE = re.compile(r'[*"()]')
_WORD_RE = re.compile(r"\w")
_FTS_OPERATORS = {"or", "and", "not", "near"}

# Column weights for bm25(): title, content, facts, concepts.
BM25_WEIGHTS = (10.0, 5.0, 1.0, 1.0)


def build_fts_query(query: str) -> str:
    """Turn free text into an FTS5 expression of OR-ed quoted prefix terms."""
    cleaned = _FTS_STRIP_RE.sub(" ", query or "")
    tokens = [
        token
        for token in cleaned.split()
        if _WORD_RE.search(token) and token.lower() not in _FTS_OPERATORS
    ]
    if not tokens:
        return ""
    return " OR ".join(f'"{token}"*' for token in tokens)


def filter_clauses(
    filters: SearchFilters, *, alias: str = "memories"
) -> tuple[list[str], list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if filters.types:
        placeholders = ", ".join("?" for _ in filters.types)
        clauses.append(f"{alias}.type IN ({placeholders})")
        params.extend(filters.types)
    if filters.min_importance is not None:
        clauses.append(f"{alias}.importance >= ?")
        params.append(filters.min_importance)
    if not filters.include_private:
        clauses.append(f"{alias}.visibility != 'private'")
    return clauses, params


def search_fts(
    store: MemoryStore,
    query: str,
    limit: int = 10,
    filters: SearchFilters | None = None,
) -> list[SearchResult]:
    expression = build_fts_query(query)
    if not expression or limit <= 0:
        return []
    filters = filters or SearchFilters()
    clauses, params = filter_clauses(filters)
    where = " AND ".join(["memories_fts MATCH ?", *clauses])
    weights = ", ".join(str(weight) for weight in BM25_WEIGHTS)
    rows = store.conn.execute(
        f"""
        SELECT memories.*, bm25(memories_fts, {weights}) AS rank
        FROM memories_fts
        JOIN memories ON memories.id = memories_fts.rowid
        WHERE {where}
        ORDER BY rank ASC, memories.id ASC
        LIMIT ?
        """,
        (expression, *params, limit),
    ).fetchall()
    return [
        SearchResult(
            memory=store.row_to_memory(row),
            score=abs(float(row["rank"])),
            match_type="fts",
        )
        for row in rows
    ]
