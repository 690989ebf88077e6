from __future__ import annotations

from ._store import MemoryStore
from .types import (
    Memory,
    MemoryInput,
    SearchFilters,
    SearchResult,
    check_importance,
    normalize_importance,
    parse_update_payload,
)
from .vectors import VectorIndex, VectorMatch

__all__ = [
    "Memory",
    "MemoryInput",
    "MemoryStore",
    "SearchFilters",
    "SearchResult",
    "VectorIndex",
    "VectorMatch",
    "check_importance",
    "normalize_importance",
    "parse_update_payload",
]
