from __future__ import annotations

from typing import Final

MEMORY_TYPES: Final[tuple[str, ...]] = (
    "observation",
    "decision",
    "session_summary",
    "user_prompt",
    "note",
    "todo",
)

VISIBILITIES: Final[tuple[str, ...]] = ("public", "private")

MATCH_TYPES: Final[tuple[str, ...]] = ("fts", "vector", "hybrid")


def normalize_memory_type(value: str) -> str:
    return (value or "").strip().lower()


def validate_memory_type(value: str) -> str:
    normalized = normalize_memory_type(value)
    if normalized in MEMORY_TYPES:
        return normalized
    if normalized in {"summary", "session"}:
        raise ValueError(
            f"Invalid memory type '{normalized}'. Use 'session_summary' instead. "
            f"Allowed types: {', '.join(MEMORY_TYPES)}"
        )
    raise ValueError(
        f"Invalid memory type '{normalized}'. Allowed types: {', '.join(MEMORY_TYPES)}"
    )


def validate_visibility(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in VISIBILITIES:
        return normalized
    raise ValueError(f"Invalid visibility '{normalized}'. Allowed: {', '.join(VISIBILITIES)}")
