from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from ..memory_types import validate_memory_type, validate_visibility

DEFAULT_IMPORTANCE = 5.0

# Wire names for fields whose python name differs.
_CAMEL_FIELDS = {
    "source_files": "sourceFiles",
    "session_id": "sessionId",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "accessed_at": "accessedAt",
    "access_count": "accessCount",
}

UPDATABLE_FIELDS = (
    "type",
    "title",
    "content",
    "facts",
    "concepts",
    "source_files",
    "importance",
    "visibility",
    "phase",
    "session_id",
)

EMBEDDED_FIELDS = frozenset({"title", "content", "facts", "concepts"})


def normalize_importance(value: Any) -> float:
    """Return importance on the 0-10 scale.

    Values in the open interval (0, 1) are treated as fractions and scaled by
    ten; 0 and values of 1 or more are kept as given.
    """
    if value is None:
        return DEFAULT_IMPORTANCE
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"importance must be a number, got {value!r}")
    number = float(value)
    if math.isnan(number):
        raise ValueError("importance must be a number, got nan")
    if 0 < number < 1:
        number = round(number * 10, 6)
    if number < 0 or number > 10:
        raise ValueError(
            "importance must be between 0 and 10 (fractions below 1 are scaled by 10), "
            f"got {value!r}"
        )
    return number


def check_importance(value: Any) -> float:
    """Validate a raw importance without rescaling it.

    The store applies :func:`normalize_importance` exactly once on write, so
    inputs and partial updates carry the value as the caller gave it.
    """
    normalize_importance(value)
    return DEFAULT_IMPORTANCE if value is None else float(value)


def normalize_concepts(values: Any) -> list[str]:
    concepts: list[str] = []
    for value in _string_list(values, key="concepts"):
        lowered = value.strip().lower()
        if lowered and lowered not in concepts:
            concepts.append(lowered)
    return concepts


def _string_list(values: Any, *, key: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple)):
        raise ValueError(f"{key} must be a list of strings")
    items: list[str] = []
    for value in values:
        if not isinstance(value, str):
            raise ValueError(f"{key} must be a list of strings")
        if value.strip():
            items.append(value.strip())
    return items


def _pick(payload: dict[str, Any], key: str) -> Any:
    if key in payload:
        return payload[key]
    camel = _CAMEL_FIELDS.get(key)
    if camel and camel in payload:
        return payload[camel]
    return None


def _optional_str(value: Any, *, key: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value.strip() or None


@dataclass
class Memory:
    id: int
    type: str
    title: str
    content: str
    facts: list[str]
    concepts: list[str]
    source_files: list[str]
    importance: float
    visibility: str
    phase: str | None
    session_id: str | None
    created_at: str
    updated_at: str
    accessed_at: str | None
    access_count: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {_CAMEL_FIELDS.get(key, key): value for key, value in data.items()}


@dataclass
class MemoryInput:
    type: str
    title: str
    content: str
    facts: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    source_files: list[str] = field(default_factory=list)
    importance: float = DEFAULT_IMPORTANCE
    visibility: str = "public"
    phase: str | None = None
    session_id: str | None = None

    def normalized(self) -> MemoryInput:
        return replace(
            self,
            type=validate_memory_type(self.type),
            title=self.title.strip(),
            content=self.content.strip(),
            facts=_string_list(self.facts, key="facts"),
            concepts=normalize_concepts(self.concepts),
            source_files=_string_list(self.source_files, key="source_files"),
            importance=check_importance(self.importance),
            visibility=validate_visibility(self.visibility),
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MemoryInput:
        """Build an input from a request body using camelCase or snake_case keys."""
        title = payload.get("title")
        content = payload.get("content")
        if not isinstance(title, str) or not title.strip():
            raise ValueError("title is required")
        if not isinstance(content, str) or not content.strip():
            raise ValueError("content is required")
        memory_type = payload.get("type") or "note"
        if not isinstance(memory_type, str):
            raise ValueError("type must be a string")
        return cls(
            type=memory_type,
            title=title,
            content=content,
            facts=_string_list(payload.get("facts"), key="facts"),
            concepts=normalize_concepts(payload.get("concepts")),
            source_files=_string_list(_pick(payload, "source_files"), key="sourceFiles"),
            importance=check_importance(payload.get("importance")),
            visibility=_optional_str(payload.get("visibility"), key="visibility") or "public",
            phase=_optional_str(payload.get("phase"), key="phase"),
            session_id=_optional_str(_pick(payload, "session_id"), key="sessionId"),
        ).normalized()


def parse_update_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Extract a partial update from a request body; unknown keys are ignored."""
    changes: dict[str, Any] = {}
    for key in UPDATABLE_FIELDS:
        camel = _CAMEL_FIELDS.get(key)
        if key not in payload and (camel is None or camel not in payload):
            continue
        value = _pick(payload, key)
        if key in {"title", "content"}:
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{key} must be a non-empty string")
            changes[key] = value.strip()
        elif key == "type":
            changes[key] = validate_memory_type(value if isinstance(value, str) else "")
        elif key == "visibility":
            changes[key] = validate_visibility(value if isinstance(value, str) else "")
        elif key == "importance":
            changes[key] = check_importance(value)
        elif key == "concepts":
            changes[key] = normalize_concepts(value)
        elif key in {"facts", "source_files"}:
            changes[key] = _string_list(value, key=camel or key)
        else:
            changes[key] = _optional_str(value, key=camel or key)
    return changes


@dataclass
class SearchResult:
    memory: Memory
    score: float
    match_type: str
    highlighted: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "memory": self.memory.to_dict(),
            "score": self.score,
            "matchType": self.match_type,
        }
        if self.highlighted is not None:
            data["highlighted"] = self.highlighted
        return data


@dataclass(frozen=True, slots=True)
class SearchFilters:
    types: tuple[str, ...] = ()
    min_importance: float | None = None
    include_private: bool = False

    def matches(self, memory: Memory) -> bool:
        if self.types and memory.type not in self.types:
            return False
        if self.min_importance is not None and memory.importance < self.min_importance:
            return False
        return self.include_private or memory.visibility != "private"
