from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from . import redaction
from .store.types import Memory

if TYPE_CHECKING:
    from .config import RecollectConfig
    from .store import MemoryStore, VectorIndex

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10000
SESSION_PLACEHOLDER = "[SESSION]"
DISABLED_REASON = "disabled"


@dataclass(frozen=True, slots=True)
class PrivacyConfig:
    enabled: bool = True
    private_tags: bool = True
    retention_days: int = 90
    max_memories: int = 10000
    max_content_length: int = MAX_CONTENT_LENGTH

    @classmethod
    def from_config(cls, config: RecollectConfig) -> PrivacyConfig:
        return cls(
            enabled=config.privacy_enabled,
            private_tags=config.privacy_private_tags,
            retention_days=config.retention_days,
            max_memories=config.max_memories,
        )


@dataclass
class ValidationResult:
    valid: bool
    sanitized_content: str
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PolicyOutcome:
    deleted: int
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"deleted": self.deleted}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True, slots=True)
class MaintenanceResult:
    retention: PolicyOutcome
    max_limit: PolicyOutcome
    orphans_removed: int = 0

    @property
    def total_deleted(self) -> int:
        return self.retention.deleted + self.max_limit.deleted

    def to_dict(self) -> dict[str, Any]:
        return {
            "retention": self.retention.to_dict(),
            "maxLimit": self.max_limit.to_dict(),
            "orphansRemoved": self.orphans_removed,
            "totalDeleted": self.total_deleted,
        }


class PrivacyManager:
    """Redaction on the write path plus age and size limits for the store."""

    def __init__(self, config: PrivacyConfig | None = None) -> None:
        self.config = config or PrivacyConfig()

    def strip_private_tags(self, text: str) -> str:
        if not self.config.enabled or not self.config.private_tags:
            return text
        return redaction.strip_private(text)

    def sanitize(self, text: str) -> str:
        if not self.config.enabled:
            return text
        return redaction.redact(text)

    def clean(self, text: str) -> str:
        return self.sanitize(self.strip_private_tags(text))

    def contains_sensitive_data(self, text: str) -> bool:
        return redaction.contains_secret(text)

    def validate_for_storage(self, text: str) -> ValidationResult:
        warnings: list[str] = []
        result = text
        if self.config.enabled:
            if self.config.private_tags and redaction.has_private_block(result):
                result = redaction.strip_private(result)
                warnings.append("Private content was removed")
            categories = redaction.matched_categories(result)
            if categories:
                result = redaction.redact(result)
                warnings.append(f"Sensitive data was redacted ({', '.join(categories)})")
        limit = self.config.max_content_length
        if len(result) > limit:
            result = result[:limit]
            warnings.append(f"Content was truncated to {limit} characters")
        result = result.strip()
        if not result:
            warnings.append("Content is empty after sanitization")
            return ValidationResult(valid=False, sanitized_content="", warnings=warnings)
        return ValidationResult(valid=True, sanitized_content=result, warnings=warnings)

    def anonymize_memory(self, memory: Memory) -> Memory:
        return replace(
            memory,
            title=self.clean(memory.title),
            content=self.clean(memory.content),
            facts=[self.clean(fact) for fact in memory.facts],
            session_id=SESSION_PLACEHOLDER if memory.session_id else None,
        )

    def apply_retention_policy(self, store: MemoryStore) -> PolicyOutcome:
        if not self.config.enabled:
            return PolicyOutcome(deleted=0, reason=DISABLED_REASON)
        deleted = store.delete_older_than(self.config.retention_days)
        if deleted:
            logger.info(
                "retention removed %s memories older than %s days",
                deleted,
                self.config.retention_days,
            )
        return PolicyOutcome(
            deleted=deleted, reason=f"Older than {self.config.retention_days} days"
        )

    def apply_max_limit(self, store: MemoryStore) -> PolicyOutcome:
        if not self.config.enabled:
            return PolicyOutcome(deleted=0, reason=DISABLED_REASON)
        deleted = store.trim_to_max(self.config.max_memories)
        if deleted:
            logger.info("max limit removed %s memories", deleted)
        return PolicyOutcome(deleted=deleted, reason=f"Exceeded {self.config.max_memories} limit")

    def run_maintenance(
        self, store: MemoryStore, vectors: VectorIndex | None = None
    ) -> MaintenanceResult:
        retention = self.apply_retention_policy(store)
        max_limit = self.apply_max_limit(store)
        orphans = vectors.clean_orphans() if vectors is not None else 0
        return MaintenanceResult(retention=retention, max_limit=max_limit, orphans_removed=orphans)
