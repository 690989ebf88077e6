from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

from .ingest.types import (
    MAX_TOOL_RESULT_CHARS,
    AssistantMessageEvent,
    PhaseChangeEvent,
    RawEvent,
    ToolUseEvent,
    UserMessageEvent,
)

if TYPE_CHECKING:
    from .config import RecollectConfig

DEFAULT_SKIP_TOOLS: Final[tuple[str, ...]] = (
    "read",
    "glob",
    "grep",
    "bash",
    "memory_save",
    "memory_search",
    "memory_note",
    "memory_decision",
    "memory_forget",
)

# Keyed by normalized tool name.
TOOL_IMPORTANCE: Final[dict[str, int]] = {
    "write": 8,
    "edit": 7,
    "memory_decision": 8,
}
DEFAULT_TOOL_IMPORTANCE = 5
PHASE_CHANGE_IMPORTANCE = 7
USER_QUESTION_IMPORTANCE = 6
USER_MESSAGE_IMPORTANCE = 4
ASSISTANT_MESSAGE_IMPORTANCE = 3
ASSISTANT_BULLETS_BONUS = 2

BULLET_RE = re.compile(r"^\s*[-*•]\s*(.+)$", re.MULTILINE)


@dataclass(frozen=True)
class CaptureConfig:
    enabled: bool = True
    capture_tool_use: bool = True
    capture_messages: bool = False
    capture_phase_changes: bool = True
    min_importance: float = 4
    skip_tools: tuple[str, ...] = field(default=DEFAULT_SKIP_TOOLS)

    @classmethod
    def from_config(cls, config: RecollectConfig) -> CaptureConfig:
        return cls(
            enabled=config.capture_enabled,
            capture_tool_use=config.capture_tool_use,
            capture_messages=config.capture_messages,
            capture_phase_changes=config.capture_phase_changes,
            min_importance=config.capture_min_importance,
            skip_tools=tuple(normalize_tool_name(name) for name in config.capture_skip_tools),
        )

    def is_skipped(self, tool: str) -> bool:
        return normalize_tool_name(tool) in self.skip_tools


def normalize_tool_name(tool: str) -> str:
    name = (tool or "").strip().lower()
    if name.startswith("mcp_"):
        name = name[len("mcp_") :]
    return name


def bullet_facts(text: str, limit: int = 5) -> list[str]:
    facts: list[str] = []
    for match in BULLET_RE.finditer(text):
        fact = match.group(1).strip()
        if fact:
            facts.append(fact)
        if len(facts) >= limit:
            break
    return facts


def estimate_importance(event: RawEvent) -> float:
    if isinstance(event, ToolUseEvent):
        return TOOL_IMPORTANCE.get(normalize_tool_name(event.tool), DEFAULT_TOOL_IMPORTANCE)
    if isinstance(event, PhaseChangeEvent):
        return PHASE_CHANGE_IMPORTANCE
    if isinstance(event, UserMessageEvent):
        text = event.content.strip()
        if "?" in text or text.startswith("/"):
            return USER_QUESTION_IMPORTANCE
        return USER_MESSAGE_IMPORTANCE
    if bullet_facts(event.content):
        return ASSISTANT_MESSAGE_IMPORTANCE + ASSISTANT_BULLETS_BONUS
    return ASSISTANT_MESSAGE_IMPORTANCE


def memory_type_for_event(event: RawEvent) -> str:
    if isinstance(event, ToolUseEvent):
        return "decision" if "decision" in event.tool.lower() else "observation"
    if isinstance(event, PhaseChangeEvent):
        return "session_summary"
    if isinstance(event, UserMessageEvent):
        return "user_prompt"
    return "observation"


def capture_skip_reason(event: RawEvent, config: CaptureConfig) -> str | None:
    """Return why ``event`` should not be captured, or None to capture it."""
    if not config.enabled:
        return "Capture disabled"
    if isinstance(event, ToolUseEvent):
        if not config.capture_tool_use:
            return "Tool capture disabled"
        if config.is_skipped(event.tool):
            return f"Tool {event.tool} is skipped"
    elif isinstance(event, PhaseChangeEvent):
        if not config.capture_phase_changes:
            return "Phase change capture disabled"
    elif not config.capture_messages:
        return "Message capture disabled"
    importance = estimate_importance(event)
    if importance < config.min_importance:
        return f"Importance {importance:g} below threshold {config.min_importance:g}"
    return None


def should_capture(event: RawEvent, config: CaptureConfig) -> bool:
    return capture_skip_reason(event, config) is None


def build_tool_event(
    tool: str, args: dict[str, Any], result: str, session_id: str
) -> ToolUseEvent:
    return ToolUseEvent(
        session_id=session_id,
        tool=tool,
        args=dict(args),
        result=result[:MAX_TOOL_RESULT_CHARS],
    )


def build_phase_event(from_phase: str | None, to_phase: str, session_id: str) -> PhaseChangeEvent:
    return PhaseChangeEvent(session_id=session_id, to_phase=to_phase, from_phase=from_phase)


def build_message_event(
    role: str, content: str, session_id: str
) -> UserMessageEvent | AssistantMessageEvent:
    if role == "user":
        return UserMessageEvent(session_id=session_id, content=content)
    if role == "assistant":
        return AssistantMessageEvent(session_id=session_id, content=content)
    raise ValueError(f"unknown message role: {role!r}")
