from __future__ import annotations

from .types import (
    EVENT_TYPES,
    AssistantMessageEvent,
    PhaseChangeEvent,
    RawEvent,
    ToolUseEvent,
    UserMessageEvent,
    parse_raw_event,
)

__all__ = [
    "EVENT_TYPES",
    "AssistantMessageEvent",
    "PhaseChangeEvent",
    "RawEvent",
    "ToolUseEvent",
    "UserMessageEvent",
    "parse_raw_event",
]
