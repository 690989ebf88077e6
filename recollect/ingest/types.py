from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..store.utils import parse_iso8601

EVENT_TYPES = ("tool_use", "user_message", "assistant_message", "phase_change")

# Tool results are cut to this many characters when an event is decoded.
MAX_TOOL_RESULT_CHARS = 2000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class ToolUseEvent:
    type: ClassVar[str] = "tool_use"
    session_id: str
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    result: str = ""
    timestamp: int = field(default_factory=_now_ms)


@dataclass(frozen=True, slots=True)
class PhaseChangeEvent:
    type: ClassVar[str] = "phase_change"
    session_id: str
    to_phase: str
    from_phase: str | None = None
    timestamp: int = field(default_factory=_now_ms)


@dataclass(frozen=True, slots=True)
class UserMessageEvent:
    type: ClassVar[str] = "user_message"
    session_id: str
    content: str
    timestamp: int = field(default_factory=_now_ms)


@dataclass(frozen=True, slots=True)
class AssistantMessageEvent:
    type: ClassVar[str] = "assistant_message"
    session_id: str
    content: str
    timestamp: int = field(default_factory=_now_ms)


RawEvent = ToolUseEvent | PhaseChangeEvent | UserMessageEvent | AssistantMessageEvent


def _parse_timestamp(value: Any) -> int:
    if value is None:
        return _now_ms()
    if isinstance(value, bool):
        raise ValueError("timestamp must be epoch milliseconds or an ISO-8601 string")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        parsed = parse_iso8601(value)
        if parsed is not None:
            return int(parsed.timestamp() * 1000)
    raise ValueError("timestamp must be epoch milliseconds or an ISO-8601 string")


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"event data.{key} must be a non-empty string")
    return value


def _result_text(value: Any) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    return text[:MAX_TOOL_RESULT_CHARS]


def parse_raw_event(payload: dict[str, Any]) -> RawEvent | None:
    """Decode a raw event body.

    Returns None for an unrecognised ``type`` and raises ValueError when a
    known type carries a malformed payload.
    """
    if not isinstance(payload, dict):
        raise ValueError("event must be an object")
    event_type = payload.get("type")
    if not isinstance(event_type, str):
        raise ValueError("event type is required")
    if event_type not in EVENT_TYPES:
        return None
    session_id = payload.get("sessionId", payload.get("session_id"))
    if not isinstance(session_id, str) or not session_id:
        raise ValueError("event sessionId is required")
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ValueError("event data must be an object")
    timestamp = _parse_timestamp(payload.get("timestamp"))

    if event_type == "tool_use":
        args = data.get("args") or {}
        if not isinstance(args, dict):
            raise ValueError("event data.args must be an object")
        return ToolUseEvent(
            session_id=session_id,
            tool=_require_str(data, "tool"),
            args=args,
            result=_result_text(data.get("result")),
            timestamp=timestamp,
        )
    if event_type == "phase_change":
        from_phase = data.get("from")
        if from_phase is not None and not isinstance(from_phase, str):
            raise ValueError("event data.from must be a string or null")
        return PhaseChangeEvent(
            session_id=session_id,
            to_phase=_require_str(data, "to"),
            from_phase=from_phase or None,
            timestamp=timestamp,
        )
    content = data.get("content")
    if not isinstance(content, str):
        raise ValueError("event data.content must be a string")
    if event_type == "user_message":
        return UserMessageEvent(session_id=session_id, content=content, timestamp=timestamp)
    return AssistantMessageEvent(session_id=session_id, content=content, timestamp=timestamp)
