from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from .capture import (
    CaptureConfig,
    bullet_facts,
    capture_skip_reason,
    estimate_importance,
    memory_type_for_event,
    normalize_tool_name,
)
from .ingest.types import (
    AssistantMessageEvent,
    PhaseChangeEvent,
    RawEvent,
    ToolUseEvent,
    UserMessageEvent,
    parse_raw_event,
)
from .store.types import MemoryInput

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 100
MAX_ARG_LINES = 5
MAX_ARG_VALUE_CHARS = 100
MAX_RESULT_CHARS = 500
MAX_MESSAGE_CHARS = 2000
MIN_ASSISTANT_CHARS = 100
MAX_SOURCE_FILES = 5
MAX_TEXT_CONCEPTS = 5

# Arguments that carry whole file bodies and never belong in a memory.
BULKY_ARGS = frozenset({"content", "newString", "oldString", "new_string", "old_string"})
PATH_ARGS = ("filePath", "file_path", "file", "path")
PRIMARY_ARGS = (*PATH_ARGS, "command", "cmd", "pattern", "query", "url")

TEXT_KEYWORDS = (
    "function",
    "class",
    "component",
    "api",
    "database",
    "test",
    "bug",
    "fix",
    "feature",
    "refactor",
    "performance",
    "security",
    "typescript",
    "javascript",
    "react",
    "node",
    "python",
)

_RESULT_PATH_RE = re.compile(r"(?:/[\w.-]+)+\.\w+")
_SENTENCE_END_RE = re.compile(r"[.!?\n]")


@dataclass
class DistillationResult:
    captured: bool
    reason: str | None = None
    memory: MemoryInput | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"captured": self.captured}
        if self.reason:
            data["reason"] = self.reason
        if self.memory is not None:
            data["memory"] = {
                "type": self.memory.type,
                "title": self.memory.title,
                "content": self.memory.content,
                "facts": self.memory.facts,
                "concepts": self.memory.concepts,
                "sourceFiles": self.memory.source_files,
                "importance": self.memory.importance,
                "phase": self.memory.phase,
                "sessionId": self.memory.session_id,
            }
        return data


def _first_arg(args: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def intent_title(text: str) -> str:
    stripped = text.strip()
    first = _SENTENCE_END_RE.split(stripped, maxsplit=1)[0].strip()
    return (first or stripped)[:MAX_TITLE_CHARS]


def text_concepts(text: str) -> list[str]:
    lowered = text.lower()
    return [keyword for keyword in TEXT_KEYWORDS if keyword in lowered][:MAX_TEXT_CONCEPTS]


class Distiller:
    """Turns raw lifecycle events into zero or one candidate memory."""

    def __init__(self, config: CaptureConfig | None = None) -> None:
        self.config = config or CaptureConfig()

    def distill_payload(self, payload: dict[str, Any]) -> DistillationResult:
        return self.distill(parse_raw_event(payload))

    def distill(self, event: RawEvent | None) -> DistillationResult:
        if event is None:
            return DistillationResult(captured=False, reason="Unknown event type")
        reason = capture_skip_reason(event, self.config)
        if reason is not None:
            logger.debug("skipping %s event: %s", event.type, reason)
            return DistillationResult(captured=False, reason=reason)
        importance = estimate_importance(event)
        if isinstance(event, ToolUseEvent):
            return self._distill_tool_use(event, importance)
        if isinstance(event, PhaseChangeEvent):
            return self._distill_phase_change(event, importance)
        if isinstance(event, UserMessageEvent):
            return self._distill_user_message(event, importance)
        return self._distill_assistant_message(event, importance)

    def _distill_tool_use(self, event: ToolUseEvent, importance: float) -> DistillationResult:
        memory = MemoryInput(
            type=memory_type_for_event(event),
            title=self._tool_title(event)[:MAX_TITLE_CHARS],
            content=self._tool_content(event),
            facts=self._tool_facts(event),
            concepts=self._tool_concepts(event),
            source_files=self._source_files(event),
            importance=importance,
            session_id=event.session_id,
        )
        return DistillationResult(captured=True, memory=memory)

    def _distill_phase_change(
        self, event: PhaseChangeEvent, importance: float
    ) -> DistillationResult:
        to_phase = event.to_phase
        memory = MemoryInput(
            type="session_summary",
            title=f"Workflow phase: {event.from_phase or 'start'} -> {to_phase}",
            content=f"Transitioned from {event.from_phase or 'initial'} phase to {to_phase} phase.",
            facts=[f"Entered {to_phase} phase"],
            concepts=["workflow", "phase", to_phase],
            importance=importance,
            phase=to_phase,
            session_id=event.session_id,
        )
        return DistillationResult(captured=True, memory=memory)

    def _distill_user_message(
        self, event: UserMessageEvent, importance: float
    ) -> DistillationResult:
        content = event.content.strip()
        if not content:
            return DistillationResult(captured=False, reason="Empty message")
        memory = MemoryInput(
            type="user_prompt",
            title=intent_title(content),
            content=content[:MAX_MESSAGE_CHARS],
            concepts=text_concepts(content),
            importance=importance,
            session_id=event.session_id,
        )
        return DistillationResult(captured=True, memory=memory)

    def _distill_assistant_message(
        self, event: AssistantMessageEvent, importance: float
    ) -> DistillationResult:
        content = event.content.strip()
        if len(content) < MIN_ASSISTANT_CHARS:
            return DistillationResult(captured=False, reason="Assistant message too short")
        memory = MemoryInput(
            type="observation",
            title=intent_title(content),
            content=content[:MAX_MESSAGE_CHARS],
            facts=bullet_facts(content),
            concepts=["assistant", *text_concepts(content)],
            importance=importance,
            session_id=event.session_id,
        )
        return DistillationResult(captured=True, memory=memory)

    def _tool_title(self, event: ToolUseEvent) -> str:
        name = normalize_tool_name(event.tool)
        path = _first_arg(event.args, PATH_ARGS)
        if name == "edit":
            return f"Edited {path or 'file'}"
        if name == "write":
            return f"Wrote {path or 'file'}"
        if name == "bash":
            command = _first_arg(event.args, ("command", "cmd")) or ""
            return f"Ran: {command[:50]}"
        primary = _first_arg(event.args, PRIMARY_ARGS)
        if primary:
            return f"Used {event.tool} on {primary}"
        return f"Used {event.tool}"

    def _tool_content(self, event: ToolUseEvent) -> str:
        lines = [f"Tool: {event.tool}"]
        relevant = [(key, value) for key, value in event.args.items() if key not in BULKY_ARGS]
        if relevant:
            lines.append("Arguments:")
            for key, value in relevant[:MAX_ARG_LINES]:
                lines.append(f"  {key}: {str(value)[:MAX_ARG_VALUE_CHARS]}")
        if event.result:
            suffix = "..." if len(event.result) > MAX_RESULT_CHARS else ""
            lines.append(f"Result: {event.result[:MAX_RESULT_CHARS]}{suffix}")
        return "\n".join(lines)

    def _tool_facts(self, event: ToolUseEvent) -> list[str]:
        name = normalize_tool_name(event.tool)
        result = event.result.lower()
        facts: list[str] = []
        if name in {"edit", "write"} and "success" in result:
            facts.append("File modification successful")
        if name == "bash":
            if "error" in result:
                facts.append("Command encountered an error")
            elif "success" in result:
                facts.append("Command completed successfully")
        return facts

    def _tool_concepts(self, event: ToolUseEvent) -> list[str]:
        concepts = [normalize_tool_name(event.tool)]
        path = _first_arg(event.args, PATH_ARGS)
        if path:
            suffix = PurePosixPath(path).suffix.lower().lstrip(".")
            if suffix:
                concepts.append(suffix)
        return concepts

    def _source_files(self, event: ToolUseEvent) -> list[str]:
        files: list[str] = []
        path = _first_arg(event.args, PATH_ARGS)
        if path:
            files.append(path)
        files.extend(_RESULT_PATH_RE.findall(event.result)[:MAX_SOURCE_FILES])
        unique = list(dict.fromkeys(files))
        return unique[:MAX_SOURCE_FILES]
