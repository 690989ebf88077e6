from __future__ import annotations

import pytest

from recollect.capture import CaptureConfig
from recollect.distiller import Distiller, intent_title, text_concepts


def _tool(tool: str, args: dict, result: str = "") -> dict:
    return {
        "type": "tool_use",
        "sessionId": "s1",
        "data": {"tool": tool, "args": args, "result": result},
    }


def test_edit_event_becomes_observation() -> None:
    result = Distiller().distill_payload(
        _tool(
            "edit",
            {"filePath": "/src/app.py", "oldString": "a = 1", "newString": "a = 2"},
            "Edit applied successfully",
        )
    )

    assert result.captured is True
    memory = result.memory
    assert memory is not None
    assert memory.type == "observation"
    assert memory.title == "Edited /src/app.py"
    assert memory.importance == 7
    assert memory.facts == ["File modification successful"]
    assert memory.concepts == ["edit", "py"]
    assert memory.source_files == ["/src/app.py"]
    assert memory.session_id == "s1"
    assert "filePath: /src/app.py" in memory.content
    assert "oldString" not in memory.content
    assert "Result: Edit applied successfully" in memory.content


def test_generic_tool_title_and_result_paths() -> None:
    result = Distiller().distill_payload(
        _tool("webfetch", {"url": "https://example.com/docs"}, "saved to /tmp/out/page.html")
    )
    memory = result.memory
    assert memory is not None
    assert memory.title == "Used webfetch on https://example.com/docs"
    assert memory.importance == 5
    assert memory.source_files == ["/tmp/out/page.html"]


def test_bash_title_when_not_skipped() -> None:
    distiller = Distiller(CaptureConfig(skip_tools=()))
    memory = distiller.distill_payload(
        _tool("bash", {"command": "pytest -q"}, "error: 1 failed")
    ).memory
    assert memory is not None
    assert memory.title == "Ran: pytest -q"
    assert memory.facts == ["Command encountered an error"]


def test_decision_tool_maps_to_decision_type() -> None:
    distiller = Distiller(CaptureConfig(skip_tools=()))
    memory = distiller.distill_payload(
        _tool("memory_decision", {"title": "Use WAL"}, "recorded")
    ).memory
    assert memory is not None
    assert memory.type == "decision"
    assert memory.importance == 8


def test_skipped_and_unknown_events() -> None:
    distiller = Distiller()
    skipped = distiller.distill_payload(_tool("read", {"filePath": "a.py"}))
    assert skipped.captured is False
    assert skipped.reason == "Tool read is skipped"

    unknown = distiller.distill_payload({"type": "heartbeat", "sessionId": "s1", "data": {}})
    assert unknown.captured is False
    assert unknown.reason == "Unknown event type"

    with pytest.raises(ValueError):
        distiller.distill_payload({"type": "tool_use", "sessionId": "s1"})


def test_phase_change() -> None:
    memory = Distiller().distill_payload(
        {"type": "phase_change", "sessionId": "s1", "data": {"from": None, "to": "implement"}}
    ).memory
    assert memory is not None
    assert memory.type == "session_summary"
    assert memory.title == "Workflow phase: start -> implement"
    assert memory.content == "Transitioned from initial phase to implement phase."
    assert memory.facts == ["Entered implement phase"]
    assert memory.concepts == ["workflow", "phase", "implement"]
    assert memory.phase == "implement"
    assert memory.importance == 7


def test_user_message_when_enabled() -> None:
    distiller = Distiller(CaptureConfig(capture_messages=True))
    memory = distiller.distill_payload(
        {
            "type": "user_message",
            "sessionId": "s1",
            "data": {"content": "How should the database api handle retries? Keep it simple."},
        }
    ).memory
    assert memory is not None
    assert memory.type == "user_prompt"
    assert memory.title == "How should the database api handle retries"
    assert memory.concepts == ["api", "database"]
    assert memory.importance == 6


def test_assistant_message_rules() -> None:
    distiller = Distiller(CaptureConfig(capture_messages=True, min_importance=0))
    short = distiller.distill_payload(
        {"type": "assistant_message", "sessionId": "s1", "data": {"content": "Done."}}
    )
    assert short.captured is False
    assert short.reason == "Assistant message too short"

    body = "I refactored the parser.\n- split tokenizer out\n- added tests for edge cases\n" + (
        "More detail follows. " * 5
    )
    memory = distiller.distill_payload(
        {"type": "assistant_message", "sessionId": "s1", "data": {"content": body}}
    ).memory
    assert memory is not None
    assert memory.type == "observation"
    assert memory.title == "I refactored the parser"
    assert memory.facts == ["split tokenizer out", "added tests for edge cases"]
    assert memory.concepts[0] == "assistant"
    assert memory.importance == 5


def test_text_helpers() -> None:
    assert intent_title("Fix the bug! Then ship.") == "Fix the bug"
    assert len(intent_title("x" * 300)) == 100
    assert text_concepts("A React component with a Python API test") == [
        "component",
        "api",
        "test",
        "react",
        "python",
    ]


def test_result_serializes_to_wire_names() -> None:
    data = Distiller().distill_payload(_tool("write", {"filePath": "/a/b.ts"}, "ok")).to_dict()
    assert data["captured"] is True
    assert data["memory"]["sourceFiles"] == ["/a/b.ts"]
    assert data["memory"]["sessionId"] == "s1"
