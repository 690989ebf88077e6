from __future__ import annotations

from pathlib import Path

import pytest

from recollect.injection import (
    ContextInjector,
    InjectionConfig,
    format_bullet,
    format_structured,
    format_timeline,
    render_with_budget,
)
from recollect.retrieval import HybridRetriever
from recollect.store import Memory, MemoryInput, MemoryStore, SearchResult
from recollect.store.utils import estimate_tokens


def _memory(memory_id: int, **overrides) -> Memory:
    values = {
        "id": memory_id,
        "type": "decision",
        "title": f"Decision {memory_id}",
        "content": "Chose the boring option because it is well understood. " * 3,
        "facts": ["fact one", "fact two"],
        "concepts": ["storage"],
        "source_files": [],
        "importance": 5.0,
        "visibility": "public",
        "phase": None,
        "session_id": None,
        "created_at": "2024-03-01T10:00:00+00:00",
        "updated_at": "2024-03-01T10:00:00+00:00",
        "accessed_at": None,
        "access_count": 0,
    }
    values.update(overrides)
    return Memory(**values)


def _results(count: int) -> list[SearchResult]:
    return [
        SearchResult(memory=_memory(n), score=1.0 - n / 100, match_type="fts")
        for n in range(1, count + 1)
    ]


def test_timeline_entry() -> None:
    text = format_timeline(_results(1)[0])
    assert text.startswith("### [decision] Decision 1")
    assert "2024-03-01 | Importance: 5/10 | Score: 0.99" in text
    assert "**Key facts:**" in text
    assert "**Tags:** storage" in text


def test_bullet_entry_clips_content() -> None:
    result = SearchResult(memory=_memory(1, content="z" * 400), score=1.0, match_type="fts")
    text = format_bullet(result)
    assert text.startswith("- **[decision]** Decision 1 (2024-03-01)")
    assert text.endswith("z" * 150 + "...")


def test_structured_entry_escapes_xml() -> None:
    result = SearchResult(memory=_memory(1, title="a < b & c"), score=0.5, match_type="fts")
    text = format_structured(result)
    assert "<title>a &lt; b &amp; c</title>" in text
    assert 'importance="5"' in text
    assert "<fact>fact one</fact>" in text


@pytest.mark.parametrize("fmt", ["timeline", "bullets", "structured"])
@pytest.mark.parametrize("budget", [100, 250, 800])
def test_budget_is_never_exceeded(fmt: str, budget: int) -> None:
    text = render_with_budget(_results(20), fmt, budget)
    assert estimate_tokens(text) <= budget
    if text:
        assert "more memories available" in text
    if text and fmt == "structured":
        assert text.startswith("<memories>")
        assert "</memories>" in text


def test_nothing_fits_returns_empty() -> None:
    assert render_with_budget(_results(3), "timeline", 10) == ""
    assert render_with_budget([], "timeline", 800) == ""


def test_everything_fits_without_footer() -> None:
    text = render_with_budget(_results(2), "bullets", 4000)
    assert text.startswith("**Relevant Context:**")
    assert "Decision 1" in text and "Decision 2" in text
    assert "more memories" not in text


def test_invalid_format_rejected() -> None:
    with pytest.raises(ValueError):
        InjectionConfig(format="yaml")


def test_prioritize_by_type_then_weighted_score(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    injector = ContextInjector(HybridRetriever(store))
    note = SearchResult(memory=_memory(1, type="note", importance=10), score=5.0, match_type="fts")
    weak = SearchResult(memory=_memory(2, importance=2), score=1.0, match_type="fts")
    strong = SearchResult(memory=_memory(3, importance=9), score=0.5, match_type="fts")
    todo = SearchResult(memory=_memory(4, type="todo"), score=9.0, match_type="fts")

    ordered = injector.prioritize([note, weak, todo, strong])

    assert [r.memory.id for r in ordered] == [3, 2, 4, 1]
    store.close()


def test_higher_importance_renders_first(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    low = store.create(
        MemoryInput(
            type="decision",
            title="Caching choice",
            content="caching via redis",
            concepts=["caching"],
            importance=3,
        )
    )
    high = store.create(
        MemoryInput(
            type="decision",
            title="Caching rollout",
            content="caching rollout plan",
            concepts=["caching"],
            importance=9,
        )
    )
    injector = ContextInjector(HybridRetriever(store), InjectionConfig(budget_tokens=4000))

    text = injector.build_context("caching")

    assert text.index(high.title) < text.index(low.title)
    assert injector.build_context("   ") == ""
    assert injector.build_context("nonexistentterm") == ""
    store.close()


def test_recent_and_phase_context(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    store.create(MemoryInput(type="decision", title="Pick WAL mode", content="durability"))
    store.create(MemoryInput(type="note", title="Scratch idea", content="maybe later"))
    store.create(
        MemoryInput(type="observation", title="Plan agreed", content="ship v1", phase="plan")
    )
    injector = ContextInjector(HybridRetriever(store), InjectionConfig(format="bullets"))

    recent = injector.build_recent_context()
    assert "Pick WAL mode" in recent
    assert "Scratch idea" not in recent

    phase = injector.build_phase_context("plan")
    assert "Plan agreed" in phase
    assert "Pick WAL mode" not in phase
    assert injector.build_phase_context("deploy") == ""

    disabled = ContextInjector(HybridRetriever(store), InjectionConfig(enabled=False))
    assert disabled.build_recent_context() == ""
    store.close()
