from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape, quoteattr

from .config import INJECTION_FORMATS
from .retrieval import HybridRetriever
from .store import Memory, SearchResult
from .store.utils import estimate_tokens, format_date

if TYPE_CHECKING:
    from .config import RecollectConfig

CONTEXT_CANDIDATES = 20
RECENCY_STEP = 0.05
UNLISTED_TYPE_RANK = 100

_HEADERS = {
    "timeline": "## Relevant Memories\n",
    "bullets": "**Relevant Context:**\n",
    "structured": "<memories>\n",
}


@dataclass(frozen=True)
class InjectionConfig:
    enabled: bool = True
    budget_tokens: int = 800
    format: str = "timeline"
    priority_types: tuple[str, ...] = field(default=("decision", "observation", "todo"))

    def __post_init__(self) -> None:
        if self.format not in INJECTION_FORMATS:
            raise ValueError(
                f"Invalid injection format '{self.format}'. Allowed: {', '.join(INJECTION_FORMATS)}"
            )

    @classmethod
    def from_config(cls, config: RecollectConfig) -> InjectionConfig:
        return cls(
            budget_tokens=config.injection_budget_tokens,
            format=config.injection_format,
            priority_types=tuple(config.injection_priority_types),
        )


def _clip(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _number(value: float) -> str:
    return f"{value:g}"


def format_timeline(result: SearchResult) -> str:
    memory = result.memory
    lines = [
        f"### [{memory.type}] {memory.title}",
        f"*{format_date(memory.created_at)} | Importance: {_number(memory.importance)}/10 "
        f"| Score: {result.score:.2f}*",
        "",
        _clip(memory.content, 300),
    ]
    if memory.facts:
        lines.extend(["", "**Key facts:**"])
        lines.extend(f"- {fact}" for fact in memory.facts[:3])
    if memory.concepts:
        lines.extend(["", f"**Tags:** {', '.join(memory.concepts[:5])}"])
    lines.append("")
    return "\n".join(lines)


def format_bullet(result: SearchResult) -> str:
    memory = result.memory
    return (
        f"- **[{memory.type}]** {memory.title} ({format_date(memory.created_at)})\n"
        f"  {_clip(memory.content, 150)}"
    )


def format_structured(result: SearchResult) -> str:
    memory = result.memory
    attrs = " ".join(
        [
            f"type={quoteattr(memory.type)}",
            f"date={quoteattr(format_date(memory.created_at))}",
            f"importance={quoteattr(_number(memory.importance))}",
            f"score={quoteattr(f'{result.score:.2f}')}",
        ]
    )
    parts = [
        f"<memory {attrs}>",
        f"  <title>{escape(memory.title)}</title>",
        f"  <content>{escape(_clip(memory.content, 300))}</content>",
    ]
    if memory.facts:
        parts.append("  <facts>")
        parts.extend(f"    <fact>{escape(fact)}</fact>" for fact in memory.facts[:5])
        parts.append("  </facts>")
    if memory.concepts:
        parts.append(f"  <concepts>{escape(', '.join(memory.concepts[:5]))}</concepts>")
    parts.append("</memory>")
    return "\n".join(parts)


_FORMATTERS = {
    "timeline": format_timeline,
    "bullets": format_bullet,
    "structured": format_structured,
}


def _footer(fmt: str, remaining: int) -> str | None:
    if fmt == "structured":
        if remaining > 0:
            return f"</memories>\n<!-- {remaining} more memories available -->"
        return "</memories>"
    if remaining > 0:
        return f"\n*{remaining} more memories available. Use memory_search for more.*"
    return None


def render_with_budget(results: Sequence[SearchResult], fmt: str, budget_tokens: int) -> str:
    """Render whole entries in order until the next one would break the budget.

    The budget covers header, entries and footer together. Returns "" when
    not even one entry fits.
    """
    header = _HEADERS[fmt]
    formatter = _FORMATTERS[fmt]

    def assemble(entries: list[str]) -> str:
        footer = _footer(fmt, len(results) - len(entries))
        lines = [header, *entries]
        if footer is not None:
            lines.append(footer)
        return "\n".join(lines)

    entries: list[str] = []
    for result in results:
        candidate = [*entries, formatter(result)]
        if estimate_tokens(assemble(candidate)) > budget_tokens:
            break
        entries = candidate
    if not entries:
        return ""
    return assemble(entries)


class ContextInjector:
    """Builds token-budgeted memory context blocks for prompt injection."""

    def __init__(self, retriever: HybridRetriever, config: InjectionConfig | None = None) -> None:
        self.retriever = retriever
        self.config = config or InjectionConfig()

    def prioritize(self, results: Sequence[SearchResult]) -> list[SearchResult]:
        priority = {name: index for index, name in enumerate(self.config.priority_types)}

        def sort_key(result: SearchResult) -> tuple[int, float]:
            weighted = result.score * (result.memory.importance / 10)
            return priority.get(result.memory.type, UNLISTED_TYPE_RANK), -weighted

        return sorted(results, key=sort_key)

    def _render(self, results: Sequence[SearchResult]) -> str:
        return render_with_budget(results, self.config.format, self.config.budget_tokens)

    @staticmethod
    def _recency_results(memories: Sequence[Memory]) -> list[SearchResult]:
        return [
            SearchResult(memory=memory, score=1 - index * RECENCY_STEP, match_type="fts")
            for index, memory in enumerate(memories)
        ]

    def build_context(self, query: str) -> str:
        if not self.config.enabled or not query.strip():
            return ""
        results = self.retriever.search(query, limit=CONTEXT_CANDIDATES)
        if not results:
            return ""
        return self._render(self.prioritize(results))

    def build_recent_context(self, limit: int = 10) -> str:
        if not self.config.enabled:
            return ""
        memories = self.retriever.store.get_recent(limit, types=self.config.priority_types)
        return self._render(self._recency_results(memories))

    def build_phase_context(self, phase: str, limit: int = 10) -> str:
        if not self.config.enabled:
            return ""
        memories = self.retriever.store.get_by_phase(phase, limit)
        return self._render(self._recency_results(memories))
