from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .semantic import EmbeddingGenerator
from .store import MemoryStore, SearchFilters, SearchResult, VectorIndex

logger = logging.getLogger(__name__)

RRF_K = 60


@dataclass(frozen=True, slots=True)
class HybridWeights:
    fts: float = 0.4
    vector: float = 0.6

    @classmethod
    def from_payload(cls, value: Any, default: HybridWeights) -> HybridWeights:
        if value is None:
            return default
        if not isinstance(value, dict):
            raise ValueError("hybridWeight must be an object with fts and vector")
        fts = value.get("fts", default.fts)
        vector = value.get("vector", default.vector)
        for name, weight in (("fts", fts), ("vector", vector)):
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight < 0:
                raise ValueError(f"hybridWeight.{name} must be a non-negative number")
        return cls(fts=float(fts), vector=float(vector))


@dataclass(frozen=True, slots=True)
class FusedHit:
    memory_id: int
    score: float
    match_type: str


def fuse_rankings(
    fts_ids: Sequence[int],
    vector_ids: Sequence[int],
    weights: HybridWeights,
    *,
    k: int = RRF_K,
) -> list[FusedHit]:
    """Weighted reciprocal rank fusion of two ranked id lists.

    Rank ``r`` (0-based) in a list with weight ``w`` contributes
    ``w / (k + r + 1)``. Ties keep first-seen order, lexical hits first.
    """
    scores: dict[int, float] = {}
    sources: dict[int, set[str]] = {}
    ranked = (("fts", fts_ids, weights.fts), ("vector", vector_ids, weights.vector))
    for source, ids, weight in ranked:
        for rank, memory_id in enumerate(ids):
            if source in sources.get(memory_id, set()):
                continue
            scores[memory_id] = scores.get(memory_id, 0.0) + weight / (k + rank + 1)
            sources.setdefault(memory_id, set()).add(source)
    hits: list[FusedHit] = []
    for memory_id, score in scores.items():
        seen = sources[memory_id]
        match_type = "hybrid" if len(seen) > 1 else next(iter(seen))
        hits.append(FusedHit(memory_id=memory_id, score=score, match_type=match_type))
    return sorted(hits, key=lambda hit: -hit.score)


class HybridRetriever:
    def __init__(
        self,
        store: MemoryStore,
        vectors: VectorIndex | None = None,
        generator: EmbeddingGenerator | None = None,
        weights: HybridWeights | None = None,
    ) -> None:
        self.store = store
        self.vectors = vectors
        self.generator = generator
        self.weights = weights or HybridWeights()

    def vector_search_enabled(self) -> bool:
        return (
            self.vectors is not None
            and self.generator is not None
            and self.vectors.is_available()
            and self.generator.is_available()
        )

    def _vector_ids(self, query: str, limit: int) -> list[int]:
        if not self.vector_search_enabled() or self.vectors is None or self.generator is None:
            return []
        try:
            query_vector = self.generator.generate(query)
        except Exception as exc:
            logger.warning("query embedding failed; using lexical results only: %s", exc)
            return []
        return [match.memory_id for match in self.vectors.search_similar(query_vector, limit)]

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: SearchFilters | None = None,
        weights: HybridWeights | None = None,
    ) -> list[SearchResult]:
        if not query.strip() or limit <= 0:
            return []
        filters = filters or SearchFilters()
        weights = weights or self.weights
        candidates = limit * 2
        lexical = self.store.search_fts(query, limit=candidates, filters=filters)
        by_id = {result.memory.id: result.memory for result in lexical}
        vector_ids = self._vector_ids(query, candidates)
        missing = [memory_id for memory_id in vector_ids if memory_id not in by_id]
        for memory_id, memory in self.store.get_many(missing).items():
            if filters.matches(memory):
                by_id[memory_id] = memory
        vector_ids = [memory_id for memory_id in vector_ids if memory_id in by_id]
        fused = fuse_rankings([result.memory.id for result in lexical], vector_ids, weights)
        results = [
            SearchResult(memory=by_id[hit.memory_id], score=hit.score, match_type=hit.match_type)
            for hit in fused[:limit]
        ]
        self.store.touch(result.memory.id for result in results)
        refreshed = self.store.get_many([result.memory.id for result in results])
        for result in results:
            result.memory = refreshed.get(result.memory.id, result.memory)
        return results
