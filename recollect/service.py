from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from pathlib import Path
from typing import Any

from . import __version__
from .capture import CaptureConfig
from .config import RecollectConfig, load_config
from .distiller import DistillationResult, Distiller
from .injection import ContextInjector, InjectionConfig
from .privacy import MaintenanceResult, PrivacyConfig, PrivacyManager
from .retrieval import HybridRetriever, HybridWeights
from .semantic import EmbeddingGenerator, combine_for_embedding
from .store import Memory, MemoryInput, MemoryStore, SearchFilters, SearchResult, VectorIndex
from .store.types import EMBEDDED_FIELDS

logger = logging.getLogger(__name__)


class ServiceState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class ServiceNotReady(RuntimeError):
    pass


class MemoryService:
    """Owns the store, vector index and embedding generator for one process.

    Every embedding runs on a worker pool so that ``close()`` can drain it.
    Single creates and updates wait for their embedding; batch creates return
    immediately and log any failures. All access to the shared SQLite
    connection goes through ``_lock``.
    """

    def __init__(
        self,
        config: RecollectConfig | None = None,
        *,
        generator: EmbeddingGenerator | None = None,
        max_workers: int = 4,
    ) -> None:
        self.config = config or load_config()
        self.generator = generator or EmbeddingGenerator.from_config(self.config)
        self.privacy = PrivacyManager(PrivacyConfig.from_config(self.config))
        self.distiller = Distiller(CaptureConfig.from_config(self.config))
        self.weights = HybridWeights(
            fts=self.config.hybrid_fts_weight, vector=self.config.hybrid_vector_weight
        )
        self.state = ServiceState.UNINITIALIZED
        self.embedding_failures = 0
        self._max_workers = max_workers
        self._lock = threading.RLock()
        self._closing = False
        self._store: MemoryStore | None = None
        self._vectors: VectorIndex | None = None
        self._retriever: HybridRetriever | None = None
        self._injector: ContextInjector | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future[bool]] = set()

    @property
    def db_path(self) -> Path:
        return Path(self.config.db_path).expanduser()

    def initialize(self) -> ServiceState:
        with self._lock:
            if self.state is ServiceState.READY:
                return self.state
            if self.state is ServiceState.CLOSED:
                raise ServiceNotReady("service is closed")
            store = MemoryStore(self.db_path, check_same_thread=False)
            vectors = VectorIndex(store.conn, self.config.embedding_dimensions)
            generator_ready = self.generator.initialize()
            if not self.config.embeddings_disabled:
                vectors.initialize()
            vectors.set_generator_ready(generator_ready)
            if self.config.embeddings_disabled:
                logger.info("embeddings disabled; serving lexical search only")
            elif not vectors.is_available():
                logger.warning("vector search unavailable; serving lexical search only")
            self._store = store
            self._vectors = vectors
            self._retriever = HybridRetriever(store, vectors, self.generator, self.weights)
            self._injector = ContextInjector(
                self._retriever, InjectionConfig.from_config(self.config)
            )
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="recollect-embed"
            )
            self.state = ServiceState.READY
            logger.info("memory service ready (db=%s)", self.db_path)
            return self.state

    def ensure_ready(self) -> None:
        if self.state is not ServiceState.READY or self._closing:
            raise ServiceNotReady(f"service is {self.state.value}")

    @property
    def store(self) -> MemoryStore:
        self.ensure_ready()
        assert self._store is not None
        return self._store

    @property
    def vectors(self) -> VectorIndex:
        self.ensure_ready()
        assert self._vectors is not None
        return self._vectors

    @property
    def injector(self) -> ContextInjector:
        self.ensure_ready()
        assert self._injector is not None
        return self._injector

    @property
    def retriever(self) -> HybridRetriever:
        self.ensure_ready()
        assert self._retriever is not None
        return self._retriever

    def _prepare(self, item: MemoryInput) -> MemoryInput:
        item = item.normalized()
        title = self.privacy.validate_for_storage(item.title)
        content = self.privacy.validate_for_storage(item.content)
        for label, result in (("title", title), ("content", content)):
            if not result.valid:
                raise ValueError(f"{label} is empty after sanitization")
            for warning in result.warnings:
                logger.debug("%s: %s", label, warning)
        facts = [fact for fact in (self.privacy.clean(f).strip() for f in item.facts) if fact]
        return replace(
            item,
            title=title.sanitized_content,
            content=content.sanitized_content,
            facts=facts,
        )

    def _prepare_changes(self, changes: dict[str, Any]) -> dict[str, Any]:
        prepared = dict(changes)
        for key in ("title", "content"):
            if key in prepared:
                result = self.privacy.validate_for_storage(str(prepared[key]))
                if not result.valid:
                    raise ValueError(f"{key} is empty after sanitization")
                prepared[key] = result.sanitized_content
        if "facts" in prepared:
            prepared["facts"] = [
                fact for fact in (self.privacy.clean(f).strip() for f in prepared["facts"]) if fact
            ]
        return prepared

    @staticmethod
    def _embedding_text(memory: Memory) -> str:
        return combine_for_embedding(memory.title, memory.content, memory.facts, memory.concepts)

    def _embed_now(self, memory: Memory) -> bool:
        vectors = self._vectors
        if vectors is None or not vectors.is_available():
            return False
        try:
            vector = self.generator.generate(self._embedding_text(memory))
            with self._lock:
                if self._store is None:
                    logger.warning("service closed before embedding memory %s", memory.id)
                    return False
                if not self._store.exists(memory.id):
                    return False
                vectors.store_embedding(memory.id, vector)
        except Exception:
            with self._lock:
                self.embedding_failures += 1
            logger.exception("embedding failed for memory %s", memory.id)
            return False
        return True

    def _submit_embeddings(self, memories: Sequence[Memory]) -> list[Future[bool]]:
        # Callers hold _lock so close() cannot shut the pool down mid-submit.
        if self._executor is None or self._vectors is None or not self._vectors.is_available():
            return []
        futures = [self._executor.submit(self._embed_now, memory) for memory in memories]
        with self._lock:
            self._pending.update(futures)
        for future in futures:
            future.add_done_callback(self._forget_future)
        return futures

    def _forget_future(self, future: Future[bool]) -> None:
        with self._lock:
            self._pending.discard(future)

    def wait_for_embeddings(self, timeout: float | None = None) -> bool:
        """Block until queued batch embeddings finish; False on timeout."""
        with self._lock:
            pending = list(self._pending)
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def create(self, item: MemoryInput) -> Memory:
        prepared = self._prepare(item)
        with self._lock:
            memory = self.store.create(prepared)
            futures = self._submit_embeddings([memory])
        wait(futures)
        return memory

    def create_batch(self, items: Sequence[MemoryInput]) -> list[Memory]:
        prepared = [self._prepare(item) for item in items]
        with self._lock:
            store = self.store
            memories = [store.create(item) for item in prepared]
            self._submit_embeddings(memories)
        return memories

    def get(self, memory_id: int) -> Memory | None:
        with self._lock:
            return self.store.get(memory_id)

    def update(self, memory_id: int, changes: dict[str, Any]) -> Memory | None:
        prepared = self._prepare_changes(changes)
        with self._lock:
            memory = self.store.update(memory_id, prepared)
            futures: list[Future[bool]] = []
            if memory is not None and EMBEDDED_FIELDS.intersection(prepared):
                futures = self._submit_embeddings([memory])
        wait(futures)
        return memory

    def delete(self, memory_id: int) -> bool:
        with self._lock:
            deleted = self.store.delete(memory_id)
            self.vectors.delete_embedding(memory_id)
        return deleted

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: SearchFilters | None = None,
        weights: HybridWeights | None = None,
    ) -> list[SearchResult]:
        with self._lock:
            return self.retriever.search(query, limit=limit, filters=filters, weights=weights)

    def recent(self, limit: int = 10, types: Sequence[str] | None = None) -> list[Memory]:
        with self._lock:
            return self.store.get_recent(limit, types=types)

    def context(self, query: str) -> str:
        with self._lock:
            return self.injector.build_context(query)

    def recent_context(self, limit: int = 10) -> str:
        with self._lock:
            return self.injector.build_recent_context(limit)

    def phase_context(self, phase: str, limit: int = 10) -> str:
        with self._lock:
            return self.injector.build_phase_context(phase, limit)

    def distill_event(
        self, payload: dict[str, Any], *, save: bool = True
    ) -> tuple[DistillationResult, Memory | None]:
        result = self.distiller.distill_payload(payload)
        if not result.captured or result.memory is None or not save:
            return result, None
        return result, self.create(result.memory)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            store_stats = self.store.stats()
            return {
                "memories": store_stats["total"],
                "vectors": self.vectors.count(),
                "vectorsAvailable": self.vectors.is_available(),
                "byType": store_stats["by_type"],
                "byVisibility": store_stats["by_visibility"],
                "oldest": store_stats["oldest"],
                "newest": store_stats["newest"],
            }

    def health(self) -> dict[str, Any]:
        ready = self.state is ServiceState.READY and not self._closing
        vectors = self._vectors
        return {
            "status": "ok" if ready else self.state.value,
            "version": __version__,
            "initialized": ready,
            "storage": str(self.db_path) if ready else None,
            "vectors": bool(vectors and vectors.is_available()),
        }

    def run_maintenance(self) -> MaintenanceResult:
        with self._lock:
            result = self.privacy.run_maintenance(self.store, self.vectors)
        if result.total_deleted or result.orphans_removed:
            logger.info(
                "maintenance removed %s memories and %s orphaned vectors",
                result.total_deleted,
                result.orphans_removed,
            )
        return result

    def backfill_embeddings(self, limit: int | None = None) -> dict[str, int]:
        with self._lock:
            vectors = self.vectors
            if not vectors.is_available():
                return {"checked": 0, "embedded": 0, "failed": 0}
            memories = list(self.store.get_many(vectors.missing_embeddings(limit)).values())
            futures = self._submit_embeddings(memories)
        embedded = sum(1 for future in futures if future.result())
        return {"checked": len(memories), "embedded": embedded, "failed": len(memories) - embedded}

    def close(self) -> None:
        """Drain background embeddings, then close storage."""
        with self._lock:
            if self.state is not ServiceState.READY or self._closing:
                if self.state is ServiceState.UNINITIALIZED:
                    self.state = ServiceState.CLOSED
                return
            self._closing = True
            executor = self._executor
        if executor is not None:
            executor.shutdown(wait=True)
        with self._lock:
            if self._store is not None:
                self._store.close()
            self._store = None
            self._vectors = None
            self._retriever = None
            self._injector = None
            self._executor = None
            self.state = ServiceState.CLOSED
            self._closing = False
        logger.info("memory service closed")

    def __enter__(self) -> MemoryService:
        self.initialize()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
