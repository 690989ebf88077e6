from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .config import RecollectConfig

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_OLLAMA_MODEL = "nomic-embed-text"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
MAX_EMBED_CHARS = 8000
_PROBE_TEXT = "dimension probe"


class EmbeddingProvider(Protocol):
    model: str

    def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


class FastEmbedProvider:
    def __init__(self, model: str = DEFAULT_LOCAL_MODEL) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("fastembed is required for local embeddings") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        embeddings = self._embedder.embed(list(texts))
        return [[float(value) for value in vec] for vec in embeddings]


class OpenAIEmbeddingProvider:
    def __init__(
        self,
        model: str = DEFAULT_OPENAI_MODEL,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        from openai import OpenAI

        self.model = model
        self.dimensions = dimensions
        self.client = OpenAI(api_key=api_key, base_url=base_url)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        kwargs = {"dimensions": self.dimensions} if self.dimensions else {}
        response = self.client.embeddings.create(model=self.model, input=list(texts), **kwargs)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class OllamaEmbeddingProvider:
    def __init__(self, model: str = DEFAULT_OLLAMA_MODEL, *, base_url: str | None = None) -> None:
        self.model = model
        self.base_url = (base_url or DEFAULT_OLLAMA_URL).rstrip("/")

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        import httpx

        vectors: list[list[float]] = []
        with httpx.Client(timeout=60) as client:
            for text in texts:
                response = client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": self.model, "prompt": text},
                )
                response.raise_for_status()
                payload = response.json()
                embedding = payload.get("embedding") if isinstance(payload, dict) else None
                if not isinstance(embedding, list):
                    raise RuntimeError("ollama response did not include an embedding")
                vectors.append([float(value) for value in embedding])
        return vectors


def build_provider(
    provider: str,
    model: str | None = None,
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    dimensions: int | None = None,
) -> EmbeddingProvider:
    if provider == "openai":
        if not model or model == DEFAULT_LOCAL_MODEL:
            model = DEFAULT_OPENAI_MODEL
        return OpenAIEmbeddingProvider(
            model, api_key=api_key, base_url=base_url, dimensions=dimensions
        )
    if provider == "ollama":
        if not model or model == DEFAULT_LOCAL_MODEL:
            model = DEFAULT_OLLAMA_MODEL
        return OllamaEmbeddingProvider(model, base_url=base_url)
    if provider == "local":
        return FastEmbedProvider(model or DEFAULT_LOCAL_MODEL)
    raise ValueError(f"unknown embedding provider: {provider!r}")


def combine_for_embedding(
    title: str,
    content: str,
    facts: Iterable[str] = (),
    concepts: Iterable[str] = (),
) -> str:
    """Canonical text blob embedded for a memory (and for queries)."""
    parts = [part for part in (title.strip(), content.strip()) if part]
    fact_list = [fact for fact in facts if fact]
    if fact_list:
        parts.append("Facts: " + "; ".join(fact_list))
    concept_list = [concept for concept in concepts if concept]
    if concept_list:
        parts.append("Tags: " + ", ".join(concept_list))
    return "\n\n".join(parts)


class EmbeddingGenerator:
    """Turns text into fixed-size vectors, or reports itself unavailable.

    ``initialize`` never raises: a provider that cannot be built or whose
    probe vector has the wrong length leaves the generator unavailable and
    the rest of the system falls back to lexical search.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        *,
        provider_name: str = "local",
        model: str | None = None,
        dimensions: int = 384,
        api_key: str | None = None,
        base_url: str | None = None,
        disabled: bool = False,
    ) -> None:
        self.provider = provider
        self.provider_name = provider_name
        self.model = model
        self.dimensions = dimensions
        self.api_key = api_key
        self.base_url = base_url
        self.disabled = disabled
        self._lock = threading.Lock()
        self._attempted = False
        self._available = False

    @classmethod
    def from_config(cls, config: RecollectConfig) -> EmbeddingGenerator:
        return cls(
            provider_name=config.embedding_provider,
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            api_key=config.embedding_api_key,
            base_url=config.embedding_base_url,
            disabled=config.embeddings_disabled,
        )

    def initialize(self) -> bool:
        with self._lock:
            if self._attempted:
                return self._available
            self._attempted = True
            if self.disabled:
                logger.info("embeddings disabled by configuration")
                return False
            try:
                if self.provider is None:
                    self.provider = build_provider(
                        self.provider_name,
                        self.model,
                        api_key=self.api_key,
                        base_url=self.base_url,
                        dimensions=self.dimensions,
                    )
                probe = self.provider.embed([_PROBE_TEXT])
            except Exception as exc:
                logger.warning("embedding provider unavailable: %s", exc)
                return False
            actual = len(probe[0]) if probe else 0
            if actual != self.dimensions:
                logger.warning(
                    "embedding provider returned %s dimensions, expected %s; vectors disabled",
                    actual,
                    self.dimensions,
                )
                return False
            self._available = True
            logger.info(
                "embeddings ready (%s, %s dims)",
                getattr(self.provider, "model", self.provider_name),
                self.dimensions,
            )
            return True

    def is_available(self) -> bool:
        return self._available

    def generate(self, text: str) -> list[float]:
        return self.generate_batch([text])[0]

    def generate_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not self._available or self.provider is None:
            raise RuntimeError("embedding generator is not available")
        if not texts:
            return []
        prepared = [text[:MAX_EMBED_CHARS] for text in texts]
        with self._lock:
            vectors = self.provider.embed(prepared)
        if len(vectors) != len(prepared):
            raise RuntimeError(
                f"embedding provider returned {len(vectors)} vectors for {len(prepared)} texts"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise RuntimeError(
                    f"embedding provider returned {len(vector)} dimensions, "
                    f"expected {self.dimensions}"
                )
        return [list(vector) for vector in vectors]
