from __future__ import annotations

import pytest

from recollect.semantic import (
    MAX_EMBED_CHARS,
    EmbeddingGenerator,
    build_provider,
    combine_for_embedding,
)


class RecordingProvider:
    model = "recording"

    def __init__(self, dimensions: int = 8) -> None:
        self.dimensions = dimensions
        self.seen: list[str] = []

    def embed(self, texts):
        self.seen.extend(texts)
        return [[float(len(text))] * self.dimensions for text in texts]


class BrokenProvider:
    model = "broken"

    def embed(self, texts):
        raise ConnectionError("provider offline")


def test_combine_for_embedding() -> None:
    text = combine_for_embedding("Title", "Body", ["one", "two"], ["auth", "api"])
    assert text == "Title\n\nBody\n\nFacts: one; two\n\nTags: auth, api"
    assert combine_for_embedding("Title", "Body") == "Title\n\nBody"


def test_generator_probes_dimensions() -> None:
    provider = RecordingProvider(dimensions=8)
    generator = EmbeddingGenerator(provider, dimensions=8)

    assert generator.is_available() is False
    assert generator.initialize() is True
    assert generator.initialize() is True
    assert generator.is_available() is True
    assert len(provider.seen) == 1

    vectors = generator.generate_batch(["a", "bb"])
    assert [v[0] for v in vectors] == [1.0, 2.0]
    assert generator.generate_batch([]) == []


def test_dimension_mismatch_disables_generator() -> None:
    generator = EmbeddingGenerator(RecordingProvider(dimensions=4), dimensions=8)
    assert generator.initialize() is False
    assert generator.is_available() is False
    with pytest.raises(RuntimeError):
        generator.generate("text")


def test_provider_failure_is_not_raised() -> None:
    generator = EmbeddingGenerator(BrokenProvider(), dimensions=8)
    assert generator.initialize() is False


def test_disabled_generator_never_calls_provider() -> None:
    provider = RecordingProvider()
    generator = EmbeddingGenerator(provider, dimensions=8, disabled=True)
    assert generator.initialize() is False
    assert provider.seen == []


def test_long_text_is_truncated() -> None:
    provider = RecordingProvider()
    generator = EmbeddingGenerator(provider, dimensions=8)
    generator.initialize()
    vector = generator.generate("x" * (MAX_EMBED_CHARS + 500))
    assert vector[0] == float(MAX_EMBED_CHARS)


def test_build_provider_rejects_unknown_name() -> None:
    with pytest.raises(ValueError, match="unknown embedding provider"):
        build_provider("word2vec")


def test_build_ollama_provider_defaults() -> None:
    provider = build_provider("ollama", base_url="http://gpu-box:11434/")
    assert provider.model == "nomic-embed-text"
    assert provider.base_url == "http://gpu-box:11434"
