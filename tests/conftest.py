from __future__ import annotations

import sqlite3
import zlib
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest

from recollect import db
from recollect.config import CONFIG_ENV_OVERRIDES, RecollectConfig
from recollect.semantic import EmbeddingGenerator
from recollect.service import MemoryService

FAKE_DIMS = 64


class FakeEmbeddingProvider:
    """Hashes words into buckets so texts sharing words embed close together."""

    model = "fake-hash"

    def __init__(self, dimensions: int = FAKE_DIMS) -> None:
        self.dimensions = dimensions
        self.calls = 0

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls += 1
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self.dimensions
            for word in text.lower().split():
                token = word.strip(".,:;!?()[]\"'")
                if token:
                    vector[zlib.crc32(token.encode("utf-8")) % self.dimensions] += 1.0
            norm = sum(value * value for value in vector) ** 0.5 or 1.0
            vectors.append([value / norm for value in vector])
        return vectors


def sqlite_vec_loadable() -> bool:
    conn = sqlite3.connect(":memory:")
    try:
        db.load_sqlite_vec(conn)
    except RuntimeError:
        return False
    finally:
        conn.close()
    return True


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("RECOLLECT_HTTP_LOG", raising=False)
    monkeypatch.setenv("RECOLLECT_CONFIG", str(tmp_path / "config.json"))
    # Never download a local model from tests.
    monkeypatch.setenv("RECOLLECT_EMBEDDING_DISABLED", "1")


@pytest.fixture
def requires_sqlite_vec() -> None:
    if not sqlite_vec_loadable():
        pytest.skip("sqlite-vec extension cannot be loaded")


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def lexical_config(tmp_path: Path) -> RecollectConfig:
    return RecollectConfig(db_path=str(tmp_path / "mem.sqlite"), embeddings_disabled=True)


@pytest.fixture
def service(lexical_config: RecollectConfig) -> Iterator[MemoryService]:
    svc = MemoryService(lexical_config)
    svc.initialize()
    yield svc
    svc.close()


@pytest.fixture
def vector_service(
    tmp_path: Path, requires_sqlite_vec: None, fake_provider: FakeEmbeddingProvider
) -> Iterator[MemoryService]:
    config = RecollectConfig(
        db_path=str(tmp_path / "vec.sqlite"),
        embedding_dimensions=FAKE_DIMS,
        embeddings_disabled=False,
    )
    generator = EmbeddingGenerator(fake_provider, dimensions=FAKE_DIMS)
    svc = MemoryService(config, generator=generator, max_workers=2)
    svc.initialize()
    yield svc
    svc.close()
