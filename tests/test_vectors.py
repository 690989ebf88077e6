from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from recollect.store import MemoryInput, MemoryStore, VectorIndex


@pytest.fixture
def store(tmp_path: Path, requires_sqlite_vec: None) -> Iterator[MemoryStore]:
    store = MemoryStore(tmp_path / "mem.sqlite")
    yield store
    store.close()


@pytest.fixture
def index(store: MemoryStore) -> VectorIndex:
    index = VectorIndex(store.conn, 4)
    assert index.initialize() is True
    index.set_generator_ready(True)
    return index


def _memory(store: MemoryStore, title: str) -> int:
    return store.create(MemoryInput(type="note", title=title, content=title)).id


def test_availability_needs_table_and_generator(store: MemoryStore) -> None:
    index = VectorIndex(store.conn, 4)
    assert index.is_available() is False
    assert index.initialize() is True
    assert index.table_ready is True
    assert index.is_available() is False
    index.set_generator_ready(True)
    assert index.is_available() is True


def test_nearest_first(store: MemoryStore, index: VectorIndex) -> None:
    a = _memory(store, "a")
    b = _memory(store, "b")
    c = _memory(store, "c")
    index.store_embedding(a, [1.0, 0.0, 0.0, 0.0])
    index.store_embedding(b, [0.0, 1.0, 0.0, 0.0])
    index.store_embedding(c, [0.5, 0.5, 0.0, 0.0])

    matches = index.search_similar([1.0, 0.0, 0.0, 0.0], limit=3)

    assert [m.memory_id for m in matches] == [a, c, b]
    assert matches[0].distance == pytest.approx(0.0)
    assert matches[1].distance < matches[2].distance
    assert [m.memory_id for m in index.search_similar([1.0, 0.0, 0.0, 0.0], limit=1)] == [a]


def test_store_replaces_existing_vector(store: MemoryStore, index: VectorIndex) -> None:
    memory_id = _memory(store, "a")
    index.store_embedding(memory_id, [1.0, 0.0, 0.0, 0.0])
    index.store_embedding(memory_id, [0.0, 0.25, 0.5, 0.0])

    assert index.count() == 1
    assert index.get_embedding(memory_id) == [0.0, 0.25, 0.5, 0.0]


def test_dimension_mismatch_is_rejected(store: MemoryStore, index: VectorIndex) -> None:
    memory_id = _memory(store, "a")
    with pytest.raises(ValueError, match="dimensions"):
        index.store_embedding(memory_id, [1.0, 0.0])
    with pytest.raises(ValueError, match="dimensions"):
        index.search_similar([1.0, 0.0, 0.0, 0.0, 0.0])
    assert index.count() == 0


def test_delete_and_orphan_cleanup(store: MemoryStore, index: VectorIndex) -> None:
    keep = _memory(store, "keep")
    drop = _memory(store, "drop")
    index.store_embedding(keep, [1.0, 0.0, 0.0, 0.0])
    index.store_embedding(drop, [0.0, 1.0, 0.0, 0.0])

    assert index.delete_embedding(keep) is True
    assert index.delete_embedding(keep) is False
    assert index.has_embedding(keep) is False

    store.delete(drop)
    assert index.clean_orphans() == 1
    assert index.count() == 0
    assert index.missing_embeddings() == [keep]


def test_missing_embeddings_respects_limit(store: MemoryStore, index: VectorIndex) -> None:
    ids = [_memory(store, f"m{n}") for n in range(3)]
    index.store_embedding(ids[0], [1.0, 0.0, 0.0, 0.0])
    assert index.missing_embeddings() == ids[1:]
    assert index.missing_embeddings(limit=1) == [ids[1]]


def test_existing_table_with_other_dimensions_is_unavailable(
    store: MemoryStore, index: VectorIndex
) -> None:
    other = VectorIndex(store.conn, 8)
    assert other.initialize() is False
    other.set_generator_ready(True)
    assert other.is_available() is False
    assert other.search_similar([0.0] * 8) == []
