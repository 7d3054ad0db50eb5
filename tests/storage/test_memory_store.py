"""
Test InMemoryVectorStore
========================

Tests for the list-backed corpus and the VectorStore defaults.
"""

import pytest

from kbrag.storage.base import matches_categories
from kbrag.storage.memory import InMemoryVectorStore


RECORDS = [
    {"id": "c1", "source_id": "k1", "source_title": "Rep ranges", "text": "Use 5-10 reps",
     "vector": [0.1, 0.9], "categories": ["hypertrophy_principles"]},
    {"id": "c2", "source_id": "k1", "source_title": "Rep ranges", "text": "Or 10-20 reps",
     "ordinal": 1, "vector": None, "categories": ["hypertrophy_principles"]},
    {"id": "c3", "source_id": "k2", "source_title": "Chest", "text": "Press",
     "vector": [0.5, 0.5], "categories": ["chest"]},
]


class TestInMemoryVectorStore:
    """Test InMemoryVectorStore."""

    def test_from_records(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        assert len(store) == 3
        assert store.embedded_count == 2
        chunk = store.get_chunks(["c2"])["c2"]
        assert chunk.ordinal == 1
        assert chunk.vector is None
        assert chunk.categories == frozenset({"hypertrophy_principles"})

    def test_duplicate_id_rejected(self, make_chunk):
        store = InMemoryVectorStore([make_chunk("a")])

        with pytest.raises(ValueError, match="Duplicate chunk id"):
            store.add(make_chunk("a"))

    def test_batches_keep_insertion_order(self, make_chunk):
        store = InMemoryVectorStore([make_chunk(f"c{i}") for i in range(5)])

        batches = list(store.iter_batches(batch_size=2))

        assert [[c.id for c in b] for b in batches] == [["c0", "c1"], ["c2", "c3"], ["c4"]]

    def test_batches_filtered_by_category(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        batches = list(store.iter_batches(["chest"], batch_size=10))

        assert [[c.id for c in b] for b in batches] == [["c3"]]

    def test_invalid_batch_size(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        with pytest.raises(ValueError):
            list(store.iter_batches(batch_size=0))

    def test_keyword_chunks_include_unembedded(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        assert [c.id for c in store.iter_keyword_chunks(["hypertrophy_principles"])] == ["c1", "c2"]

    def test_get_chunks_ignores_unknown(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        assert set(store.get_chunks(["c1", "nope"])) == {"c1"}

    def test_chunks_by_source(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        assert [c.id for c in store.chunks_by_source(["k1"])] == ["c1", "c2"]
        assert store.chunks_by_source([]) == []

    def test_categories(self):
        store = InMemoryVectorStore.from_records(RECORDS)

        assert store.categories() == {"hypertrophy_principles", "chest"}


class TestMatchesCategories:
    """Test matches_categories."""

    def test_no_filter(self, make_chunk):
        assert matches_categories(make_chunk("a", categories=["chest"]), None)

    def test_any_overlap(self, make_chunk):
        chunk = make_chunk("a", categories=["chest", "triceps"])

        assert matches_categories(chunk, ["triceps", "back"])
        assert not matches_categories(chunk, ["back"])
        assert not matches_categories(chunk, [])
