"""Tests for the in-memory vector store."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from lorekeeper.rag.errors import (
    CollectionExistsError,
    CollectionNotFoundError,
    ConfigurationError,
    DimensionMismatchError,
    DocumentNotFoundError,
    InputValidationError,
    InvalidFilterError,
)
from lorekeeper.rag.vector_store import (
    Document,
    MemoryVectorStore,
    SearchOptions,
    SearchResult,
    build_vector_store,
    cosine_similarity,
    rank,
)


def _seed_abc(store: MemoryVectorStore) -> None:
    store.batch_add(
        [
            Document(id="A", content="alpha", embedding=[1.0, 0.0, 0.0], collection="docs"),
            Document(id="B", content="beta", embedding=[0.0, 1.0, 0.0], collection="docs"),
            Document(id="C", content="gamma", embedding=[0.0, 0.0, 1.0], collection="docs"),
        ]
    )


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_norm_is_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestRank:
    def test_threshold_sort_and_truncate(self):
        results = [
            SearchResult(Document(id="b", content=""), 0.5),
            SearchResult(Document(id="a", content=""), 0.5),
            SearchResult(Document(id="c", content=""), 0.9),
            SearchResult(Document(id="d", content=""), 0.1),
        ]
        ranked = rank(results, SearchOptions(collection="x", top_k=3, threshold=0.2))
        assert [r.id for r in ranked] == ["c", "a", "b"]

    def test_top_k_zero(self):
        results = [SearchResult(Document(id="a", content=""), 0.5)]
        assert rank(results, SearchOptions(collection="x", top_k=0)) == []


class TestSearchOptions:
    def test_requires_collection(self):
        with pytest.raises(InputValidationError):
            SearchOptions(collection="")

    def test_negative_top_k(self):
        with pytest.raises(InputValidationError):
            SearchOptions(collection="x", top_k=-1)

    def test_threshold_range(self):
        with pytest.raises(InputValidationError):
            SearchOptions(collection="x", threshold=1.5)

    def test_bad_filter(self):
        with pytest.raises(InvalidFilterError):
            SearchOptions(collection="x", filter={"index": {"$like": 1}})


class TestDocument:
    def test_empty_embedding_means_lexical_only(self):
        assert Document(id="d", content="x", embedding=[]).embedding is None

    def test_numpy_embedding_accepted(self):
        doc = Document(id="d", content="x", embedding=np.array([0.5, 0.25], dtype=np.float32))
        assert doc.embedding == [0.5, 0.25]
        assert Document(id="e", content="x", embedding=np.array([])).embedding is None

    def test_numpy_embedding_stored_and_searchable(self, store3):
        store3.add_document(Document(id="A", content="alpha", embedding=np.array([1.0, 0.0, 0.0]), collection="docs"))
        hits = store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs"))
        assert [r.id for r in hits] == ["A"]

    def test_dict_round_trip_keeps_timestamps(self, clock):
        doc = Document(
            id="d",
            content="text",
            embedding=[0.5, 0.5],
            metadata={"k": "v"},
            collection="c",
            created_at=clock(),
            updated_at=clock(),
        )
        restored = Document.from_dict(doc.to_dict())
        assert restored == doc

    def test_to_dict_omits_missing_embedding(self):
        assert "embedding" not in Document(id="d", content="x").to_dict()

    def test_copy_is_independent(self):
        doc = Document(id="d", content="x", embedding=[1.0], metadata={"k": 1})
        clone = doc.copy()
        clone.metadata["k"] = 2
        clone.embedding[0] = 9.0
        assert doc.metadata == {"k": 1}
        assert doc.embedding == [1.0]
        assert doc.copy(include_embedding=False).embedding is None


class TestCollections:
    def test_create_and_list(self, store):
        store.create_collection("b", 3)
        store.create_collection("a", 4)
        assert store.list_collections() == ["a", "b"]
        assert store.has_collection("a")
        assert store.collection_dimension("a") == 4

    def test_duplicate_create_fails(self, store):
        store.create_collection("docs", 3)
        with pytest.raises(CollectionExistsError) as exc_info:
            store.create_collection("docs", 3)
        assert "docs" in str(exc_info.value)

    def test_invalid_dimension(self, store):
        with pytest.raises(InputValidationError):
            store.create_collection("docs", 0)

    def test_delete_missing_is_noop(self, store):
        store.delete_collection("nope")
        assert store.list_collections() == []

    def test_deleted_collection_is_unreachable(self, store3):
        _seed_abc(store3)
        store3.delete_collection("docs")
        assert "docs" not in store3.list_collections()
        with pytest.raises(CollectionNotFoundError):
            store3.get_document("A", collection="docs")
        with pytest.raises(DocumentNotFoundError):
            store3.get_document("A")
        with pytest.raises(CollectionNotFoundError):
            store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs"))

    def test_unknown_collection_dimension(self, store):
        with pytest.raises(CollectionNotFoundError):
            store.collection_dimension("nope")


class TestWrites:
    def test_add_to_missing_collection(self, store):
        with pytest.raises(CollectionNotFoundError):
            store.add_document(Document(id="d", content="x", collection="nope"))

    def test_empty_id_rejected(self, store3):
        with pytest.raises(InputValidationError):
            store3.add_document(Document(id="", content="x", collection="docs"))

    def test_dimension_mismatch_leaves_state_unchanged(self, store3):
        _seed_abc(store3)
        before = store3.get_stats()
        with pytest.raises(DimensionMismatchError) as exc_info:
            store3.add_document(Document(id="D", content="delta", embedding=[1.0, 0.0], collection="docs"))
        assert exc_info.value.document_id == "D"
        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 2
        assert store3.get_stats() == before

    def test_batch_add_is_all_or_nothing(self, store3):
        with pytest.raises(DimensionMismatchError):
            store3.batch_add(
                [
                    Document(id="ok", content="fine", embedding=[1.0, 0.0, 0.0], collection="docs"),
                    Document(id="bad", content="broken", embedding=[1.0], collection="docs"),
                ]
            )
        assert store3.count("docs") == 0

    def test_lexical_only_document(self, store3):
        store3.add_document(Document(id="L", content="no vector here", collection="docs"))
        assert store3.get_document("L").embedding is None
        assert store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs")) == []
        assert [r.id for r in store3.search("vector", SearchOptions(collection="docs"))] == ["L"]

    def test_batch_idempotence(self, store3, clock):
        _seed_abc(store3)
        created = store3.get_document("A").created_at
        clock.advance(60)
        _seed_abc(store3)
        assert store3.count("docs") == 3
        doc = store3.get_document("A")
        assert doc.created_at == created
        assert doc.updated_at == clock()
        assert doc.updated_at > created

    def test_upsert_overwrites_content(self, store3):
        store3.add_document(Document(id="A", content="old", embedding=[1.0, 0.0, 0.0], collection="docs"))
        store3.update_document(Document(id="A", content="new", embedding=[0.0, 1.0, 0.0], collection="docs"))
        assert store3.get_document("A", collection="docs").content == "new"
        hits = store3.similarity_search([0.0, 1.0, 0.0], SearchOptions(collection="docs", top_k=1))
        assert hits[0].score == pytest.approx(1.0)

    def test_upsert_without_embedding_drops_index_entry(self, store3):
        _seed_abc(store3)
        store3.add_document(Document(id="A", content="alpha", collection="docs"))
        hits = store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs"))
        assert "A" not in [r.id for r in hits]

    def test_stored_document_is_isolated_from_caller(self, store3):
        doc = Document(id="A", content="alpha", embedding=[1.0, 0.0, 0.0], metadata={"k": 1}, collection="docs")
        store3.add_document(doc)
        doc.metadata["k"] = 2
        fetched = store3.get_document("A")
        fetched.metadata["k"] = 3
        assert store3.get_document("A").metadata == {"k": 1}


class TestDeletes:
    def test_scoped_delete(self, store):
        store.create_collection("one", 3)
        store.create_collection("two", 3)
        store.add_document(Document(id="x", content="in one", collection="one"))
        store.add_document(Document(id="x", content="in two", collection="two"))
        store.delete_document("x", collection="one")
        assert store.count("one") == 0
        assert store.get_document("x", collection="two").content == "in two"

    def test_unscoped_delete_sweeps_all(self, store):
        store.create_collection("one", 3)
        store.create_collection("two", 3)
        store.add_document(Document(id="x", content="a", collection="one"))
        store.add_document(Document(id="x", content="b", collection="two"))
        store.batch_delete(["x", "missing"])
        assert store.get_stats()["total_documents"] == 0

    def test_scoped_delete_of_missing_collection(self, store):
        with pytest.raises(CollectionNotFoundError):
            store.delete_document("x", collection="nope")

    def test_deleted_document_not_searchable(self, store3):
        _seed_abc(store3)
        store3.delete_document("A", collection="docs")
        hits = store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs"))
        assert "A" not in [r.id for r in hits]


class TestGet:
    def test_get_scoped_missing_document(self, store3):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            store3.get_document("nope", collection="docs")
        assert exc_info.value.collection == "docs"

    def test_unscoped_get_prefers_first_collection_by_name(self, store):
        store.create_collection("b", 3)
        store.create_collection("a", 3)
        store.add_document(Document(id="x", content="from b", collection="b"))
        store.add_document(Document(id="x", content="from a", collection="a"))
        assert store.get_document("x").content == "from a"


class TestSimilaritySearch:
    def test_nearest_first(self, store3):
        _seed_abc(store3)
        hits = store3.similarity_search([0.9, 0.1, 0.0], SearchOptions(collection="docs", top_k=1))
        assert [r.id for r in hits] == ["A"]
        assert 0.9 < hits[0].score <= 1.0
        assert hits[0].distance == pytest.approx(1.0 - hits[0].score)

    def test_absent_filter_key_yields_nothing(self, store3):
        _seed_abc(store3)
        opts = SearchOptions(collection="docs", filter={"project_id": "p1"})
        assert store3.similarity_search([1.0, 0.0, 0.0], opts) == []

    def test_filter_isolation_beats_exact_match(self, store3):
        store3.add_document(
            Document(
                id="p1doc",
                content="the dragon",
                embedding=[1.0, 0.0, 0.0],
                metadata={"project_id": "p1"},
                collection="docs",
            )
        )
        opts = SearchOptions(collection="docs", filter={"project_id": "p2"})
        assert store3.similarity_search([1.0, 0.0, 0.0], opts) == []
        assert store3.search("the dragon", opts) == []

    def test_threshold(self, store3):
        _seed_abc(store3)
        hits = store3.similarity_search([1.0, 1.0, 0.0], SearchOptions(collection="docs", threshold=0.5))
        assert sorted(r.id for r in hits) == ["A", "B"]

    def test_ties_broken_by_id(self, store3):
        _seed_abc(store3)
        hits = store3.similarity_search([1.0, 1.0, 1.0], SearchOptions(collection="docs"))
        assert [r.id for r in hits] == ["A", "B", "C"]

    def test_query_dimension_mismatch(self, store3):
        _seed_abc(store3)
        with pytest.raises(DimensionMismatchError) as exc_info:
            store3.similarity_search([1.0, 0.0], SearchOptions(collection="docs"))
        assert exc_info.value.document_id is None

    def test_embeddings_omitted_unless_requested(self, store3):
        _seed_abc(store3)
        plain = store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs", top_k=1))
        full = store3.similarity_search(
            [1.0, 0.0, 0.0], SearchOptions(collection="docs", top_k=1, include_embedding=True)
        )
        assert plain[0].document.embedding is None
        assert full[0].document.embedding == pytest.approx([1.0, 0.0, 0.0])

    def test_relational_filter(self, store3):
        for i in range(1, 5):
            store3.add_document(
                Document(
                    id=f"c{i}",
                    content=f"chapter {i}",
                    embedding=[1.0, 0.0, 0.0],
                    metadata={"index": i},
                    collection="docs",
                )
            )
        opts = SearchOptions(collection="docs", filter={"index": {"$lt": 3}})
        assert sorted(r.id for r in store3.similarity_search([1.0, 0.0, 0.0], opts)) == ["c1", "c2"]


class TestLexicalSearch:
    def test_case_insensitive_substring(self, store3):
        store3.add_document(Document(id="d", content="The Dragon sleeps. The dragon wakes.", collection="docs"))
        hits = store3.search("DRAGON", SearchOptions(collection="docs"))
        assert [r.id for r in hits] == ["d"]
        # two occurrences over six words
        assert hits[0].score == pytest.approx(2 / 6)

    def test_no_match(self, store3):
        store3.add_document(Document(id="d", content="quiet village", collection="docs"))
        assert store3.search("dragon", SearchOptions(collection="docs")) == []

    def test_empty_query_lists_all_matching_filter(self, store3):
        store3.add_document(Document(id="a", content="x", metadata={"project_id": "p1"}, collection="docs"))
        store3.add_document(Document(id="b", content="y", metadata={"project_id": "p1"}, collection="docs"))
        store3.add_document(Document(id="c", content="z", metadata={"project_id": "p2"}, collection="docs"))
        hits = store3.search("", SearchOptions(collection="docs", filter={"project_id": "p1"}))
        assert [r.id for r in hits] == ["a", "b"]
        assert all(r.score == 1.0 for r in hits)

    def test_missing_collection(self, store):
        with pytest.raises(CollectionNotFoundError):
            store.search("x", SearchOptions(collection="nope"))


class TestStats:
    def test_count_with_filter(self, store3):
        store3.add_document(Document(id="a", content="x", metadata={"project_id": "p1"}, collection="docs"))
        store3.add_document(Document(id="b", content="y", metadata={"project_id": "p2"}, collection="docs"))
        assert store3.count("docs") == 2
        assert store3.count("docs", {"project_id": "p1"}) == 1

    def test_get_stats(self, store3):
        store3.create_collection("empty", 3)
        _seed_abc(store3)
        assert store3.get_stats() == {
            "collections": 2,
            "total_documents": 3,
            "documents_by_collection": {"docs": 3, "empty": 0},
        }

    def test_close_discards_state(self, store3):
        _seed_abc(store3)
        store3.close()
        assert store3.list_collections() == []
        store3.ping()


class TestConcurrency:
    def test_parallel_writers_and_readers(self, store3):
        errors: list[Exception] = []

        def writer(n: int) -> None:
            try:
                for i in range(50):
                    store3.add_document(
                        Document(id=f"w{n}-{i}", content="text", embedding=[1.0, 0.0, 0.0], collection="docs")
                    )
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        def reader() -> None:
            try:
                for _ in range(50):
                    store3.similarity_search([1.0, 0.0, 0.0], SearchOptions(collection="docs", top_k=5))
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store3.count("docs") == 200


class TestFactory:
    def test_memory_backend(self):
        assert isinstance(build_vector_store("memory"), MemoryVectorStore)

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="chroma"):
            build_vector_store("chroma")
