"""
Abstract vector store interface with an in-memory brute-force backend.

Documents live in named, fixed-dimension collections. Search is exact
cosine similarity over every indexed vector in one collection; the
interface is narrow enough that an approximate-nearest-neighbor backend
can be slotted in behind ``build_vector_store`` without changing callers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import numpy as np

from lorekeeper.rag.errors import (
    CollectionExistsError,
    CollectionNotFoundError,
    ConfigurationError,
    DimensionMismatchError,
    DocumentNotFoundError,
    InputValidationError,
)
from lorekeeper.rag.filters import matches_filter, validate_filter
from lorekeeper.rag.locking import ReadWriteLock

LOG = logging.getLogger("rag.vector_store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Document:
    """A unit of text stored in a collection, with optional embedding and metadata."""

    id: str
    content: str
    embedding: Optional[list[float]] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    collection: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.embedding is not None:
            # empty embedding means lexical-only
            self.embedding = [float(v) for v in self.embedding] if len(self.embedding) else None

    def copy(self, include_embedding: bool = True) -> "Document":
        return replace(
            self,
            embedding=list(self.embedding) if include_embedding and self.embedding is not None else None,
            metadata=dict(self.metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "metadata": dict(self.metadata),
            "collection": self.collection,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.embedding is not None:
            d["embedding"] = list(self.embedding)
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Document":
        def _ts(value: Any) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=d["id"],
            content=d.get("content", ""),
            embedding=d.get("embedding"),
            metadata=dict(d.get("metadata") or {}),
            collection=d.get("collection", ""),
            created_at=_ts(d.get("created_at")),
            updated_at=_ts(d.get("updated_at")),
        )


@dataclass
class SearchOptions:
    """Parameters shared by lexical and similarity search."""

    collection: str
    top_k: int = 10
    threshold: float = 0.0
    filter: dict[str, Any] = field(default_factory=dict)
    include_embedding: bool = False

    def __post_init__(self) -> None:
        if not self.collection:
            raise InputValidationError("search options require a collection")
        if self.top_k < 0:
            raise InputValidationError(f"top_k must be >= 0, got {self.top_k}")
        if not -1.0 <= self.threshold <= 1.0:
            raise InputValidationError(f"threshold must be in [-1, 1], got {self.threshold}")
        validate_filter(self.filter)


@dataclass
class SearchResult:
    """A single ranked hit. ``distance`` is ``1 - score``."""

    document: Document
    score: float

    @property
    def distance(self) -> float:
        return 1.0 - self.score

    @property
    def id(self) -> str:
        return self.document.id


def cosine_similarity(a: Iterable[float], b: Iterable[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimensions must match: {va.size} != {vb.size}")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank(candidates: list[SearchResult], options: SearchOptions) -> list[SearchResult]:
    """Apply threshold, sort by score descending with id as tie-break, truncate to top_k."""
    kept = [c for c in candidates if c.score >= options.threshold]
    kept.sort(key=lambda r: (-r.score, r.document.id))
    return kept[: options.top_k]


class VectorStore(ABC):
    """
    Abstract interface for collection-organized document storage and search.

    Collections must be created explicitly before documents are added.
    Adds are upserts keyed by document id within a collection.
    """

    @abstractmethod
    def create_collection(self, name: str, dimension: int) -> None:
        """Create a collection. Raises CollectionExistsError if it exists."""

    @abstractmethod
    def delete_collection(self, name: str) -> None:
        """Drop a collection and all its documents. No-op when absent."""

    @abstractmethod
    def list_collections(self) -> list[str]:
        """Return collection names, sorted."""

    @abstractmethod
    def has_collection(self, name: str) -> bool: ...

    @abstractmethod
    def collection_dimension(self, name: str) -> int: ...

    @abstractmethod
    def add_document(self, doc: Document) -> None:
        """Upsert one document into ``doc.collection``."""

    @abstractmethod
    def batch_add(self, docs: list[Document]) -> None:
        """Upsert many documents; all are validated before any is written."""

    @abstractmethod
    def update_document(self, doc: Document) -> None:
        """Explicit upsert; re-indexes the embedding and refreshes ``updated_at``."""

    @abstractmethod
    def delete_document(self, doc_id: str, collection: str | None = None) -> None:
        """
        Delete a document by id.

        With ``collection`` the delete is scoped to that collection. Without it
        the id is removed from every collection that holds it.
        """

    @abstractmethod
    def batch_delete(self, ids: list[str], collection: str | None = None) -> None:
        """Delete many ids, scoped like ``delete_document``."""

    @abstractmethod
    def get_document(self, doc_id: str, collection: str | None = None) -> Document:
        """Fetch a document; without ``collection`` the first match across collections wins."""

    @abstractmethod
    def search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        """Lexical search. An empty query lists every document matching the filter."""

    @abstractmethod
    def similarity_search(self, embedding: list[float], options: SearchOptions) -> list[SearchResult]:
        """Rank indexed documents by cosine similarity to ``embedding``."""

    @abstractmethod
    def count(self, collection: str, filter: dict[str, Any] | None = None) -> int: ...

    @abstractmethod
    def get_stats(self) -> dict[str, Any]: ...

    def ping(self) -> None:
        """Liveness probe. Raises if the store is unusable."""

    def close(self) -> None:
        """Release resources. Override if needed."""
        pass


@dataclass
class _Collection:
    name: str
    dimension: int
    documents: dict[str, Document] = field(default_factory=dict)
    index: dict[str, np.ndarray] = field(default_factory=dict)


class MemoryVectorStore(VectorStore):
    """
    In-memory vector store with exact (brute-force) cosine search.

    One reader/writer lock guards the whole store. Nothing here performs I/O,
    so the lock is never held across a network or disk call. State lives for
    the lifetime of the process; ``close`` discards it.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._lock = ReadWriteLock()
        self._collections: dict[str, _Collection] = {}
        self._clock = clock or _utcnow

    # ── collections ──────────────────────────────────────────────────────

    def create_collection(self, name: str, dimension: int) -> None:
        if not name:
            raise InputValidationError("collection name must not be empty")
        if dimension <= 0:
            raise InputValidationError(f"collection {name!r} dimension must be positive, got {dimension}")
        with self._lock.write_locked():
            if name in self._collections:
                raise CollectionExistsError(name)
            self._collections[name] = _Collection(name=name, dimension=dimension)
        LOG.info("Created collection %s (dim=%d)", name, dimension)

    def delete_collection(self, name: str) -> None:
        with self._lock.write_locked():
            removed = self._collections.pop(name, None)
        if removed is not None:
            LOG.info("Deleted collection %s (%d documents)", name, len(removed.documents))

    def list_collections(self) -> list[str]:
        with self._lock.read_locked():
            return sorted(self._collections)

    def has_collection(self, name: str) -> bool:
        with self._lock.read_locked():
            return name in self._collections

    def collection_dimension(self, name: str) -> int:
        with self._lock.read_locked():
            return self._require(name).dimension

    def _require(self, name: str) -> _Collection:
        coll = self._collections.get(name)
        if coll is None:
            raise CollectionNotFoundError(name)
        return coll

    # ── writes ───────────────────────────────────────────────────────────

    def _validate(self, doc: Document) -> _Collection:
        if not doc.id:
            raise InputValidationError(f"document in collection {doc.collection!r} has an empty id")
        coll = self._require(doc.collection)
        if doc.embedding is not None and len(doc.embedding) != coll.dimension:
            raise DimensionMismatchError(coll.name, coll.dimension, len(doc.embedding), document_id=doc.id)
        return coll

    def _put(self, coll: _Collection, doc: Document, now: datetime) -> None:
        existing = coll.documents.get(doc.id)
        if existing is not None and existing.created_at is not None:
            created_at = existing.created_at
        else:
            created_at = doc.created_at or now
        stored = doc.copy()
        stored.collection = coll.name
        stored.created_at = created_at
        stored.updated_at = now
        coll.documents[doc.id] = stored
        if stored.embedding is not None:
            coll.index[doc.id] = np.asarray(stored.embedding, dtype=np.float32)
        else:
            coll.index.pop(doc.id, None)

    def add_document(self, doc: Document) -> None:
        self.batch_add([doc])

    def batch_add(self, docs: list[Document]) -> None:
        if not docs:
            return
        with self._lock.write_locked():
            targets = [self._validate(doc) for doc in docs]
            now = self._clock()
            for coll, doc in zip(targets, docs):
                self._put(coll, doc, now)
        LOG.debug("Upserted %d document(s)", len(docs))

    def update_document(self, doc: Document) -> None:
        with self._lock.write_locked():
            coll = self._validate(doc)
            self._put(coll, doc, self._clock())

    def delete_document(self, doc_id: str, collection: str | None = None) -> None:
        self.batch_delete([doc_id], collection=collection)

    def batch_delete(self, ids: list[str], collection: str | None = None) -> None:
        if not ids:
            return
        with self._lock.write_locked():
            if collection is not None:
                targets = [self._require(collection)]
            else:
                targets = list(self._collections.values())
            removed = 0
            for coll in targets:
                for doc_id in ids:
                    if coll.documents.pop(doc_id, None) is not None:
                        removed += 1
                    coll.index.pop(doc_id, None)
        LOG.debug("Deleted %d of %d id(s) (scope=%s)", removed, len(ids), collection or "*")

    # ── reads ────────────────────────────────────────────────────────────

    def get_document(self, doc_id: str, collection: str | None = None) -> Document:
        with self._lock.read_locked():
            if collection is not None:
                doc = self._require(collection).documents.get(doc_id)
                if doc is None:
                    raise DocumentNotFoundError(doc_id, collection)
                return doc.copy()
            for name in sorted(self._collections):
                doc = self._collections[name].documents.get(doc_id)
                if doc is not None:
                    return doc.copy()
        raise DocumentNotFoundError(doc_id)

    def search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        needle = query.lower()
        with self._lock.read_locked():
            coll = self._require(options.collection)
            candidates: list[SearchResult] = []
            for doc in coll.documents.values():
                if not matches_filter(doc.metadata, options.filter):
                    continue
                if not needle:
                    score = 1.0
                else:
                    content = doc.content.lower()
                    occurrences = content.count(needle)
                    if occurrences == 0:
                        continue
                    score = occurrences / max(1, len(content.split()))
                candidates.append(SearchResult(doc.copy(options.include_embedding), score))
        return rank(candidates, options)

    def similarity_search(self, embedding: list[float], options: SearchOptions) -> list[SearchResult]:
        query = np.asarray(embedding, dtype=np.float64)
        with self._lock.read_locked():
            coll = self._require(options.collection)
            if query.ndim != 1 or query.size != coll.dimension:
                raise DimensionMismatchError(coll.name, coll.dimension, int(query.size))
            ids = [
                doc_id
                for doc_id in coll.index
                if matches_filter(coll.documents[doc_id].metadata, options.filter)
            ]
            if not ids:
                return []
            matrix = np.vstack([coll.index[doc_id] for doc_id in ids]).astype(np.float64)
            norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
            dots = matrix @ query
            scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
            candidates = [
                SearchResult(coll.documents[doc_id].copy(options.include_embedding), float(score))
                for doc_id, score in zip(ids, scores)
            ]
        return rank(candidates, options)

    def count(self, collection: str, filter: dict[str, Any] | None = None) -> int:
        validate_filter(filter)
        with self._lock.read_locked():
            coll = self._require(collection)
            return sum(1 for doc in coll.documents.values() if matches_filter(doc.metadata, filter))

    def get_stats(self) -> dict[str, Any]:
        with self._lock.read_locked():
            by_collection = {name: len(c.documents) for name, c in sorted(self._collections.items())}
        return {
            "collections": len(by_collection),
            "total_documents": sum(by_collection.values()),
            "documents_by_collection": by_collection,
        }

    def ping(self) -> None:
        with self._lock.read_locked():
            return None

    def close(self) -> None:
        with self._lock.write_locked():
            self._collections = {}
        LOG.info("Memory vector store closed")


def build_vector_store(
    backend: str = "memory",
    **kwargs: Any,
) -> VectorStore:
    """
    Factory: create a VectorStore of the requested type.

    Args:
        backend: "memory" (only supported backend currently)
        **kwargs: Backend-specific configuration

    Returns:
        VectorStore instance

    Raises:
        ConfigurationError: Unknown backend
    """
    if backend == "memory":
        return MemoryVectorStore(**kwargs)
    else:
        raise ConfigurationError(
            f"Unknown vector store backend: {backend!r}. "
            f"Supported: 'memory'"
        )
