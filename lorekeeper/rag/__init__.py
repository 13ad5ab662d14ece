"""
RAG (Retrieval-Augmented Generation) subsystem for novel-writing context.

Provides a vector store abstraction, embedding providers, and a domain
façade that indexes project entities and assembles grounding prompts.
"""

from __future__ import annotations

from lorekeeper.rag.embedding_provider import (
    EmbeddingProvider,
    HashEmbeddingProvider,
    MockEmbeddingProvider,
    RemoteEmbeddingProvider,
    SentenceTransformerEmbeddingProvider,
    build_embedding_provider,
)
from lorekeeper.rag.errors import (
    CollectionExistsError,
    CollectionNotFoundError,
    ConfigurationError,
    DimensionMismatchError,
    DocumentNotFoundError,
    EmbeddingProviderError,
    InputValidationError,
    InvalidFilterError,
    NotFoundError,
    ProjectSweepError,
    RAGError,
    UnknownContextTypeError,
)
from lorekeeper.rag.search import CollectionRegistry, RAGConfig, RAGService
from lorekeeper.rag.vector_store import (
    Document,
    MemoryVectorStore,
    SearchOptions,
    SearchResult,
    VectorStore,
    build_vector_store,
)

__all__ = [
    "CollectionExistsError",
    "CollectionNotFoundError",
    "CollectionRegistry",
    "ConfigurationError",
    "DimensionMismatchError",
    "Document",
    "DocumentNotFoundError",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "HashEmbeddingProvider",
    "InputValidationError",
    "InvalidFilterError",
    "MemoryVectorStore",
    "MockEmbeddingProvider",
    "NotFoundError",
    "ProjectSweepError",
    "RAGConfig",
    "RAGError",
    "RAGService",
    "RemoteEmbeddingProvider",
    "SearchOptions",
    "SearchResult",
    "SentenceTransformerEmbeddingProvider",
    "UnknownContextTypeError",
    "VectorStore",
    "build_embedding_provider",
    "build_vector_store",
]
