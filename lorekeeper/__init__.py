"""
lorekeeper: retrieval-augmented grounding for long-form fiction generation.

Novel-project entities (worldview, characters, outline, chapters) are
embedded into an in-memory vector store and recalled as prompt context.
"""

from __future__ import annotations

__version__ = "0.1.0"

from lorekeeper.config import AppConfig, EmbeddingConfig, configure_logging
from lorekeeper.rag import RAGService
from lorekeeper.rag.factory import build_rag_service, initialize_rag_service

__all__ = [
    "AppConfig",
    "EmbeddingConfig",
    "RAGService",
    "__version__",
    "build_rag_service",
    "configure_logging",
    "initialize_rag_service",
]
