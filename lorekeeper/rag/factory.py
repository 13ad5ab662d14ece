"""
Wiring: build a RAGService from application configuration.
"""

from __future__ import annotations

import logging
from typing import Any

from lorekeeper.config import AppConfig
from lorekeeper.rag.embedding_provider import build_embedding_provider
from lorekeeper.rag.search import CollectionRegistry, RAGService
from lorekeeper.rag.vector_store import build_vector_store

LOG = logging.getLogger("rag.factory")


def build_rag_service(
    config: AppConfig | None = None,
    registry: CollectionRegistry | None = None,
    **embedding_kwargs: Any,
) -> RAGService:
    """
    Build store + embedder from ``config`` without touching the network.

    Raises:
        ConfigurationError: Unknown backend/provider or missing credentials
    """
    config = config or AppConfig.from_env()
    store = build_vector_store(config.vector_store.backend)
    embedder = build_embedding_provider(config.embedding, **embedding_kwargs)
    LOG.info(
        "RAG service: store=%s embedder=%s (dim=%d)",
        config.vector_store.backend,
        embedder.name,
        embedder.dimension(),
    )
    return RAGService(store, embedder, registry=registry, config=config.rag)


async def initialize_rag_service(
    config: AppConfig | None = None,
    registry: CollectionRegistry | None = None,
    **embedding_kwargs: Any,
) -> RAGService:
    """Build a service, create its collections and check both backends are reachable."""
    service = build_rag_service(config, registry=registry, **embedding_kwargs)
    try:
        service.initialize_collections()
        await service.ping()
    except Exception:
        await service.close()
        raise
    return service
