"""
Shared test fixtures and pytest configuration.

Markers:
    @pytest.mark.embedding    requires sentence-transformers model downloadable

Run:
    pytest                            # default suite, no network
    pytest -m embedding               # only embedding model tests
    pytest -m "not embedding"         # skip model tests (fast CI)
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from lorekeeper.rag.vector_store import MemoryVectorStore


def _embedding_model_available() -> bool:
    """Check if all-MiniLM-L6-v2 can be loaded (already cached or downloadable)."""
    try:
        from sentence_transformers import SentenceTransformer

        model = SentenceTransformer("all-MiniLM-L6-v2")
        vec = model.encode(["test"])
        return vec.shape[1] == 384
    except Exception:
        return False


# Cache the check at module level so it runs once per session
_EMBEDDING_OK: Optional[bool] = None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "embedding: requires sentence-transformers model available")


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests whose infrastructure requirements are not met."""
    global _EMBEDDING_OK

    if not any("embedding" in item.keywords for item in items):
        return
    if _EMBEDDING_OK is None:
        _EMBEDDING_OK = _embedding_model_available()

    skip_embedding = pytest.mark.skip(reason="Embedding model not available (all-MiniLM-L6-v2)")
    for item in items:
        if "embedding" in item.keywords and not _EMBEDDING_OK:
            item.add_marker(skip_embedding)


class FakeClock:
    """Manually advanced clock for timestamp assertions."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryVectorStore:
    return MemoryVectorStore(clock=clock)


@pytest.fixture
def store3(store: MemoryVectorStore) -> MemoryVectorStore:
    """Store with a 3-dimensional ``docs`` collection."""
    store.create_collection("docs", 3)
    return store
