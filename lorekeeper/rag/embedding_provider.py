"""
Embedding provider abstraction with remote, local and mock backends.

- RemoteEmbeddingProvider: OpenAI-compatible ``/embeddings`` endpoint over httpx
- HashEmbeddingProvider: deterministic pseudo-embeddings, no model or network
- SentenceTransformerEmbeddingProvider: real local model via sentence-transformers
- MockEmbeddingProvider: canned vectors for tests

Providers are async: remote calls are awaited and cancel cleanly when the
caller's task is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import numpy as np

from lorekeeper.rag.errors import ConfigurationError, EmbeddingProviderError, InputValidationError

if TYPE_CHECKING:
    from lorekeeper.config import EmbeddingConfig

LOG = logging.getLogger("rag.embedding_provider")

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "text-embedding-ada-002"
DEFAULT_REMOTE_DIMENSION = 1536
DEFAULT_LOCAL_DIMENSION = 768

MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}

_UINT32 = 0xFFFFFFFF


def _require_text(text: str) -> None:
    if not text or not text.strip():
        raise InputValidationError("text cannot be empty")


def _as_vector(raw: Any) -> list[float]:
    """Coerce one response embedding to float32; must be a non-empty, finite, flat list."""
    arr = np.asarray(raw, dtype=np.float32)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"embedding must be a non-empty flat list, got shape {arr.shape}")
    if not np.isfinite(arr).all():
        raise ValueError("embedding contains non-finite values")
    return arr.tolist()


class EmbeddingProvider(ABC):
    """Abstract interface for text → embedding vector conversion."""

    name: str = "abstract"

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text. Raises InputValidationError on empty text."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed many texts. Fails as a whole if any item fails.

        Returns one vector per input text, in input order.
        """
        if not texts:
            raise InputValidationError("texts cannot be empty")
        vectors: list[list[float]] = []
        for i, text in enumerate(texts):
            try:
                vectors.append(await self.embed(text))
            except InputValidationError as exc:
                raise InputValidationError(f"failed to embed text {i}: {exc}") from exc
        return vectors

    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimensionality."""
        ...

    async def ping(self) -> None:
        """Liveness probe. Raises if the provider is unreachable."""
        return None

    async def close(self) -> None:
        """Release resources (e.g., HTTP clients). Override if needed."""
        pass


class RemoteEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI-compatible embeddings over HTTP.

    One JSON request per call: ``{"input": ..., "model": ...}`` posted to
    ``{base_url}/embeddings`` with bearer auth, answered by
    ``{"data": [{"embedding": [...]}, ...]}``. Any non-2xx status or
    malformed body is a hard failure; there is no retry at this layer.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        model: str = DEFAULT_OPENAI_MODEL,
        timeout: float = 30.0,
        provider: str = "openai",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"API key required for embedding provider {provider!r}")
        if not base_url:
            raise ConfigurationError(f"base URL required for embedding provider {provider!r}")

        self.name = provider
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        LOG.info("Remote embeddings: %s model=%s at %s", provider, model, self._base_url)

    async def embed(self, text: str) -> list[float]:
        _require_text(text)
        vectors = await self._request(text, expected=None)
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            raise InputValidationError("texts cannot be empty")
        for i, text in enumerate(texts):
            try:
                _require_text(text)
            except InputValidationError as exc:
                raise InputValidationError(f"failed to embed text {i}: {exc}") from exc
        return await self._request(texts, expected=len(texts))

    async def _request(self, payload_input: str | list[str], expected: int | None) -> list[list[float]]:
        try:
            resp = await self._client.post("/embeddings", json={"input": payload_input, "model": self._model})
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(
                f"failed to reach {self.name} embeddings at {self._base_url}: {exc}",
                provider=self.name,
            ) from exc

        if not resp.is_success:
            raise EmbeddingProviderError(
                f"{self.name} embeddings request failed with status {resp.status_code}: {resp.text}",
                provider=self.name,
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()["data"]
            vectors = [_as_vector(item["embedding"]) for item in data]
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingProviderError(
                f"malformed {self.name} embeddings response: {exc}",
                provider=self.name,
                status_code=resp.status_code,
                body=resp.text,
            ) from exc

        if not vectors:
            raise EmbeddingProviderError(
                f"no embedding data in {self.name} response",
                provider=self.name,
                status_code=resp.status_code,
                body=resp.text,
            )
        if expected is not None and len(vectors) != expected:
            raise EmbeddingProviderError(
                f"embedding count mismatch: expected {expected}, got {len(vectors)}",
                provider=self.name,
                status_code=resp.status_code,
                body=resp.text,
            )
        return vectors

    def dimension(self) -> int:
        return MODEL_DIMENSIONS.get(self._model, DEFAULT_REMOTE_DIMENSION)

    async def ping(self) -> None:
        try:
            resp = await self._client.get("/models")
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(
                f"{self.name} embeddings endpoint unreachable at {self._base_url}: {exc}",
                provider=self.name,
            ) from exc
        if not resp.is_success:
            raise EmbeddingProviderError(
                f"{self.name} health check failed with status {resp.status_code}: {resp.text}",
                provider=self.name,
                status_code=resp.status_code,
                body=resp.text,
            )

    async def close(self) -> None:
        await self._client.aclose()


def _string_hash(text: str) -> int:
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & _UINT32
    return h


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic pseudo-embeddings derived from a string hash.

    The hash seeds a linear-congruential generator that yields ``dim`` values
    in [-1, 1); the vector is then L2-normalized. The same text always yields
    a bit-identical vector, in any process. Useful offline and in tests, but
    carries no semantic signal.
    """

    name = "local"

    def __init__(self, dim: int = DEFAULT_LOCAL_DIMENSION) -> None:
        if dim <= 0:
            raise ConfigurationError(f"local embedding dimension must be positive, got {dim}")
        self._dim = dim

    def _vector(self, text: str) -> list[float]:
        h = _string_hash(text)
        raw = np.empty(self._dim, dtype=np.float32)
        for i in range(self._dim):
            h = (h * 1103515245 + 12345) & _UINT32
            raw[i] = ((h >> 16) & 0x7FFF) / 16384.0 - 1.0
        norm = np.linalg.norm(raw)
        if norm > 0:
            raw = raw / norm
        return raw.astype(np.float32).tolist()

    async def embed(self, text: str) -> list[float]:
        _require_text(text)
        return self._vector(text)

    def dimension(self) -> int:
        return self._dim


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """
    Local embedding via sentence-transformers.

    Default model: all-MiniLM-L6-v2 (384 dimensions). Encoding runs in a worker
    thread so the event loop stays responsive.
    """

    name = "sentence-transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str | None = None) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ConfigurationError(
                "sentence-transformers is required for the 'sentence-transformers' provider. "
                "Install with: pip install 'lorekeeper[embeddings]'"
            ) from exc

        LOG.info("Loading embedding model: %s", model_name)
        self._model = SentenceTransformer(model_name, device=device)
        self._dim: int = self._model.get_sentence_embedding_dimension()

    def _encode(self, texts: list[str]) -> list[list[float]]:
        arr = self._model.encode(
            texts,
            normalize_embeddings=True,
            show_progress_bar=False,
            convert_to_numpy=True,
        )
        return arr.astype(np.float32).tolist()

    async def embed(self, text: str) -> list[float]:
        _require_text(text)
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            raise InputValidationError("texts cannot be empty")
        for text in texts:
            _require_text(text)
        return await asyncio.to_thread(self._encode, list(texts))

    def dimension(self) -> int:
        return self._dim


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Mock embedding provider for testing.

    Returns the canned vector registered for a text, otherwise a zero vector.
    With ``fail=True`` every call raises EmbeddingProviderError.
    """

    name = "mock"

    def __init__(
        self,
        dim: int = 384,
        vectors: dict[str, list[float]] | None = None,
        fail: bool = False,
    ) -> None:
        self._dim = dim
        self._vectors = dict(vectors or {})
        self.fail = fail
        self.calls: list[str] = []

    def register(self, text: str, vector: list[float]) -> None:
        self._vectors[text] = list(vector)

    async def embed(self, text: str) -> list[float]:
        _require_text(text)
        self.calls.append(text)
        if self.fail:
            raise EmbeddingProviderError("mock embedding failure", provider=self.name)
        return list(self._vectors.get(text, [0.0] * self._dim))

    def dimension(self) -> int:
        return self._dim


def _local_dimension(config: "EmbeddingConfig") -> int:
    if config.dimension:
        return config.dimension
    match = re.fullmatch(r"local-(\d+)", config.model or "")
    if match:
        return int(match.group(1))
    return DEFAULT_LOCAL_DIMENSION


def build_embedding_provider(config: "EmbeddingConfig", **kwargs: Any) -> EmbeddingProvider:
    """
    Factory: create an EmbeddingProvider for ``config.provider``.

    Args:
        config: Embedding configuration
        **kwargs: Backend-specific extras (e.g. ``transport`` for the remote provider)

    Returns:
        EmbeddingProvider instance

    Raises:
        ConfigurationError: Unknown provider or missing settings
    """
    provider = (config.provider or "").strip().lower()

    if provider == "openai":
        return RemoteEmbeddingProvider(
            api_key=config.api_key,
            base_url=config.base_url or DEFAULT_OPENAI_BASE_URL,
            model=config.model or DEFAULT_OPENAI_MODEL,
            timeout=config.timeout,
            provider="openai",
            **kwargs,
        )
    elif provider == "azure":
        # same wire format as OpenAI, but there is no public default endpoint
        return RemoteEmbeddingProvider(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model or DEFAULT_OPENAI_MODEL,
            timeout=config.timeout,
            provider="azure",
            **kwargs,
        )
    elif provider == "local":
        return HashEmbeddingProvider(dim=_local_dimension(config))
    elif provider == "sentence-transformers":
        return SentenceTransformerEmbeddingProvider(model_name=config.model or "all-MiniLM-L6-v2", **kwargs)
    elif provider == "mock":
        return MockEmbeddingProvider(dim=config.dimension or 384)
    else:
        raise ConfigurationError(
            f"Unknown embedding provider: {config.provider!r}. "
            f"Supported: 'openai', 'azure', 'local', 'sentence-transformers', 'mock'"
        )
