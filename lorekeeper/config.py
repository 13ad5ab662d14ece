"""Configuration management for lorekeeper.

Loads settings from environment variables with sensible defaults. Values
may reference other environment variables as ``${VAR}``.
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from lorekeeper.rag.errors import ConfigurationError
from lorekeeper.rag.search import RAGConfig

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def expand_env(value: Optional[str]) -> str:
    """Replace every ``${VAR}`` with its environment value (empty when unset)."""
    if not value:
        return ""
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""
    provider: str = "local"  # "openai", "azure", "local", "sentence-transformers", "mock"
    api_key: str = ""
    base_url: str = ""  # empty = provider default
    model: str = ""  # empty = provider default
    timeout: float = 30.0  # seconds
    dimension: int = 0  # 0 = derive from provider/model

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError(f"embedding timeout must be positive, got {self.timeout}")
        if self.dimension < 0:
            raise ConfigurationError(f"embedding dimension must be >= 0, got {self.dimension}")

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            provider=os.getenv("LOREKEEPER_EMBEDDING_PROVIDER", "local"),
            api_key=expand_env(os.getenv("LOREKEEPER_EMBEDDING_API_KEY", "")),
            base_url=expand_env(os.getenv("LOREKEEPER_EMBEDDING_BASE_URL", "")),
            model=os.getenv("LOREKEEPER_EMBEDDING_MODEL", ""),
            timeout=_env_float("LOREKEEPER_EMBEDDING_TIMEOUT", 30.0),
            dimension=_env_int("LOREKEEPER_EMBEDDING_DIMENSION", 0),
        )

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "EmbeddingConfig":
        """Build from a host-application mapping, e.g. a parsed YAML section."""
        return cls(
            provider=str(d.get("provider", "local")),
            api_key=expand_env(d.get("api_key")),
            base_url=expand_env(d.get("base_url")),
            model=str(d.get("model") or ""),
            timeout=float(d.get("timeout") or 30.0),
            dimension=int(d.get("dimension") or 0),
        )


@dataclass
class VectorStoreConfig:
    """Vector store configuration."""
    backend: str = "memory"

    @classmethod
    def from_env(cls) -> "VectorStoreConfig":
        return cls(backend=os.getenv("LOREKEEPER_VECTOR_STORE_BACKEND", "memory"))


@dataclass
class AppConfig:
    """Top-level configuration."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    rag: RAGConfig = field(default_factory=RAGConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            embedding=EmbeddingConfig.from_env(),
            vector_store=VectorStoreConfig.from_env(),
            rag=RAGConfig(
                relevance_threshold=_env_float("LOREKEEPER_RAG_THRESHOLD", 0.7),
                chapter_excerpt_chars=_env_int("LOREKEEPER_RAG_CHAPTER_EXCERPT_CHARS", 2000),
                scan_limit=_env_int("LOREKEEPER_RAG_SCAN_LIMIT", 1000),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
