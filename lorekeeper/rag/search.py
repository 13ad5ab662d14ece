"""
RAG façade over the vector store and embedding provider.

Maps novel-project entities (worldview, characters, outline, chapters) onto
documents in fixed logical collections, and composes embedding + search into
grounding-context assembly and per-project maintenance.

Usage::

    service = RAGService(
        vector_store=MemoryVectorStore(),
        embedding_provider=HashEmbeddingProvider(dim=768),
    )
    service.initialize_collections()
    await service.add_character(character)
    prompt = await service.build_context_prompt(project_id, chapter_index=3, query="the duel")
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, fields
from types import MappingProxyType
from typing import Any, TypeVar

from lorekeeper.models import Chapter, Character, NovelProject, Outline, WorldView
from lorekeeper.rag.embedding_provider import EmbeddingProvider
from lorekeeper.rag.errors import (
    EmbeddingProviderError,
    InputValidationError,
    ProjectSweepError,
    UnknownContextTypeError,
)
from lorekeeper.rag.vector_store import Document, SearchOptions, SearchResult, VectorStore

LOG = logging.getLogger("rag.search")

T = TypeVar("T")

CONTEXT_TYPES = ("worldview", "character", "chapter", "outline", "context")


@dataclass(frozen=True)
class CollectionRegistry:
    """Immutable mapping of logical context type → physical collection name."""

    worldview: str = "novel_worldview"
    character: str = "novel_character"
    chapter: str = "novel_chapter"
    outline: str = "novel_outline"
    context: str = "novel_context"

    def __post_init__(self) -> None:
        names = [getattr(self, f.name) for f in fields(self)]
        if any(not n for n in names):
            raise InputValidationError("collection names must not be empty")
        if len(set(names)) != len(names):
            raise InputValidationError(f"collection names must be distinct, got {names}")

    def resolve(self, context_type: str) -> str:
        if context_type not in CONTEXT_TYPES:
            raise UnknownContextTypeError(context_type, list(CONTEXT_TYPES))
        return getattr(self, context_type)

    def as_mapping(self) -> Mapping[str, str]:
        return MappingProxyType({t: getattr(self, t) for t in CONTEXT_TYPES})


@dataclass
class RAGConfig:
    """Tunables for the RAG façade."""

    relevance_threshold: float = 0.7
    character_top_k: int = 5
    character_threshold: float = 0.6
    worldview_top_k: int = 3
    worldview_threshold: float = 0.7
    context_character_top_k: int = 3
    context_previous_chapters: int = 2
    chapter_excerpt_chars: int = 2000  # longer chapters are indexed as title + summary + excerpt
    scan_limit: int = 1000  # per-collection cap for project sweeps; no pagination
    timeout: float | None = None  # default deadline (seconds) for every async call

    def __post_init__(self) -> None:
        for name in ("relevance_threshold", "character_threshold", "worldview_threshold"):
            value = getattr(self, name)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [-1, 1], got {value}")
        if self.chapter_excerpt_chars < 1:
            raise ValueError(f"chapter_excerpt_chars must be >= 1, got {self.chapter_excerpt_chars}")
        if self.scan_limit < 1:
            raise ValueError(f"scan_limit must be >= 1, got {self.scan_limit}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")


def with_deadline(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Give an async method a ``timeout=`` keyword, defaulting to ``RAGConfig.timeout``."""

    @functools.wraps(method)
    async def wrapper(self: "RAGService", *args: Any, timeout: float | None = None, **kwargs: Any) -> T:
        limit = timeout if timeout is not None else self.config.timeout
        if limit is None:
            return await method(self, *args, **kwargs)
        return await asyncio.wait_for(method(self, *args, **kwargs), limit)

    return wrapper


def _joined(items: list[str]) -> str:
    return "; ".join(items)


def render_world_view(world_view: WorldView) -> str:
    return "\n".join(
        [
            f"Title: {world_view.title}",
            f"Synopsis: {world_view.synopsis}",
            f"Setting: {world_view.setting}",
            f"Key rules: {_joined(world_view.key_rules)}",
            f"Themes: {_joined(world_view.themes)}",
        ]
    )


def render_character(character: Character) -> str:
    lines = [
        f"Character: {character.name}",
        f"Role: {character.role}",
        f"Age: {character.age}",
        f"Appearance: {character.appearance}",
        f"Background: {character.background}",
        f"Motivation: {character.motivation}",
        f"Flaws: {_joined(character.flaws)}",
        f"Speech tone: {character.speech_tone}",
        f"Secrets: {_joined(character.secrets)}",
    ]
    if character.relationship_map:
        relations = [f"{other}: {kind}" for other, kind in sorted(character.relationship_map.items())]
        lines.append(f"Relationships: {_joined(relations)}")
    return "\n".join(lines)


def render_outline(outline: Outline) -> str:
    blocks = []
    for ch in sorted(outline.chapters, key=lambda c: c.index):
        block = [f"Chapter {ch.index}: {ch.title}", f"Summary: {ch.summary}", f"Goal: {ch.goal}"]
        if ch.twist_hint:
            block.append(f"Twist: {ch.twist_hint}")
        if ch.important_items:
            block.append(f"Items: {_joined(ch.important_items)}")
        blocks.append("\n".join(block))
    return "\n\n".join(blocks)


def render_chapter(chapter: Chapter, excerpt_chars: int) -> str:
    """Chapter text to embed; long chapters are cut to title + summary + excerpt."""
    content = chapter.content
    if len(content) > excerpt_chars:
        return f"Title: {chapter.title}\nSummary: {chapter.summary}\nExcerpt: {content[:excerpt_chars]}"
    return content


class RAGService:
    """
    Domain façade for retrieval-augmented generation.

    Owns no state of its own beyond the injected collection registry; all
    documents live in the vector store.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_provider: EmbeddingProvider,
        registry: CollectionRegistry | None = None,
        config: RAGConfig | None = None,
    ) -> None:
        self._vs = vector_store
        self._embed = embedding_provider
        self._registry = registry or CollectionRegistry()
        self.config = config or RAGConfig()

    @property
    def registry(self) -> CollectionRegistry:
        return self._registry

    @property
    def vector_store(self) -> VectorStore:
        return self._vs

    @property
    def embedding_provider(self) -> EmbeddingProvider:
        return self._embed

    def initialize_collections(self) -> None:
        """Create every logical collection; stops at the first failure."""
        dimension = self._embed.dimension()
        for context_type, collection in self._registry.as_mapping().items():
            try:
                self._vs.create_collection(collection, dimension)
            except Exception as exc:
                exc.add_note(f"while creating collection for context type {context_type!r}")
                raise
        LOG.info("Initialized %d RAG collections (dim=%d)", len(CONTEXT_TYPES), dimension)

    # ── indexing ─────────────────────────────────────────────────────────

    async def _index(self, context_type: str, doc_id: str, content: str, metadata: dict[str, Any]) -> None:
        collection = self._registry.resolve(context_type)
        try:
            embedding = await self._embed.embed(content)
            self._vs.add_document(
                Document(
                    id=doc_id,
                    content=content,
                    embedding=embedding,
                    metadata={**metadata, "type": context_type},
                    collection=collection,
                )
            )
        except Exception as exc:
            exc.add_note(f"while indexing {context_type} {doc_id!r}")
            raise
        LOG.debug("Indexed %s %s into %s", context_type, doc_id, collection)

    @with_deadline
    async def add_world_view(self, world_view: WorldView) -> None:
        await self._index(
            "worldview",
            world_view.id,
            render_world_view(world_view),
            {"project_id": world_view.project_id, "title": world_view.title},
        )

    @with_deadline
    async def add_character(self, character: Character) -> None:
        await self._index(
            "character",
            character.id,
            render_character(character),
            {"project_id": character.project_id, "name": character.name, "role": character.role},
        )

    @with_deadline
    async def add_chapter(self, chapter: Chapter) -> None:
        if not chapter.content.strip():
            raise InputValidationError(f"chapter {chapter.id!r} has no content to index")
        await self._index(
            "chapter",
            chapter.id,
            render_chapter(chapter, self.config.chapter_excerpt_chars),
            {
                "project_id": chapter.project_id,
                "index": chapter.index,
                "title": chapter.title,
                "word_count": chapter.word_count,
            },
        )

    @with_deadline
    async def add_outline(self, outline: Outline) -> None:
        if not outline.chapters:
            raise InputValidationError(f"outline {outline.id!r} has no chapters to index")
        await self._index(
            "outline",
            outline.id,
            render_outline(outline),
            {"project_id": outline.project_id, "chapter_count": len(outline.chapters)},
        )

    @with_deadline
    async def add_context_note(
        self,
        note_id: str,
        project_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Index free-form grounding text (timeline notes, props, style samples)."""
        await self._index("context", note_id, content, {**(metadata or {}), "project_id": project_id})

    @with_deadline
    async def update_project(self, project: NovelProject) -> None:
        """Re-index every entity of a project. Stops at the first failure."""
        if project.world_view is not None:
            await self.add_world_view(project.world_view)
        for character in project.characters:
            await self.add_character(character)
        if project.outline is not None and project.outline.chapters:
            await self.add_outline(project.outline)
        for chapter in project.chapters:
            await self.add_chapter(chapter)
        LOG.info(
            "Re-indexed project %s: %d character(s), %d chapter(s)",
            project.id,
            len(project.characters),
            len(project.chapters),
        )

    # ── retrieval ────────────────────────────────────────────────────────

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        try:
            vector = await self._embed.embed(query)
        except (EmbeddingProviderError, InputValidationError) as exc:
            LOG.warning("Embedding unavailable for search on %s, using lexical search: %s", options.collection, exc)
            return self._vs.search(query, options)
        return self._vs.similarity_search(vector, options)

    @with_deadline
    async def search_relevant_context(
        self,
        query: str,
        project_id: str,
        context_type: str,
        top_k: int = 5,
    ) -> list[SearchResult]:
        options = SearchOptions(
            collection=self._registry.resolve(context_type),
            top_k=top_k,
            threshold=self.config.relevance_threshold,
            filter={"project_id": project_id},
        )
        return await self._search(query, options)

    @with_deadline
    async def get_character_context(self, character_name: str, project_id: str) -> list[SearchResult]:
        options = SearchOptions(
            collection=self._registry.character,
            top_k=self.config.character_top_k,
            threshold=self.config.character_threshold,
            filter={"project_id": project_id},
        )
        return await self._search(f"character {character_name} personality background relationships", options)

    @with_deadline
    async def get_world_view_context(self, query: str, project_id: str) -> list[SearchResult]:
        options = SearchOptions(
            collection=self._registry.worldview,
            top_k=self.config.worldview_top_k,
            threshold=self.config.worldview_threshold,
            filter={"project_id": project_id},
        )
        return await self._search(query, options)

    @with_deadline
    async def get_previous_chapters(self, current_index: int, project_id: str, count: int) -> list[SearchResult]:
        """The ``count`` chapters closest before ``current_index``, in reading order."""
        if count <= 0:
            return []
        collection = self._registry.chapter
        options = SearchOptions(
            collection=collection,
            top_k=self.config.scan_limit,
            filter={"project_id": project_id, "index": {"$lt": current_index}},
        )
        results = self._vs.search("", options)
        self._check_scan_limit(results, collection, project_id)
        results.sort(key=lambda r: (r.document.metadata["index"], r.document.id))
        return results[-count:]

    @with_deadline
    async def build_context_prompt(self, project_id: str, chapter_index: int, query: str) -> str:
        """
        Assemble grounding text for a chapter-generation call.

        Sections appear in a fixed order: worldview, characters, previous
        chapters. Returns an empty string when nothing relevant is stored.
        """
        parts: list[str] = []

        world = await self.get_world_view_context(query, project_id)
        if world:
            parts.append("[World Setting]")
            parts.extend(r.document.content for r in world)

        characters = await self.search_relevant_context(
            query, project_id, "character", self.config.context_character_top_k
        )
        if characters:
            parts.append("\n[Relevant Characters]")
            parts.extend(r.document.content for r in characters)

        previous = await self.get_previous_chapters(chapter_index, project_id, self.config.context_previous_chapters)
        if previous:
            parts.append("\n[Previously]")
            parts.extend(f"Chapter {r.document.metadata['index']}: {r.document.content}" for r in previous)

        if not parts:
            return ""
        return "Reference context:\n" + "\n".join(parts) + "\n"

    # ── maintenance ──────────────────────────────────────────────────────

    def _check_scan_limit(self, results: list[SearchResult], collection: str, project_id: str) -> None:
        if len(results) >= self.config.scan_limit:
            LOG.warning(
                "Scan of %s for project %s reached the %d-document scan limit; results may be incomplete",
                collection,
                project_id,
                self.config.scan_limit,
            )

    def _project_ids(self, collection: str, project_id: str) -> list[str]:
        options = SearchOptions(
            collection=collection,
            top_k=self.config.scan_limit,
            filter={"project_id": project_id},
        )
        results = self._vs.search("", options)
        self._check_scan_limit(results, collection, project_id)
        return [r.document.id for r in results]

    @with_deadline
    async def delete_project(self, project_id: str) -> dict[str, int]:
        """
        Delete every document of a project from all collections.

        Best-effort per collection: a failing collection does not stop the
        sweep. Failures are raised afterwards as one ProjectSweepError whose
        ``partial`` holds the per-type counts that were deleted.
        """
        deleted: dict[str, int] = {}
        failures: dict[str, Exception] = {}
        for context_type, collection in self._registry.as_mapping().items():
            try:
                ids = self._project_ids(collection, project_id)
                if ids:
                    self._vs.batch_delete(ids, collection=collection)
                deleted[context_type] = len(ids)
            except Exception as exc:
                LOG.error("Failed to delete project %s from %s: %s", project_id, collection, exc)
                failures[context_type] = exc

        if failures:
            raise ProjectSweepError(project_id, "delete_project", failures, deleted)
        LOG.info("Deleted project %s: %d document(s)", project_id, sum(deleted.values()))
        return deleted

    @with_deadline
    async def get_stats(self, project_id: str) -> dict[str, int]:
        """
        Per-context-type document counts for a project.

        Counts come from a bounded scan (``scan_limit`` per collection), so
        they saturate at that limit. A failed scan is reported through
        ProjectSweepError rather than counted as zero.
        """
        stats: dict[str, int] = {}
        failures: dict[str, Exception] = {}
        for context_type, collection in self._registry.as_mapping().items():
            try:
                stats[context_type] = len(self._project_ids(collection, project_id))
            except Exception as exc:
                failures[context_type] = exc

        if failures:
            raise ProjectSweepError(project_id, "get_stats", failures, stats)
        return stats

    # ── lifecycle ────────────────────────────────────────────────────────

    async def ping(self) -> None:
        await self._embed.ping()
        self._vs.ping()

    async def close(self) -> None:
        await self._embed.close()
        self._vs.close()
