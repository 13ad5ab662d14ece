"""
Exception taxonomy for the RAG subsystem.

Every error keeps the identifying key (collection, document id, project id)
both as an attribute and in its message.
"""

from __future__ import annotations

from typing import Any


class RAGError(Exception):
    """Base exception for the RAG subsystem."""

    pass


class ConfigurationError(RAGError):
    """Unknown provider/backend or missing configuration. Raised at construction."""

    pass


class NotFoundError(RAGError):
    """A collection or document does not exist."""

    pass


class CollectionNotFoundError(NotFoundError):
    def __init__(self, collection: str) -> None:
        super().__init__(f"collection {collection!r} not found")
        self.collection = collection


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str, collection: str | None = None) -> None:
        where = f" in collection {collection!r}" if collection else ""
        super().__init__(f"document {document_id!r} not found{where}")
        self.document_id = document_id
        self.collection = collection


class CollectionExistsError(RAGError):
    def __init__(self, collection: str) -> None:
        super().__init__(f"collection {collection!r} already exists")
        self.collection = collection


class InputValidationError(RAGError, ValueError):
    """Input rejected before any mutation took place."""

    pass


class DimensionMismatchError(InputValidationError):
    def __init__(
        self,
        collection: str,
        expected: int,
        actual: int,
        document_id: str | None = None,
    ) -> None:
        subject = f"document {document_id!r}" if document_id else "query embedding"
        super().__init__(
            f"embedding dimension mismatch for {subject} in collection {collection!r}: "
            f"expected {expected}, got {actual}"
        )
        self.collection = collection
        self.expected = expected
        self.actual = actual
        self.document_id = document_id


class UnknownContextTypeError(InputValidationError):
    def __init__(self, context_type: str, known: list[str] | None = None) -> None:
        hint = f" (known: {', '.join(known)})" if known else ""
        super().__init__(f"unknown context type: {context_type!r}{hint}")
        self.context_type = context_type


class InvalidFilterError(InputValidationError):
    def __init__(self, key: str, operator: str, reason: str = "unsupported operator") -> None:
        super().__init__(f"invalid filter on {key!r}: {reason} {operator!r}")
        self.key = key
        self.operator = operator


class EmbeddingProviderError(RAGError):
    """
    Transport or provider failure from an embedding backend.

    Carries the HTTP status code and raw response body when available.
    Never retried internally.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.body = body


class ProjectSweepError(RAGError):
    """
    One or more collections failed during a per-project sweep.

    ``partial`` holds the results for the collections that succeeded,
    ``failures`` maps each failed context type to its exception.
    """

    def __init__(
        self,
        project_id: str,
        operation: str,
        failures: dict[str, Exception],
        partial: dict[str, Any],
    ) -> None:
        detail = "; ".join(f"{ctx}: {exc}" for ctx, exc in sorted(failures.items()))
        super().__init__(
            f"{operation} for project {project_id!r} failed in {len(failures)} collection(s): {detail}"
        )
        self.project_id = project_id
        self.operation = operation
        self.failures = failures
        self.partial = partial
