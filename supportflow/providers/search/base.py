"""Similarity search interface and result model."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class SearchHit(BaseModel):
    """One document chunk returned by a similarity search."""

    id: str = Field(..., description="Chunk or row identifier")
    document_id: str | None = Field(default=None, description="Owning document")
    content: str = ""
    similarity: float = Field(..., ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def resolved_document_id(self) -> str:
        return self.document_id or self.metadata.get("document_id") or self.id

    @property
    def title(self) -> str:
        return (
            self.metadata.get("title")
            or self.metadata.get("filename")
            or f"Document {self.resolved_document_id}"
        )

    @property
    def source(self) -> str | None:
        return self.metadata.get("source")


class SimilaritySearch(ABC):
    """Organization-scoped semantic search over knowledge documents.

    Backends may need warm-up; callers check ``initialized`` and call
    ``initialize()`` before the first search.
    """

    @property
    @abstractmethod
    def initialized(self) -> bool:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend for searching."""
        pass

    @abstractmethod
    async def search(
        self,
        organization_id: str,
        query: str,
        top_k: int = 5,
    ) -> list[SearchHit]:
        """Return up to top_k hits ordered by descending similarity."""
        pass

    @property
    def index_version(self) -> str | None:
        return None
