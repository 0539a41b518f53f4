"""Test doubles for similarity search."""

from supportflow.providers.search import SearchHit, SimilaritySearch


class StaticSearch(SimilaritySearch):
    """Returns fixed hits and records calls."""

    def __init__(self, hits: list[SearchHit] | None = None, error: Exception | None = None) -> None:
        self._hits = hits or []
        self._error = error
        self._initialized = False
        self.calls: list[tuple[str, str, int]] = []

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        self._initialized = True

    async def search(self, organization_id: str, query: str, top_k: int = 5) -> list[SearchHit]:
        self.calls.append((organization_id, query, top_k))
        if self._error:
            raise self._error
        return self._hits[:top_k]


def hit(document_id: str, similarity: float) -> SearchHit:
    return SearchHit(
        id=f"chunk-{document_id}",
        document_id=document_id,
        similarity=similarity,
        metadata={"title": document_id.title()},
    )
