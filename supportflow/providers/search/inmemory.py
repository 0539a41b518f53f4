"""In-memory similarity search using hashed bag-of-words vectors."""

import hashlib
import math
import re

from supportflow.domain import Document
from supportflow.providers.search.base import SearchHit, SimilaritySearch

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


def cosine_similarity(vec_a: list[float], vec_b: list[float]) -> float:
    """Compute cosine similarity between two vectors.

    Raises:
        ValueError: If vectors have different lengths or are empty
    """
    if len(vec_a) != len(vec_b):
        raise ValueError(f"Vectors must have same length: got {len(vec_a)} and {len(vec_b)}")
    if len(vec_a) == 0:
        raise ValueError("Vectors cannot be empty")

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b, strict=True))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def embed_text(text: str, dimensions: int = 256) -> list[float]:
    """Hash lower-cased tokens into a fixed-size count vector."""
    vector = [0.0] * dimensions
    for token in TOKEN_PATTERN.findall(text.lower()):
        digest = hashlib.md5(token.encode("utf-8"), usedforsecurity=False).digest()
        vector[int.from_bytes(digest[:4], "big") % dimensions] += 1.0
    return vector


class InMemorySimilaritySearch(SimilaritySearch):
    """SimilaritySearch over documents held in memory.

    Vectors are computed when ``initialize()`` runs, so documents added
    afterwards are embedded immediately.
    """

    def __init__(self, dimensions: int = 256) -> None:
        self._dimensions = dimensions
        self._documents: dict[str, Document] = {}
        self._vectors: dict[str, list[float]] = {}
        self._initialized = False
        self._version = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def index_version(self) -> str | None:
        return f"inmemory-{self._version}"

    def add_document(self, document: Document) -> None:
        self._documents[document.id] = document
        self._version += 1
        if self._initialized:
            self._vectors[document.id] = embed_text(document.content, self._dimensions)

    async def initialize(self) -> None:
        self._vectors = {
            doc_id: embed_text(doc.content, self._dimensions)
            for doc_id, doc in self._documents.items()
        }
        self._initialized = True

    async def search(
        self,
        organization_id: str,
        query: str,
        top_k: int = 5,
    ) -> list[SearchHit]:
        if not self._initialized:
            raise RuntimeError("Similarity search used before initialize()")

        query_vector = embed_text(query, self._dimensions)
        hits = []
        for doc_id, document in self._documents.items():
            if document.organization_id != organization_id:
                continue
            score = max(0.0, cosine_similarity(query_vector, self._vectors[doc_id]))
            hits.append(
                SearchHit(
                    id=doc_id,
                    document_id=doc_id,
                    content=document.content,
                    similarity=min(score, 1.0),
                    metadata={
                        "title": document.title,
                        "filename": document.filename,
                        "source": document.source,
                    },
                )
            )
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:top_k]
