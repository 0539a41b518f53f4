"""Similarity search providers."""

from supportflow.providers.search.base import SearchHit, SimilaritySearch
from supportflow.providers.search.inmemory import (
    InMemorySimilaritySearch,
    cosine_similarity,
    embed_text,
)

__all__ = [
    "InMemorySimilaritySearch",
    "SearchHit",
    "SimilaritySearch",
    "cosine_similarity",
    "embed_text",
]
