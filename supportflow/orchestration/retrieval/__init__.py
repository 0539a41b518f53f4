"""Retrieval stage: playbook selection and document retrieval."""

from supportflow.orchestration.retrieval.documents import (
    TRUNCATION_MARKER,
    DocumentRetriever,
    EvidenceDocument,
    RetrievalResult,
    build_query,
    truncate_document,
)
from supportflow.orchestration.retrieval.playbooks import (
    PlaybookDecision,
    PlaybookSelector,
    pick_best,
)

__all__ = [
    "TRUNCATION_MARKER",
    "DocumentRetriever",
    "EvidenceDocument",
    "PlaybookDecision",
    "PlaybookSelector",
    "RetrievalResult",
    "build_query",
    "pick_best",
    "truncate_document",
]
