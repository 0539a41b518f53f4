"""Document retrieval, attachment and size capping."""

from pydantic import BaseModel, Field

from supportflow.domain import Conversation, Message, RagHit, RagPack
from supportflow.domain.message import customer_messages
from supportflow.observability.logging import get_logger
from supportflow.providers.search import SearchHit, SimilaritySearch
from supportflow.stores import OrganizationStore

logger = get_logger(__name__)

TRUNCATION_MARKER = "[truncated]"
SENTENCE_TERMINATORS = (".", "!", "?")
SENTENCE_LOOKBACK = 0.2
DEFAULT_SIMILARITY = 0.5


def truncate_document(content: str, max_chars: int = 8000) -> str:
    """Cap document content for downstream prompts.

    Content within the limit is returned unchanged. Otherwise the cut is
    placed after the last sentence terminator inside the final 20% of the
    window, or at the hard limit when there is none. Either way the
    result ends with the truncation marker.
    """
    if len(content) <= max_chars:
        return content

    window = content[:max_chars]
    lookback_start = int(max_chars * (1 - SENTENCE_LOOKBACK))
    boundary = max(window.rfind(t, lookback_start) for t in SENTENCE_TERMINATORS)
    if boundary >= 0:
        window = window[: boundary + 1]
    return f"{window}\n{TRUNCATION_MARKER}"


class EvidenceDocument(BaseModel):
    """A document as seen by the planner and the confidence check."""

    id: str
    title: str
    content: str
    similarity: float = Field(ge=0.0, le=1.0)
    source: str | None = None
    synthetic: bool = Field(default=False, description="Built from a tool result")


class RetrievalResult(BaseModel):
    query: str = ""
    hits: list[SearchHit] = Field(default_factory=list)
    index_version: str | None = None

    @property
    def document_ids(self) -> list[str]:
        return list(dict.fromkeys(h.resolved_document_id for h in self.hits))

    def to_rag_pack(self) -> RagPack:
        return RagPack(
            query=self.query,
            hits=tuple(
                RagHit(
                    document_id=h.resolved_document_id,
                    title=h.title,
                    similarity=h.similarity,
                    source=h.source,
                )
                for h in self.hits
            ),
            index_version=self.index_version,
        )


def build_query(messages: list[Message], window: int = 3) -> str:
    """Join the most recent customer messages into one search query."""
    recent = customer_messages(messages)[-window:]
    return " ".join(m.content.strip() for m in recent if m.content.strip())


class DocumentRetriever:
    """Finds and attaches knowledge documents relevant to the conversation.

    Retrieval is advisory: search failures are logged and yield no hits.
    """

    def __init__(
        self,
        search: SimilaritySearch,
        organization_store: OrganizationStore,
        *,
        top_k: int = 5,
        similarity_threshold: float = 0.4,
        query_window: int = 3,
        max_document_chars: int = 8000,
    ) -> None:
        self._search = search
        self._organization_store = organization_store
        self._top_k = top_k
        self._similarity_threshold = similarity_threshold
        self._query_window = query_window
        self._max_document_chars = max_document_chars

    async def retrieve(
        self,
        organization_id: str,
        messages: list[Message],
        *,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
    ) -> RetrievalResult:
        query = build_query(messages, self._query_window)
        if not query:
            return RetrievalResult()

        threshold = (
            self._similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        try:
            if not self._search.initialized:
                await self._search.initialize()
            hits = await self._search.search(organization_id, query, top_k or self._top_k)
        except Exception as e:
            logger.warning("document_search_failed", error=str(e), error_type=type(e).__name__)
            return RetrievalResult(query=query)

        kept = [h for h in hits if h.similarity > threshold]
        logger.debug(
            "documents_retrieved",
            query_length=len(query),
            hits=len(hits),
            kept=len(kept),
            threshold=threshold,
        )
        return RetrievalResult(query=query, hits=kept, index_version=self._search.index_version)

    def attach(
        self,
        conversation: Conversation,
        result: RetrievalResult,
    ) -> tuple[Conversation, list[str]]:
        """Attach newly surfaced documents and record the rag pack."""
        if not result.query:
            return conversation, []
        updated, added = conversation.attach_documents(result.document_ids)
        updated = updated.with_context(updated.context.with_rag(result.to_rag_pack()))
        if added:
            logger.info("documents_attached", document_ids=added)
        return updated, added

    async def load(
        self,
        conversation: Conversation,
        document_ids: list[str] | tuple[str, ...] | None = None,
        rag: RagPack | None = None,
    ) -> list[EvidenceDocument]:
        """Load attached documents with capped content and their similarity.

        Similarity comes from the rag pack; documents attached some other
        way (playbooks, earlier passes) default to 0.5.
        """
        ids = conversation.document_ids if document_ids is None else document_ids
        if not ids:
            return []
        rag = rag if rag is not None else conversation.context.rag
        documents = await self._organization_store.get_documents(conversation.organization_id, ids)
        evidence = []
        for document in documents:
            similarity = rag.similarity_for(document.id) if rag else None
            evidence.append(
                EvidenceDocument(
                    id=document.id,
                    title=document.display_title,
                    content=truncate_document(document.content, self._max_document_chars),
                    similarity=DEFAULT_SIMILARITY if similarity is None else similarity,
                    source=document.source,
                )
            )
        return evidence
