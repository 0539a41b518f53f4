"""Tests for the in-memory similarity search."""

import pytest

from supportflow.domain import Document
from supportflow.providers.search import InMemorySimilaritySearch, SearchHit
from supportflow.providers.search.inmemory import cosine_similarity, embed_text


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch_raises(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 2.0])


class TestEmbedText:
    def test_case_insensitive(self) -> None:
        assert embed_text("Refund Policy") == embed_text("refund policy")

    def test_fixed_dimensions(self) -> None:
        assert len(embed_text("anything at all", dimensions=32)) == 32


class TestSearchHit:
    def test_metadata_fallbacks(self) -> None:
        hit = SearchHit(id="chunk-1", similarity=0.5, metadata={"document_id": "doc-1"})
        assert hit.resolved_document_id == "doc-1"
        assert hit.title == "Document doc-1"

        named = SearchHit(id="chunk-2", similarity=0.5, metadata={"filename": "faq.pdf"})
        assert named.title == "faq.pdf"


class TestInMemorySimilaritySearch:
    @pytest.fixture
    def search(self) -> InMemorySimilaritySearch:
        search = InMemorySimilaritySearch()
        search.add_document(
            Document(id="refunds", organization_id="org-1", content="refund policy for orders")
        )
        search.add_document(
            Document(id="shipping", organization_id="org-1", content="shipping times and carriers")
        )
        search.add_document(
            Document(id="other-org", organization_id="org-2", content="refund policy for orders")
        )
        return search

    @pytest.mark.asyncio
    async def test_search_before_initialize_raises(self, search) -> None:
        with pytest.raises(RuntimeError):
            await search.search("org-1", "refund")

    @pytest.mark.asyncio
    async def test_ranks_by_similarity_within_organization(self, search) -> None:
        await search.initialize()
        hits = await search.search("org-1", "refund policy", top_k=5)

        assert [h.id for h in hits] == ["refunds", "shipping"]
        assert hits[0].similarity > hits[1].similarity

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self, search) -> None:
        await search.initialize()
        assert len(await search.search("org-1", "refund", top_k=1)) == 1

    @pytest.mark.asyncio
    async def test_documents_added_after_initialize_are_searchable(self, search) -> None:
        await search.initialize()
        search.add_document(Document(id="late", organization_id="org-1", content="warranty claims"))
        hits = await search.search("org-1", "warranty claims")
        assert hits[0].id == "late"
