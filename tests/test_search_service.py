"""Tests for hybrid search."""
import pytest
from unittest.mock import Mock

from lexivault.exceptions import SearchError
from lexivault.models.document import SearchOptions, SearchResult
from lexivault.services.search_service import SearchService, fuse_results, matches_query
from lexivault.services.vector_store import VectorStore


def result(document_id, page_number, score, title="Doc"):
    return SearchResult(
        document_id=document_id,
        document_title=title,
        category="law",
        year=2020,
        page_number=page_number,
        snippet="",
        score=score,
    )


def new_document(store, title, description=None):
    return store.create_document(
        title=title,
        category="law",
        year=2020,
        storage_ref="s.pdf",
        total_page_count=3,
        description=description,
    )


class TestFuseResults:
    """Tests for score fusion."""

    def test_fusion_arithmetic_and_order(self):
        """Test boosted semantic plus lexical scores and the resulting order."""
        fused = fuse_results(
            semantic=[result("doc1", 1, 2.0), result("doc2", 1, 1.0)],
            lexical=[result("doc1", 1, 1.0)],
        )
        assert [(r.document_id, r.page_number, r.score) for r in fused] == [
            ("doc1", 1, 4.0),
            ("doc2", 1, 1.5),
        ]

    def test_lexical_only_hit_keeps_score(self):
        fused = fuse_results(semantic=[], lexical=[result("doc3", 1, 1.0)])
        assert fused[0].score == 1.0

    def test_tie_break_by_document_then_page(self):
        fused = fuse_results(
            semantic=[result("b", 2, 1.0), result("b", 1, 1.0), result("a", 5, 1.0)],
            lexical=[],
        )
        assert [r.key for r in fused] == [("a", 5), ("b", 1), ("b", 2)]

    def test_limit(self):
        semantic = [result(f"doc{i:02d}", 1, 1.0 - i / 100) for i in range(15)]
        assert len(fuse_results(semantic, [], limit=10)) == 10


class TestMatchesQuery:
    """Tests for the semantic post-filter."""

    def test_case_insensitive_by_default(self):
        assert matches_query("The Licensing Authority", "licensing")
        assert not matches_query("The Licensing Authority", "licensing", case_sensitive=True)

    def test_whole_word(self):
        assert matches_query("permit holder", "permit", whole_word=True)
        assert not matches_query("permits holder", "permit", whole_word=True)

    def test_whole_word_escapes_query(self):
        assert matches_query("see art. 5(1) below", "5(1)", whole_word=True)


class TestSearchService:
    """Tests for SearchService."""

    @pytest.mark.asyncio
    async def test_empty_query_skips_retrieval(self, document_store, mock_recognition_client):
        vector = Mock(spec=VectorStore)
        service = SearchService(document_store, vector, mock_recognition_client)

        assert await service.search("   ") == []
        mock_recognition_client.embed.assert_not_awaited()
        vector.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_hybrid_search(self, document_store, vector_store, mock_recognition_client):
        """Test that both paths are fused and the semantic path is substring filtered."""
        water = new_document(document_store, "Water Permit Act", description="Permits for water use")
        mining = new_document(document_store, "Mining Act")
        vector_store.upsert_page(water.document_id, 2, "Every permit holder shall report.", [0.1] * 8)
        vector_store.upsert_page(mining.document_id, 1, "Extraction rights are granted.", [0.1] * 8)
        service = SearchService(document_store, vector_store, mock_recognition_client)

        results = await service.search("permit")

        keys = [r.key for r in results]
        assert (water.document_id, 2) in keys
        assert (water.document_id, 1) in keys
        assert all(r.document_id != mining.document_id for r in results)

        semantic_hit = next(r for r in results if r.key == (water.document_id, 2))
        assert semantic_hit.snippet == "Every permit holder shall report...."
        assert semantic_hit.document_title == "Water Permit Act"
        assert semantic_hit.score == pytest.approx(1.5, rel=1e-3)

        title_hit = next(r for r in results if r.key == (water.document_id, 1))
        assert title_hit.score == 1.0
        assert title_hit.snippet == "Permits for water use"

    @pytest.mark.asyncio
    async def test_same_page_scores_add(self, document_store, vector_store, mock_recognition_client):
        document = new_document(document_store, "Permit Regulation")
        vector_store.upsert_page(document.document_id, 1, "permit conditions", [0.1] * 8)
        service = SearchService(document_store, vector_store, mock_recognition_client)

        results = await service.search("permit")

        assert len(results) == 1
        assert results[0].score == pytest.approx(2.5, rel=1e-3)

    @pytest.mark.asyncio
    async def test_options_limit(self, document_store, mock_recognition_client):
        for i in range(5):
            new_document(document_store, f"Permit Rules {i}")
        vector = Mock(spec=VectorStore)
        vector.search.return_value = []
        service = SearchService(document_store, vector, mock_recognition_client)

        results = await service.search("permit", SearchOptions(limit=2))

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_semantic_failure_propagates(self, document_store, mock_recognition_client):
        """Test that a failing path raises instead of returning partial results."""
        new_document(document_store, "Permit Rules")
        vector = Mock(spec=VectorStore)
        vector.search.side_effect = RuntimeError("qdrant unavailable")
        service = SearchService(document_store, vector, mock_recognition_client)

        with pytest.raises(SearchError):
            await service.search("permit")

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, document_store, mock_recognition_client):
        mock_recognition_client.embed.side_effect = RuntimeError("embedding down")
        service = SearchService(document_store, Mock(spec=VectorStore), mock_recognition_client)

        with pytest.raises(SearchError):
            await service.search("permit")
