"""Hybrid search: semantic page retrieval fused with title matching."""
import asyncio
import re
import time
from typing import Dict, List, Optional, Tuple

from lexivault.exceptions import SearchError
from lexivault.models.document import SearchOptions, SearchResult
from lexivault.services.document_store import DocumentStore
from lexivault.services.recognition_client import RecognitionClient
from lexivault.services.vector_store import VectorStore
from lexivault.utils.logger import logger
from lexivault.utils.metrics import SEARCH_LATENCY
from lexivault.utils.text_cleaner import make_snippet
from lexivault.utils.tracer import get_tracer, mark_span_failed

tracer = get_tracer(__name__)

LEXICAL_LIMIT = 10
LEXICAL_SCORE = 1.0


def matches_query(text: str, query: str, case_sensitive: bool = False, whole_word: bool = False) -> bool:
    """
    Check that the query occurs in a page's text.

    Args:
        text: Page text
        query: Search query, matched literally
        case_sensitive: Match case exactly
        whole_word: Require word boundaries on both sides of the match

    Returns:
        True if the text contains the query under the given options
    """
    flags = 0 if case_sensitive else re.IGNORECASE
    if whole_word:
        return re.search(rf"\b{re.escape(query)}\b", text, flags) is not None
    if case_sensitive:
        return query in text
    return query.lower() in text.lower()


def fuse_results(
    semantic: List[SearchResult],
    lexical: List[SearchResult],
    semantic_boost: float = 1.5,
    limit: int = 10,
) -> List[SearchResult]:
    """
    Merge both result lists into one ranking keyed by (document_id, page_number).

    Semantic scores are multiplied by ``semantic_boost``; a lexical hit on an
    existing key adds its score, otherwise it is inserted as is. Ties are
    broken by document id then page number.
    """
    fused: Dict[Tuple[str, int], SearchResult] = {}

    for result in semantic:
        fused[result.key] = SearchResult(
            document_id=result.document_id,
            document_title=result.document_title,
            category=result.category,
            year=result.year,
            page_number=result.page_number,
            snippet=result.snippet,
            score=result.score * semantic_boost,
        )

    for result in lexical:
        existing = fused.get(result.key)
        if existing is not None:
            existing.score += result.score
        else:
            fused[result.key] = result

    ranked = sorted(
        fused.values(),
        key=lambda r: (-r.score, r.document_id, r.page_number),
    )
    return ranked[:limit]


class SearchService:
    """Runs semantic and lexical retrieval concurrently and fuses the results."""

    def __init__(
        self,
        store: DocumentStore,
        vector_store: VectorStore,
        recognition_client: RecognitionClient,
        semantic_top_k: int = 10,
        semantic_boost: float = 1.5,
    ):
        """
        Initialize search service.

        Args:
            store: Document store used for title search and document metadata
            vector_store: Vector store holding page embeddings
            recognition_client: Client used to embed the query
            semantic_top_k: Nearest neighbours requested from the vector store
            semantic_boost: Multiplier applied to semantic scores before fusion
        """
        self.store = store
        self.vector_store = vector_store
        self.recognition_client = recognition_client
        self.semantic_top_k = semantic_top_k
        self.semantic_boost = semantic_boost

    async def _semantic_search(self, query: str, options: SearchOptions) -> List[SearchResult]:
        query_embedding = await self.recognition_client.embed(query)
        hits = await asyncio.to_thread(
            self.vector_store.search, query_embedding, self.semantic_top_k
        )

        hits = [
            hit for hit in hits
            if matches_query(hit["text"], query, options.case_sensitive, options.whole_word)
        ]
        if not hits:
            return []

        documents = await asyncio.to_thread(
            self.store.get_documents, sorted({hit["document_id"] for hit in hits})
        )

        results = []
        for hit in hits:
            document = documents.get(hit["document_id"])
            if document is None:
                continue
            results.append(
                SearchResult(
                    document_id=document.document_id,
                    document_title=document.title,
                    category=document.category,
                    year=document.year,
                    page_number=hit["page_number"],
                    snippet=make_snippet(hit["text"]),
                    score=hit["similarity_score"],
                )
            )
        return results

    async def _lexical_search(self, query: str) -> List[SearchResult]:
        documents = await asyncio.to_thread(self.store.search_titles, query, LEXICAL_LIMIT)
        return [
            SearchResult(
                document_id=document.document_id,
                document_title=document.title,
                category=document.category,
                year=document.year,
                page_number=1,
                snippet=document.description or "",
                score=LEXICAL_SCORE,
            )
            for document in documents
        ]

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Hybrid search across all documents.

        Args:
            query: Free-text query
            options: Matching options and result limit

        Returns:
            Results ordered by fused score, at most ``options.limit``

        Raises:
            SearchError: If either retrieval path fails
        """
        options = options or SearchOptions()
        if not query or not query.strip():
            return []

        start_time = time.time()
        with tracer.start_as_current_span("search_service.search") as span:
            span.set_attribute("lexivault.query_length", len(query))
            try:
                semantic, lexical = await asyncio.gather(
                    self._semantic_search(query, options),
                    self._lexical_search(query),
                )
            except Exception as e:
                mark_span_failed(span, e)
                logger.error(f"Search failed: {str(e)}", extra={"query": query}, exc_info=True)
                raise SearchError(f"Search failed: {str(e)}") from e

        results = fuse_results(semantic, lexical, self.semantic_boost, options.limit)

        elapsed = time.time() - start_time
        SEARCH_LATENCY.observe(elapsed)
        logger.info(
            f"Search returned {len(results)} results",
            extra={
                "query": query,
                "result_count": len(results),
                "semantic_hits": len(semantic),
                "lexical_hits": len(lexical),
                "response_time_ms": elapsed * 1000,
            },
        )
        return results
