"""Hybrid search endpoint."""
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from lexivault.api.dependencies import get_search_service, to_http_exception
from lexivault.api.schemas import SearchResponse, SearchResultResponse
from lexivault.models.document import SearchOptions
from lexivault.services.search_service import SearchService


router = APIRouter()


def get_default_limit() -> int:
    from lexivault.main import settings
    return settings.search_result_limit if settings else 10


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query("", description="Search query"),
    case_sensitive: bool = Query(False),
    whole_word: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1, le=100),
    search_service: SearchService = Depends(get_search_service),
    default_limit: int = Depends(get_default_limit),
):
    """
    Search all documents by page content and title.

    Args:
        q: Search query (an empty query returns no results)
        case_sensitive: Match the query's case exactly
        whole_word: Only match the query as a whole word
        limit: Maximum number of results
        search_service: Search service instance

    Returns:
        SearchResponse with results ordered by score
    """
    start_time = time.time()
    options = SearchOptions(
        case_sensitive=case_sensitive,
        whole_word=whole_word,
        limit=limit or default_limit,
    )
    try:
        results = await search_service.search(q, options)
    except Exception as e:
        raise to_http_exception(e) from e

    return SearchResponse(
        query=q,
        results=[SearchResultResponse.from_result(r) for r in results],
        response_time_ms=(time.time() - start_time) * 1000,
    )
