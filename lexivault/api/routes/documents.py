"""Document read and repair endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from lexivault.api.dependencies import get_document_service, to_http_exception
from lexivault.api.schemas import (
    ContentResponse,
    DocumentListResponse,
    DocumentResponse,
    FileUrlResponse,
    IndexEntryResponse,
    IndexResponse,
    PageContent,
    ProgressResponse,
    RetryResponse,
    ThumbnailResponse,
    TocNodeResponse,
    TocResponse,
)
from lexivault.models.document import DocumentStatus
from lexivault.services.document_service import DocumentService


router = APIRouter()


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    status: Optional[DocumentStatus] = Query(None, description="Filter by document status"),
    document_service: DocumentService = Depends(get_document_service),
):
    """List documents, newest first."""
    try:
        documents = document_service.list_documents(status)
    except Exception as e:
        raise to_http_exception(e) from e
    return DocumentListResponse(
        documents=[DocumentResponse.from_document(d) for d in documents],
        total=len(documents),
    )


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    try:
        document = document_service.get_document(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return DocumentResponse.from_document(document)


@router.get("/documents/{document_id}/progress", response_model=ProgressResponse)
async def get_progress(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    """Processing counters, per-status page counts and the stalled flag."""
    try:
        return ProgressResponse(**document_service.get_progress(document_id))
    except Exception as e:
        raise to_http_exception(e) from e


@router.get("/documents/{document_id}/content", response_model=ContentResponse)
async def get_content(
    document_id: str,
    page: Optional[int] = Query(None, ge=1, description="Return a single page"),
    document_service: DocumentService = Depends(get_document_service),
):
    """Extracted page text in page order, each with the URL of its page image."""
    try:
        pages = document_service.get_content(document_id, page)
    except Exception as e:
        raise to_http_exception(e) from e
    return ContentResponse(
        document_id=document_id,
        pages=[PageContent.from_page(p, document_service.get_page_asset_url(p)) for p in pages],
    )


@router.get("/documents/{document_id}/index", response_model=IndexResponse)
async def get_index(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    try:
        entries = document_service.get_index(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return IndexResponse(
        document_id=document_id,
        entries=[IndexEntryResponse.from_entry(entry) for entry in entries],
    )


@router.get("/documents/{document_id}/toc", response_model=TocResponse)
async def get_toc(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    """Nested table of contents built from the stored index."""
    try:
        nodes = document_service.get_toc(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return TocResponse(
        document_id=document_id,
        toc=[TocNodeResponse.from_node(node) for node in nodes],
    )


@router.get("/documents/{document_id}/thumbnail", response_model=ThumbnailResponse)
async def get_thumbnail(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    try:
        url = document_service.get_thumbnail_url(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return ThumbnailResponse(document_id=document_id, url=url)


@router.get("/documents/{document_id}/file", response_model=FileUrlResponse)
async def get_file(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    """URL of the uploaded source PDF."""
    try:
        url = document_service.get_file_url(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return FileUrlResponse(document_id=document_id, url=url)


@router.post("/documents/{document_id}/reprocess", response_model=DocumentResponse)
async def reprocess_document(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    """Discard all derived data of a document and process it again."""
    try:
        document = document_service.reprocess_document(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return DocumentResponse.from_document(document)


@router.post("/documents/{document_id}/retry-failed", response_model=RetryResponse)
async def retry_failed_pages(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
):
    """Re-dispatch every page that ended in error."""
    try:
        retried = document_service.retry_failed_pages(document_id)
    except Exception as e:
        raise to_http_exception(e) from e
    return RetryResponse(document_id=document_id, retried_pages=retried)
