"""Pydantic schemas for API requests and responses."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from lexivault.models.document import (
    Document,
    IndexEntry,
    PageUnit,
    SearchResult,
    TocNode,
)


class DocumentResponse(BaseModel):
    """Response schema for a document record."""

    document_id: str = Field(..., description="Unique identifier of the document")
    title: str
    description: Optional[str] = None
    category: str
    year: int
    status: str = Field(..., description="processing, published, error or archived")
    total_page_count: int = Field(..., description="Number of pages in the document")
    processed_pages: int = Field(..., description="Pages processed successfully")
    failed_pages: int = Field(0, description="Pages counted as failed")
    processing_progress: int = Field(..., ge=0, le=100, description="Processing progress in percent")
    processing_error: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, document: Document) -> "DocumentResponse":
        return cls(
            document_id=document.document_id,
            title=document.title,
            description=document.description,
            category=document.category,
            year=document.year,
            status=document.status.value,
            total_page_count=document.total_page_count,
            processed_pages=document.processed_pages,
            failed_pages=document.failed_pages,
            processing_progress=document.processing_progress,
            processing_error=document.processing_error,
            created_at=document.created_at,
        )


class DocumentListResponse(BaseModel):
    """Response schema for document listings."""

    documents: List[DocumentResponse]
    total: int


class ProgressResponse(BaseModel):
    """Processing diagnostics of a document."""

    document_id: str
    status: str
    processed_pages: int
    failed_pages: int
    total_page_count: int
    processing_progress: int
    processing_error: Optional[str] = None
    page_counts: Dict[str, int] = Field(..., description="Page units per page status")
    stalled: bool = Field(..., description="True if no page is in flight but the document is incomplete")


class PageContent(BaseModel):
    """Extracted text of one page next to its page image."""

    page_number: int
    status: str
    text: str
    asset_url: Optional[str] = Field(None, description="URL of the single-page PDF the text was extracted from")

    @classmethod
    def from_page(cls, page: PageUnit, asset_url: Optional[str] = None) -> "PageContent":
        return cls(
            page_number=page.page_number,
            status=page.status.value,
            text=page.text,
            asset_url=asset_url,
        )


class ContentResponse(BaseModel):
    document_id: str
    pages: List[PageContent]


class IndexEntryResponse(BaseModel):
    """One flat outline entry."""

    label: str
    level: int = Field(..., ge=1)
    target_page: int = Field(..., ge=1)

    @classmethod
    def from_entry(cls, entry: IndexEntry) -> "IndexEntryResponse":
        return cls(label=entry.label, level=entry.level, target_page=entry.target_page)


class IndexResponse(BaseModel):
    document_id: str
    entries: List[IndexEntryResponse]


class TocNodeResponse(BaseModel):
    """Nested table of contents node."""

    label: str
    level: int
    target_page: int
    children: List["TocNodeResponse"] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: TocNode) -> "TocNodeResponse":
        return cls(
            label=node.label,
            level=node.level,
            target_page=node.target_page,
            children=[cls.from_node(child) for child in node.children],
        )


class TocResponse(BaseModel):
    document_id: str
    toc: List[TocNodeResponse]


class ThumbnailResponse(BaseModel):
    document_id: str
    url: Optional[str] = Field(None, description="URL of the first page, if available")


class FileUrlResponse(BaseModel):
    document_id: str
    url: Optional[str] = Field(None, description="URL of the uploaded source PDF, if still stored")


class RetryResponse(BaseModel):
    document_id: str
    retried_pages: int


class SearchResultResponse(BaseModel):
    """A ranked search hit."""

    document_id: str
    document_title: str
    category: str
    year: int
    page_number: int
    snippet: str
    score: float

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResultResponse":
        return cls(
            document_id=result.document_id,
            document_title=result.document_title,
            category=result.category,
            year=result.year,
            page_number=result.page_number,
            snippet=result.snippet,
            score=result.score,
        )


class SearchResponse(BaseModel):
    """Response schema for hybrid search."""

    query: str
    results: List[SearchResultResponse]
    response_time_ms: Optional[float] = Field(None, description="Response time in milliseconds")
