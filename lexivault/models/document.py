"""Document data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class DocumentStatus(str, Enum):
    """Lifecycle status of a document."""

    PROCESSING = "processing"
    PUBLISHED = "published"
    ERROR = "error"
    ARCHIVED = "archived"


class PageStatus(str, Enum):
    """Processing status of a single page unit."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class Document:
    """Represents an uploaded multi-page document."""

    document_id: str
    title: str
    category: str
    year: int
    storage_ref: str
    total_page_count: int
    status: DocumentStatus = DocumentStatus.PROCESSING
    description: Optional[str] = None
    processed_pages: int = 0
    failed_pages: int = 0
    processing_progress: int = 0
    processing_error: Optional[str] = None
    index_triggered: bool = False
    run_active: bool = False
    created_at: Optional[str] = None


@dataclass
class PageUnit:
    """Represents one page of a document and its processing record."""

    page_id: str
    document_id: str
    page_number: int
    status: PageStatus = PageStatus.PENDING
    text: str = ""
    embedding: List[float] = field(default_factory=list)
    asset_ref: Optional[str] = None


@dataclass
class IndexEntry:
    """One line of a document's structural outline, in reading order."""

    document_id: str
    position: int
    label: str
    level: int
    target_page: int


@dataclass
class TocNode:
    """Node of the nested table of contents built from index entries."""

    label: str
    level: int
    target_page: int
    children: List["TocNode"] = field(default_factory=list)


@dataclass
class SearchOptions:
    """Options for a hybrid search query."""

    case_sensitive: bool = False
    whole_word: bool = False
    limit: int = 10


@dataclass
class SearchResult:
    """A ranked search hit, unique per (document_id, page_number)."""

    document_id: str
    document_title: str
    category: str
    year: int
    page_number: int
    snippet: str
    score: float

    @property
    def key(self) -> tuple:
        return (self.document_id, self.page_number)


@dataclass
class ProgressSnapshot:
    """Progress counters of a document after a tracker update."""

    processed_pages: int
    failed_pages: int
    total_page_count: int
    processing_progress: int
