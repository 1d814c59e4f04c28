"""Document lifecycle facade: upload, reads and data repair."""
from pathlib import Path
from typing import Any, Dict, List, Optional

from lexivault.exceptions import (
    DocumentCorruptedError,
    DocumentEmptyError,
    DocumentNotFoundError,
    FileSizeExceededError,
    FileTypeNotSupportedError,
    ProcessingStateError,
    ValidationError,
)
from lexivault.models.document import (
    Document,
    DocumentStatus,
    IndexEntry,
    PageStatus,
    PageUnit,
    TocNode,
)
from lexivault.services.asset_store import AssetStore
from lexivault.services.document_store import DocumentStore
from lexivault.services.page_worker import PageWorker
from lexivault.services.pipeline_orchestrator import PipelineOrchestrator
from lexivault.services.progress_tracker import compute_progress
from lexivault.services.task_queue import TaskQueue
from lexivault.services.vector_store import VectorStore
from lexivault.utils.logger import logger
from lexivault.utils.pdf_tools import PDF_CONTENT_TYPE, get_page_count
from lexivault.utils.toc_builder import build_toc_tree

SUPPORTED_EXTENSIONS = {".pdf"}


class DocumentService:
    """Entry points used by the HTTP layer for documents."""

    def __init__(
        self,
        store: DocumentStore,
        asset_store: AssetStore,
        vector_store: VectorStore,
        task_queue: TaskQueue,
        orchestrator: PipelineOrchestrator,
        page_worker: PageWorker,
        max_file_size_mb: int = 100,
        max_pages: int = 2000,
    ):
        self.store = store
        self.asset_store = asset_store
        self.vector_store = vector_store
        self.task_queue = task_queue
        self.orchestrator = orchestrator
        self.page_worker = page_worker
        self.max_file_size_mb = max_file_size_mb
        self.max_pages = max_pages

    def _require_document(self, document_id: str) -> Document:
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def _validate_upload(self, file_content: bytes, filename: str) -> int:
        """
        Validate an uploaded file and return its page count.

        Raises:
            FileTypeNotSupportedError: If the file is not a PDF
            FileSizeExceededError: If the file is larger than allowed
            ValidationError: If the PDF is unreadable, empty or too long
        """
        extension = Path(filename or "").suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise FileTypeNotSupportedError(
                f"File type {extension or '(none)'} not supported. Only PDF files are accepted."
            )

        max_size_bytes = self.max_file_size_mb * 1024 * 1024
        if len(file_content) > max_size_bytes:
            raise FileSizeExceededError(
                f"File size ({len(file_content) / (1024 * 1024):.2f} MB) exceeds maximum allowed size "
                f"({self.max_file_size_mb} MB)"
            )

        try:
            page_count = get_page_count(file_content)
        except (DocumentCorruptedError, DocumentEmptyError) as e:
            raise ValidationError(str(e)) from e

        if page_count > self.max_pages:
            raise ValidationError(
                f"Document has {page_count} pages, maximum allowed is {self.max_pages}"
            )
        return page_count

    def create_document(
        self,
        file_content: bytes,
        filename: str,
        title: str,
        category: str,
        year: int,
        description: Optional[str] = None,
    ) -> Document:
        """
        Store an uploaded PDF, create its document record and schedule processing.

        Args:
            file_content: Raw PDF bytes
            filename: Original filename
            title: Document title
            category: Document category
            year: Publication year
            description: Optional description shown in search results

        Returns:
            The created document, in the processing state
        """
        page_count = self._validate_upload(file_content, filename)
        storage_ref = self.asset_store.store(file_content, PDF_CONTENT_TYPE)

        document = self.store.create_document(
            title=title,
            category=category,
            year=year,
            storage_ref=storage_ref,
            total_page_count=page_count,
            description=description,
        )
        self.task_queue.schedule(self.orchestrator.process_document, document.document_id)

        logger.info(
            f"Document uploaded: {document.document_id}",
            extra={"document_id": document.document_id, "total_pages": page_count},
        )
        return document

    def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        return self.store.list_documents(status)

    def get_document(self, document_id: str) -> Document:
        return self._require_document(document_id)

    def get_content(self, document_id: str, page_number: Optional[int] = None) -> List[PageUnit]:
        """Page units of a document (or one page) in page order."""
        self._require_document(document_id)
        return self.store.list_page_units(document_id, page_number=page_number)

    def get_index(self, document_id: str) -> List[IndexEntry]:
        self._require_document(document_id)
        return self.store.get_index(document_id)

    def get_toc(self, document_id: str) -> List[TocNode]:
        return build_toc_tree(self.get_index(document_id))

    def get_thumbnail_url(self, document_id: str) -> Optional[str]:
        """URL of the first page's asset, or None if page 1 is not stored yet."""
        self._require_document(document_id)
        page = self.store.get_page_by_number(document_id, 1)
        if page is None:
            return None
        return self.get_page_asset_url(page)

    def get_file_url(self, document_id: str) -> Optional[str]:
        """URL of the uploaded source PDF, or None if the file is gone."""
        document = self._require_document(document_id)
        return self.asset_store.get_url(document.storage_ref)

    def get_page_asset_url(self, page: PageUnit) -> Optional[str]:
        """URL of a page's single-page asset, shown next to its text for verification."""
        if not page.asset_ref:
            return None
        return self.asset_store.get_url(page.asset_ref)

    def get_progress(self, document_id: str) -> Dict[str, Any]:
        """
        Processing diagnostics for a document.

        A document is reported as stalled when it is still processing, no page
        is pending or in flight, and fewer pages than expected completed. This
        is the state left behind by page failures when they are not counted.
        """
        document = self._require_document(document_id)
        page_counts = self.store.page_status_counts(document_id)
        in_flight = page_counts[PageStatus.PENDING.value] + page_counts[PageStatus.PROCESSING.value]
        page_units = sum(page_counts.values())

        stalled = (
            document.status == DocumentStatus.PROCESSING
            and page_units > 0
            and in_flight == 0
            and document.processed_pages < document.total_page_count
        )

        return {
            "document_id": document.document_id,
            "status": document.status.value,
            "processed_pages": document.processed_pages,
            "failed_pages": document.failed_pages,
            "total_page_count": document.total_page_count,
            "processing_progress": document.processing_progress,
            "processing_error": document.processing_error,
            "page_counts": page_counts,
            "stalled": stalled,
        }

    def _clear_document_pages(self, document_id: str) -> None:
        for page in self.store.list_page_units(document_id):
            self.asset_store.delete(page.asset_ref)
        self.store.delete_page_units(document_id)
        self.vector_store.delete_document(document_id)
        self.store.replace_index(document_id, [])

    def reprocess_document(self, document_id: str) -> Document:
        """
        Discard every derived artifact of a document and run it again.

        The run is claimed first, so no other run can create pages while the
        page units, page assets, vectors and index are removed. The
        orchestrator is then scheduled on the held claim.

        Raises:
            DocumentNotFoundError: If the document does not exist
            ProcessingStateError: If a run of the document is in progress
        """
        if not self.store.claim_run(document_id, allow_existing_pages=True):
            raise ProcessingStateError(f"Document {document_id} is already being processed")

        try:
            self._clear_document_pages(document_id)
            self.task_queue.schedule(self.orchestrator.run_claimed, document_id)
        except Exception:
            self.store.update_document(document_id, run_active=False)
            raise

        logger.info(f"Reprocessing document {document_id}", extra={"document_id": document_id})
        return self._require_document(document_id)

    def retry_failed_pages(self, document_id: str) -> int:
        """
        Reset failed pages to pending and dispatch a worker for each.

        Failed-page counters and a failure-driven error status are rolled
        back so the completion barrier can be crossed again. A document whose
        setup failed has no complete page set and must be reprocessed instead.

        Returns:
            Number of pages re-dispatched

        Raises:
            DocumentNotFoundError: If the document does not exist
            ProcessingStateError: If the document failed during setup
        """
        document = self._require_document(document_id)
        if document.status == DocumentStatus.ERROR and not document.index_triggered:
            raise ProcessingStateError(
                f"Document {document_id} failed during setup ({document.processing_error}); "
                "reprocess it instead"
            )

        page_ids = self.store.reset_pages(document_id, PageStatus.ERROR)
        if not page_ids:
            return 0

        retried = len(page_ids)

        def mutate(document: Document) -> Optional[Dict[str, Any]]:
            if document.failed_pages == 0:
                return None
            failed = max(0, document.failed_pages - retried)
            updates: Dict[str, Any] = {
                "failed_pages": failed,
                "processing_progress": compute_progress(
                    document.processed_pages + failed, document.total_page_count
                ),
            }
            if document.status == DocumentStatus.ERROR and document.index_triggered:
                updates.update(
                    status=DocumentStatus.PROCESSING,
                    processing_error=None,
                    index_triggered=False,
                )
            return updates

        self.store.transact_document(document_id, mutate)

        for page_id in page_ids:
            self.task_queue.schedule(self.page_worker.process_page, page_id)

        logger.info(
            f"Retrying {retried} failed pages of document {document_id}",
            extra={"document_id": document_id},
        )
        return retried
