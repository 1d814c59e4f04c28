"""Per-document progress counters and the completion barrier."""
from typing import Any, Dict, Optional

from lexivault.models.document import Document, DocumentStatus, ProgressSnapshot
from lexivault.services.document_store import DocumentStore
from lexivault.utils.logger import logger
from lexivault.utils.metrics import DOCUMENTS_FINALIZED


def compute_progress(processed_pages: int, total_page_count: int) -> int:
    """
    Percentage of processed pages, rounded half up, clamped to 0..100.

    Args:
        processed_pages: Pages that reached a terminal state
        total_page_count: Pages in the document

    Returns:
        Integer percentage
    """
    if total_page_count <= 0:
        return 0
    processed_pages = max(0, min(processed_pages, total_page_count))
    return (200 * processed_pages + total_page_count) // (2 * total_page_count)


class ProgressTracker:
    """
    Aggregates page outcomes into document progress.

    Every update is a read-modify-write inside one write-locked store
    transaction, so concurrent workers never lose an increment.
    """

    def __init__(self, store: DocumentStore, count_failed_pages: bool = False):
        """
        Initialize progress tracker.

        Args:
            store: Document store holding the counters
            count_failed_pages: When True, failed pages count towards completion
                and a document with failures finalizes as an error
        """
        self.store = store
        self.count_failed_pages = count_failed_pages

    def _terminal_pages(self, document: Document) -> int:
        if self.count_failed_pages:
            return document.processed_pages + document.failed_pages
        return document.processed_pages

    @staticmethod
    def _snapshot(document: Document) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed_pages=document.processed_pages,
            failed_pages=document.failed_pages,
            total_page_count=document.total_page_count,
            processing_progress=document.processing_progress,
        )

    def _increment(self, document_id: str, column: str) -> ProgressSnapshot:
        def mutate(document: Document) -> Dict[str, Any]:
            updated = getattr(document, column) + 1
            processed = document.processed_pages
            failed = document.failed_pages
            if column == "processed_pages":
                processed = updated
            else:
                failed = updated
            terminal = processed + failed if self.count_failed_pages else processed
            return {
                column: updated,
                "processing_progress": compute_progress(terminal, document.total_page_count),
            }

        document = self.store.transact_document(document_id, mutate)
        logger.debug(
            f"Progress for document {document_id}: {document.processing_progress}%",
            extra={
                "document_id": document_id,
                "processed_pages": document.processed_pages,
                "failed_pages": document.failed_pages,
                "total_pages": document.total_page_count,
                "processing_progress": document.processing_progress,
            },
        )
        return self._snapshot(document)

    def report_page_complete(self, document_id: str) -> ProgressSnapshot:
        """
        Record one successfully processed page.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        return self._increment(document_id, "processed_pages")

    def report_page_failed(self, document_id: str) -> ProgressSnapshot:
        """Record one page that ended in error."""
        return self._increment(document_id, "failed_pages")

    def is_complete(self, document_id: str) -> bool:
        document = self.store.get_document(document_id)
        if document is None:
            return False
        return self._terminal_pages(document) >= document.total_page_count

    def finalize_if_complete(self, document_id: str) -> Optional[DocumentStatus]:
        """
        Atomically cross the completion barrier.

        The first caller that observes a complete document sets its
        ``index_triggered`` latch and final status; every later caller
        sees the latch and gets None.

        Returns:
            The status the document was finalized with, or None if it is not
            complete or was already finalized
        """
        finalized: Dict[str, DocumentStatus] = {}

        def mutate(document: Document) -> Optional[Dict[str, Any]]:
            if document.index_triggered or document.status != DocumentStatus.PROCESSING:
                return None
            if self._terminal_pages(document) < document.total_page_count:
                return None

            if self.count_failed_pages and document.failed_pages > 0:
                finalized["status"] = DocumentStatus.ERROR
                return {
                    "index_triggered": True,
                    "status": DocumentStatus.ERROR,
                    "processing_error": (
                        f"{document.failed_pages} of {document.total_page_count} "
                        f"pages failed recognition"
                    ),
                }

            finalized["status"] = DocumentStatus.PUBLISHED
            return {
                "index_triggered": True,
                "status": DocumentStatus.PUBLISHED,
                "processing_progress": 100,
                "processing_error": None,
            }

        document = self.store.transact_document(document_id, mutate)
        status = finalized.get("status")
        if status is not None:
            DOCUMENTS_FINALIZED.labels(status=status.value).inc()
            logger.info(
                f"Document {document_id} finalized as {status.value}",
                extra={
                    "document_id": document_id,
                    "processed_pages": document.processed_pages,
                    "failed_pages": document.failed_pages,
                    "total_pages": document.total_page_count,
                },
            )
        return status
