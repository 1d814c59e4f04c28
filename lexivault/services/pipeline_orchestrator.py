"""Document run orchestration: split into pages and fan out page workers."""
import asyncio
import time

from lexivault.exceptions import AssetNotFoundError, DocumentNotFoundError
from lexivault.models.document import DocumentStatus
from lexivault.services.asset_store import AssetStore
from lexivault.services.document_store import DocumentStore
from lexivault.services.page_worker import PageWorker
from lexivault.services.task_queue import TaskQueue
from lexivault.utils.logger import logger
from lexivault.utils.metrics import DOCUMENT_RUNS
from lexivault.utils.pdf_tools import PDF_CONTENT_TYPE, extract_page, get_page_count, open_pdf


class PipelineOrchestrator:
    """Sets up one processing run per document and dispatches its pages."""

    def __init__(
        self,
        store: DocumentStore,
        asset_store: AssetStore,
        task_queue: TaskQueue,
        page_worker: PageWorker,
        embedding_dimension: int = 384,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Document store
            asset_store: Object store holding the source PDF and page assets
            task_queue: Queue used to dispatch page workers
            page_worker: Worker whose process_page is scheduled per page
            embedding_dimension: Length of the zero placeholder embedding
        """
        self.store = store
        self.asset_store = asset_store
        self.task_queue = task_queue
        self.page_worker = page_worker
        self.embedding_dimension = embedding_dimension

    async def process_document(self, document_id: str) -> None:
        """
        Split a document into page units and dispatch one worker per page.

        The run is claimed atomically before anything else happens. A document
        that already has page units, or whose run is in progress, is left
        untouched. Setup failures are recorded on the document and never raised.

        Args:
            document_id: Document to process
        """
        try:
            claimed = await asyncio.to_thread(self.store.claim_run, document_id)
        except DocumentNotFoundError:
            logger.error(f"Document {document_id} not found", extra={"document_id": document_id})
            DOCUMENT_RUNS.labels(outcome="error").inc()
            return

        if not claimed:
            logger.info(
                f"Document {document_id} already has page units or a run in progress, skipping run",
                extra={"document_id": document_id},
            )
            DOCUMENT_RUNS.labels(outcome="skipped").inc()
            return

        await self.run_claimed(document_id)

    async def run_claimed(self, document_id: str) -> None:
        """
        Perform a run whose claim the caller already holds.

        The claim is released when the split ends, whether it succeeded or not.
        """
        start_time = time.time()
        try:
            page_count = await self._run(document_id)
        except Exception as e:
            logger.error(
                f"Processing setup failed for document {document_id}: {str(e)}",
                extra={"document_id": document_id},
                exc_info=True,
            )
            DOCUMENT_RUNS.labels(outcome="error").inc()
            await asyncio.to_thread(self._record_failure, document_id, e)
            return
        finally:
            await asyncio.to_thread(self._release, document_id)

        DOCUMENT_RUNS.labels(outcome="dispatched").inc()
        logger.info(
            f"Dispatched {page_count} pages for document {document_id}",
            extra={
                "document_id": document_id,
                "total_pages": page_count,
                "response_time_ms": (time.time() - start_time) * 1000,
            },
        )

    async def _run(self, document_id: str) -> int:
        document = await asyncio.to_thread(self.store.get_document, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        url = self.asset_store.get_url(document.storage_ref)
        if url is None:
            raise AssetNotFoundError(f"Source file {document.storage_ref} not found")
        data = await self.asset_store.fetch(url)

        page_count = await asyncio.to_thread(get_page_count, data)
        if page_count != document.total_page_count:
            logger.warning(
                f"Correcting page count of document {document_id}: "
                f"{document.total_page_count} -> {page_count}",
                extra={"document_id": document_id, "total_pages": page_count},
            )
            await asyncio.to_thread(
                self.store.update_document, document_id, total_page_count=page_count
            )

        loop = asyncio.get_running_loop()
        await asyncio.to_thread(self._split_pages, document_id, data, page_count, loop)
        return page_count

    def _split_pages(
        self,
        document_id: str,
        data: bytes,
        page_count: int,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        # Runs in a worker thread; each page is dispatched on the event loop as soon as it exists
        with open_pdf(data) as pdf:
            for page_number in range(1, page_count + 1):
                asset_ref = self.asset_store.store(extract_page(pdf, page_number), PDF_CONTENT_TYPE)
                page = self.store.create_page_unit(
                    document_id, page_number, asset_ref, self.embedding_dimension
                )
                loop.call_soon_threadsafe(
                    self.task_queue.schedule, self.page_worker.process_page, page.page_id
                )

    def _release(self, document_id: str) -> None:
        try:
            self.store.update_document(document_id, run_active=False)
        except DocumentNotFoundError:
            logger.warning(f"Document {document_id} disappeared before its run was released")

    def _record_failure(self, document_id: str, error: Exception) -> None:
        if isinstance(error, DocumentNotFoundError):
            return
        message = str(error) or error.__class__.__name__
        try:
            self.store.update_document(
                document_id,
                status=DocumentStatus.ERROR,
                processing_error=message,
            )
        except Exception as e:
            logger.error(
                f"Failed to record setup error for document {document_id}: {str(e)}",
                extra={"document_id": document_id},
            )
