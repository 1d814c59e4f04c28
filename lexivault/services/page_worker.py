"""Per-page recognition worker."""
import asyncio
import time
from typing import Optional

from lexivault.exceptions import AssetNotFoundError, PageNotFoundError
from lexivault.models.document import DocumentStatus, PageStatus, PageUnit
from lexivault.services.asset_store import AssetStore
from lexivault.services.document_store import DocumentStore
from lexivault.services.index_generator import IndexGenerator
from lexivault.services.progress_tracker import ProgressTracker
from lexivault.services.recognition_client import RecognitionClient
from lexivault.services.task_queue import TaskQueue
from lexivault.services.vector_store import VectorStore
from lexivault.utils.logger import logger
from lexivault.utils.metrics import PAGES_PROCESSED
from lexivault.utils.pdf_tools import PDF_CONTENT_TYPE
from lexivault.utils.tracer import get_tracer, mark_span_failed

tracer = get_tracer(__name__)


class PageWorker:
    """Processes exactly one page unit per invocation."""

    def __init__(
        self,
        store: DocumentStore,
        asset_store: AssetStore,
        recognition_client: RecognitionClient,
        vector_store: VectorStore,
        tracker: ProgressTracker,
        task_queue: TaskQueue,
        index_generator: IndexGenerator,
    ):
        self.store = store
        self.asset_store = asset_store
        self.recognition_client = recognition_client
        self.vector_store = vector_store
        self.tracker = tracker
        self.task_queue = task_queue
        self.index_generator = index_generator

    async def _recognize(self, page: PageUnit) -> None:
        if not page.asset_ref:
            raise AssetNotFoundError(f"Page {page.page_id} has no stored asset")
        url = self.asset_store.get_url(page.asset_ref)
        if url is None:
            raise AssetNotFoundError(f"Asset {page.asset_ref} for page {page.page_id} not found")

        await asyncio.to_thread(self.store.update_page_status, page.page_id, PageStatus.PROCESSING)

        page_bytes = await self.asset_store.fetch(url)
        text = await self.recognition_client.extract_text(page_bytes, PDF_CONTENT_TYPE)
        embedding = await self.recognition_client.embed(text)

        # The completed write comes last: completed is terminal
        await asyncio.to_thread(
            self.vector_store.upsert_page, page.document_id, page.page_number, text, embedding
        )
        try:
            await asyncio.to_thread(
                self.store.update_page_content, page.page_id, text, embedding, PageStatus.COMPLETED
            )
        except Exception:
            await asyncio.to_thread(self.vector_store.delete_page, page.document_id, page.page_number)
            raise

    async def _finalize(self, document_id: str) -> None:
        status = await asyncio.to_thread(self.tracker.finalize_if_complete, document_id)
        if status == DocumentStatus.PUBLISHED:
            self.task_queue.schedule(self.index_generator.generate_index, document_id)

    async def process_page(self, page_id: str) -> Optional[PageStatus]:
        """
        Recognise, embed and persist one page, then report it to the tracker.

        A failure marks the page ``error``. The failure is only counted
        towards document completion when the tracker counts failed pages;
        otherwise the document stays below 100% until the page is retried.

        Args:
            page_id: Page unit to process

        Returns:
            The terminal page status, or None if the page unit does not exist
        """
        start_time = time.time()
        page = await asyncio.to_thread(self.store.get_page_unit, page_id)
        if page is None:
            logger.error(f"Page unit {page_id} not found", extra={"page_id": page_id})
            PAGES_PROCESSED.labels(outcome="error").inc()
            return None

        log_extra = {
            "document_id": page.document_id,
            "page_id": page_id,
            "page_number": page.page_number,
        }

        with tracer.start_as_current_span("page_worker.process_page") as span:
            span.set_attribute("lexivault.document_id", page.document_id)
            span.set_attribute("lexivault.page_number", page.page_number)
            try:
                await self._recognize(page)
            except Exception as e:
                mark_span_failed(span, e)
                logger.error(
                    f"Page {page.page_number} of document {page.document_id} failed: {str(e)}",
                    extra={**log_extra, "page_status": PageStatus.ERROR.value},
                    exc_info=True,
                )
                PAGES_PROCESSED.labels(outcome="error").inc()
                await self._mark_failed(page)
                return PageStatus.ERROR

        PAGES_PROCESSED.labels(outcome="completed").inc()
        logger.info(
            f"Page {page.page_number} of document {page.document_id} completed",
            extra={
                **log_extra,
                "page_status": PageStatus.COMPLETED.value,
                "response_time_ms": (time.time() - start_time) * 1000,
            },
        )

        await asyncio.to_thread(self.tracker.report_page_complete, page.document_id)
        await self._finalize(page.document_id)
        return PageStatus.COMPLETED

    async def _mark_failed(self, page: PageUnit) -> None:
        try:
            await asyncio.to_thread(self.store.update_page_status, page.page_id, PageStatus.ERROR)
        except PageNotFoundError:
            logger.warning(f"Page unit {page.page_id} disappeared before it could be marked failed")
            return

        if self.tracker.count_failed_pages:
            await asyncio.to_thread(self.tracker.report_page_failed, page.document_id)
            await self._finalize(page.document_id)
