"""Tests for the document processing pipeline."""
import asyncio
import threading

import pytest
from unittest.mock import Mock, patch

from lexivault.exceptions import EmptyExtractionError, ProcessingStateError, RecognitionError
from lexivault.models.document import DocumentStatus, PageStatus
from lexivault.utils.pdf_tools import PDF_CONTENT_TYPE

from conftest import EMBEDDING_DIM, make_pdf


def create_document(pipeline, pdf_bytes, total_page_count=None):
    storage_ref = pipeline.asset_store.store(pdf_bytes, PDF_CONTENT_TYPE)
    return pipeline.store.create_document(
        title="Environmental Licensing Act",
        category="law",
        year=2021,
        storage_ref=storage_ref,
        total_page_count=total_page_count or 3,
        description="Consolidated text",
    )


def fail_first_call(error):
    """Side effect that raises on the first extraction and succeeds afterwards."""
    calls = {"count": 0}

    async def extract(page_bytes, content_type):
        calls["count"] += 1
        if calls["count"] == 1:
            raise error
        return "## Article\n\nBody text."

    return extract


class TestOrchestrator:
    """Tests for PipelineOrchestrator."""

    @pytest.mark.asyncio
    async def test_creates_dense_pending_pages(self, build_pipeline):
        """Test that N pages yield pending units 1..N with zero embeddings."""
        queue = Mock()
        pipeline = build_pipeline(task_queue=queue)
        document = create_document(pipeline, make_pdf(4), total_page_count=4)

        await pipeline.orchestrator.process_document(document.document_id)

        pages = pipeline.store.list_page_units(document.document_id)
        assert [p.page_number for p in pages] == [1, 2, 3, 4]
        assert all(p.status == PageStatus.PENDING for p in pages)
        assert all(p.embedding == [0.0] * EMBEDDING_DIM for p in pages)
        assert all(pipeline.asset_store.get_url(p.asset_ref) for p in pages)

        assert queue.schedule.call_count == 4
        scheduled = {c.args[1] for c in queue.schedule.call_args_list}
        assert scheduled == {p.page_id for p in pages}

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PROCESSING
        assert stored.processed_pages == 0
        assert stored.processing_progress == 0

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, build_pipeline):
        """Test that invoking the orchestrator twice does not duplicate pages."""
        queue = Mock()
        pipeline = build_pipeline(task_queue=queue)
        document = create_document(pipeline, make_pdf(2), total_page_count=2)

        await pipeline.orchestrator.process_document(document.document_id)
        await pipeline.orchestrator.process_document(document.document_id)

        assert pipeline.store.count_page_units(document.document_id) == 2
        assert queue.schedule.call_count == 2

    @pytest.mark.asyncio
    async def test_corrects_page_count(self, build_pipeline):
        """Test that the true page count overrides the stored one."""
        pipeline = build_pipeline(task_queue=Mock())
        document = create_document(pipeline, make_pdf(3), total_page_count=7)

        await pipeline.orchestrator.process_document(document.document_id)

        assert pipeline.store.get_document(document.document_id).total_page_count == 3

    @pytest.mark.asyncio
    async def test_unreadable_source_sets_error(self, build_pipeline):
        """Test that an unparseable file fails the whole run."""
        pipeline = build_pipeline(task_queue=Mock())
        document = create_document(pipeline, b"this is not a pdf")

        await pipeline.orchestrator.process_document(document.document_id)

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.ERROR
        assert stored.processing_error
        assert pipeline.store.count_page_units(document.document_id) == 0

    @pytest.mark.asyncio
    async def test_missing_asset_sets_error(self, build_pipeline):
        """Test that a missing source asset fails the whole run."""
        pipeline = build_pipeline(task_queue=Mock())
        document = create_document(pipeline, make_pdf(1))
        pipeline.asset_store.delete(document.storage_ref)

        await pipeline.orchestrator.process_document(document.document_id)

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.ERROR
        assert "not found" in stored.processing_error

    @pytest.mark.asyncio
    async def test_unknown_document_does_not_raise(self, build_pipeline):
        """Test that a missing document is logged, not raised."""
        pipeline = build_pipeline(task_queue=Mock())
        await pipeline.orchestrator.process_document("missing-id")

    @pytest.mark.asyncio
    async def test_overlapping_runs_create_pages_once(self, build_pipeline):
        """Test that concurrent runs on one document split it exactly once."""
        queue = Mock()
        pipeline = build_pipeline(task_queue=queue)
        document = create_document(pipeline, make_pdf(3), total_page_count=3)

        await asyncio.gather(
            pipeline.orchestrator.process_document(document.document_id),
            pipeline.orchestrator.process_document(document.document_id),
        )

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PROCESSING
        assert stored.processing_error is None
        assert stored.run_active is False
        assert pipeline.store.count_page_units(document.document_id) == 3
        assert queue.schedule.call_count == 3

    @pytest.mark.asyncio
    async def test_split_runs_off_event_loop(self, build_pipeline):
        """Test that page splitting and storage happen in a worker thread."""
        pipeline = build_pipeline(task_queue=Mock())
        document = create_document(pipeline, make_pdf(2), total_page_count=2)
        loop_thread = threading.get_ident()
        threads = []
        create_page_unit = pipeline.store.create_page_unit

        def recording_create(*args, **kwargs):
            threads.append(threading.get_ident())
            return create_page_unit(*args, **kwargs)

        with patch.object(pipeline.store, "create_page_unit", side_effect=recording_create):
            await pipeline.orchestrator.process_document(document.document_id)

        assert len(threads) == 2
        assert loop_thread not in threads

    @pytest.mark.asyncio
    async def test_setup_failure_releases_run(self, build_pipeline):
        pipeline = build_pipeline(task_queue=Mock())
        document = create_document(pipeline, b"this is not a pdf")

        await pipeline.orchestrator.process_document(document.document_id)

        assert pipeline.store.get_document(document.document_id).run_active is False


class TestPipelineEndToEnd:
    """Tests for the full run through the task queue."""

    @pytest.mark.asyncio
    async def test_publishes_once_and_indexes(self, build_pipeline):
        """Test that all pages completing publishes the document and builds the index once."""
        pipeline = build_pipeline()
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(3), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PUBLISHED
        assert stored.processed_pages == 3
        assert stored.processing_progress == 100
        assert stored.index_triggered

        pages = pipeline.store.list_page_units(document.document_id)
        assert all(p.status == PageStatus.COMPLETED for p in pages)
        assert all(p.embedding == [0.1] * EMBEDDING_DIM for p in pages)
        assert pipeline.vector_store.count_document_points(document.document_id) == 3

        assert pipeline.client.extract_text.await_count == 3
        pipeline.client.generate_outline.assert_awaited_once()
        labels = [e.label for e in pipeline.store.get_index(document.document_id)]
        assert labels == ["CHAPTER I: GENERAL PROVISIONS", "Article 1", "Article 2"]

    @pytest.mark.asyncio
    async def test_page_failure_stalls_document(self, build_pipeline):
        """Test that a failed page leaves progress below 100 and never publishes."""
        pipeline = build_pipeline()
        pipeline.client.extract_text.side_effect = fail_first_call(RecognitionError("service down"))
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(3), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PROCESSING
        assert stored.processed_pages == 2
        assert stored.processing_progress == 67
        assert not stored.index_triggered
        pipeline.client.generate_outline.assert_not_awaited()

        counts = pipeline.store.page_status_counts(document.document_id)
        assert counts[PageStatus.ERROR.value] == 1
        assert counts[PageStatus.COMPLETED.value] == 2

        progress = pipeline.service.get_progress(document.document_id)
        assert progress["stalled"] is True

    @pytest.mark.asyncio
    async def test_empty_extraction_marks_page_error(self, build_pipeline):
        """Test that empty recognition output is a page failure."""
        pipeline = build_pipeline()
        pipeline.client.extract_text.side_effect = EmptyExtractionError("No text extracted from page")
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(1), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        page = pipeline.store.get_page_by_number(document.document_id, 1)
        assert page.status == PageStatus.ERROR
        assert page.text == ""
        assert pipeline.vector_store.count_document_points(document.document_id) == 0

    @pytest.mark.asyncio
    async def test_failed_pages_counted_when_enabled(self, build_pipeline):
        """Test that counting failures finalizes the document as an error."""
        pipeline = build_pipeline(count_failed_pages=True)
        pipeline.client.extract_text.side_effect = fail_first_call(RecognitionError("service down"))
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(3), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.ERROR
        assert stored.processing_error == "1 of 3 pages failed recognition"
        assert stored.processed_pages == 2
        assert stored.failed_pages == 1
        pipeline.client.generate_outline.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_failed_pages_completes_document(self, build_pipeline):
        """Test that retrying a stalled document's failed pages publishes it."""
        pipeline = build_pipeline()
        pipeline.client.extract_text.side_effect = fail_first_call(RecognitionError("service down"))
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(3), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
            assert pipeline.store.get_document(document.document_id).status == DocumentStatus.PROCESSING

            retried = pipeline.service.retry_failed_pages(document.document_id)
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        assert retried == 1
        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PUBLISHED
        assert stored.processed_pages == 3
        pipeline.client.generate_outline.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reprocess_rebuilds_pages(self, build_pipeline):
        """Test that reprocessing clears derived data and runs again."""
        pipeline = build_pipeline()
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(2), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
            old_ids = {p.page_id for p in pipeline.store.list_page_units(document.document_id)}

            pipeline.service.reprocess_document(document.document_id)
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        pages = pipeline.store.list_page_units(document.document_id)
        assert [p.page_number for p in pages] == [1, 2]
        assert not old_ids & {p.page_id for p in pages}

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PUBLISHED
        assert stored.processed_pages == 2
        assert pipeline.client.generate_outline.await_count == 2

    @pytest.mark.asyncio
    async def test_reprocess_scheduled_before_upload_run(self, build_pipeline):
        """Test that a reprocess requested before the upload run starts still publishes once."""
        pipeline = build_pipeline()
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(2), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            pipeline.service.reprocess_document(document.document_id)
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        stored = pipeline.store.get_document(document.document_id)
        assert stored.status == DocumentStatus.PUBLISHED
        assert stored.processed_pages == 2
        assert stored.run_active is False
        assert [p.page_number for p in pipeline.store.list_page_units(document.document_id)] == [1, 2]
        pipeline.client.generate_outline.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reprocess_rejected_while_run_active(self, build_pipeline):
        pipeline = build_pipeline(task_queue=Mock())
        document = create_document(pipeline, make_pdf(2), total_page_count=2)
        assert pipeline.store.claim_run(document.document_id)

        with pytest.raises(ProcessingStateError):
            pipeline.service.reprocess_document(document.document_id)

        pipeline.task_queue.schedule.assert_not_called()
        assert pipeline.store.get_document(document.document_id).run_active is True

    @pytest.mark.asyncio
    async def test_vector_failure_leaves_page_unfinished(self, build_pipeline):
        """Test that a failed vector write marks the page error without persisting its text."""
        pipeline = build_pipeline()
        pipeline.client.embed.return_value = [0.1] * 3
        await pipeline.task_queue.start()
        try:
            document = pipeline.service.create_document(
                make_pdf(1), "act.pdf", "Environmental Licensing Act", "law", 2021
            )
            await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        page = pipeline.store.get_page_by_number(document.document_id, 1)
        assert page.status == PageStatus.ERROR
        assert page.text == ""
        assert page.embedding == [0.0] * EMBEDDING_DIM
        assert pipeline.vector_store.count_document_points(document.document_id) == 0
        assert pipeline.store.get_document(document.document_id).processed_pages == 0

    @pytest.mark.asyncio
    async def test_page_write_failure_removes_vector(self, build_pipeline):
        pipeline = build_pipeline()
        await pipeline.task_queue.start()
        try:
            with patch.object(
                pipeline.store, "update_page_content", side_effect=RuntimeError("disk full")
            ):
                document = pipeline.service.create_document(
                    make_pdf(1), "act.pdf", "Environmental Licensing Act", "law", 2021
                )
                await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        page = pipeline.store.get_page_by_number(document.document_id, 1)
        assert page.status == PageStatus.ERROR
        assert pipeline.vector_store.count_document_points(document.document_id) == 0

    @pytest.mark.asyncio
    async def test_worker_writes_run_off_event_loop(self, build_pipeline):
        """Test that the worker's store and vector writes happen in worker threads."""
        pipeline = build_pipeline()
        loop_thread = threading.get_ident()
        threads = []
        upsert_page = pipeline.vector_store.upsert_page
        update_page_content = pipeline.store.update_page_content

        def recording_upsert(*args, **kwargs):
            threads.append(threading.get_ident())
            return upsert_page(*args, **kwargs)

        def recording_update(*args, **kwargs):
            threads.append(threading.get_ident())
            return update_page_content(*args, **kwargs)

        await pipeline.task_queue.start()
        try:
            with patch.object(pipeline.vector_store, "upsert_page", side_effect=recording_upsert), \
                 patch.object(pipeline.store, "update_page_content", side_effect=recording_update):
                document = pipeline.service.create_document(
                    make_pdf(2), "act.pdf", "Environmental Licensing Act", "law", 2021
                )
                await pipeline.task_queue.join()
        finally:
            await pipeline.task_queue.stop()

        assert pipeline.store.get_document(document.document_id).status == DocumentStatus.PUBLISHED
        assert len(threads) == 4
        assert loop_thread not in threads

    @pytest.mark.asyncio
    async def test_retry_rejected_after_setup_failure(self, build_pipeline):
        """Test that a document whose setup failed must be reprocessed, not retried."""
        queue = Mock()
        pipeline = build_pipeline(task_queue=queue)
        document = create_document(pipeline, make_pdf(2), total_page_count=2)
        await pipeline.orchestrator.process_document(document.document_id)
        page = pipeline.store.get_page_by_number(document.document_id, 1)
        pipeline.store.update_page_status(page.page_id, PageStatus.ERROR)
        pipeline.store.update_document(
            document.document_id,
            status=DocumentStatus.ERROR,
            processing_error="Source file source.pdf not found",
        )
        scheduled = queue.schedule.call_count

        with pytest.raises(ProcessingStateError):
            pipeline.service.retry_failed_pages(document.document_id)

        assert pipeline.store.get_page_unit(page.page_id).status == PageStatus.ERROR
        assert queue.schedule.call_count == scheduled
