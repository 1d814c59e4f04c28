"""Pytest configuration and fixtures."""
import os
import pytest
import tempfile
import shutil
from types import SimpleNamespace
from unittest.mock import Mock, AsyncMock

import fitz

from lexivault.models.outline import OutlineItem
from lexivault.services.asset_store import AssetStore
from lexivault.services.document_service import DocumentService
from lexivault.services.document_store import DocumentStore
from lexivault.services.index_generator import IndexGenerator
from lexivault.services.page_worker import PageWorker
from lexivault.services.pipeline_orchestrator import PipelineOrchestrator
from lexivault.services.progress_tracker import ProgressTracker
from lexivault.services.recognition_client import RecognitionClient
from lexivault.services.task_queue import TaskQueue
from lexivault.services.vector_store import VectorStore

EMBEDDING_DIM = 8


def make_pdf(page_count: int) -> bytes:
    """Build a PDF with one line of text per page."""
    pdf = fitz.open()
    for number in range(1, page_count + 1):
        page = pdf.new_page()
        page.insert_text((72, 72), f"Article {number}")
    data = pdf.tobytes()
    pdf.close()
    return data


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def document_store(temp_dir):
    return DocumentStore(db_path=os.path.join(temp_dir, "lexivault.db"))


@pytest.fixture
def asset_store(temp_dir):
    return AssetStore(root_dir=os.path.join(temp_dir, "assets"))


@pytest.fixture
def vector_store():
    """In-memory Qdrant vector store."""
    store = VectorStore(db_path=":memory:", vector_size=EMBEDDING_DIM)
    yield store
    store.close()


@pytest.fixture
def sample_outline():
    return [
        OutlineItem(label="CHAPTER I: GENERAL PROVISIONS", level=1, targetPage=1),
        OutlineItem(label="Article 1", level=2, targetPage=1),
        OutlineItem(label="Article 2", level=2, targetPage=2),
    ]


@pytest.fixture
def mock_recognition_client(sample_outline):
    """Mock recognition client returning per-call page text."""
    client = Mock(spec=RecognitionClient)
    client.extract_text = AsyncMock(return_value="## Article\n\nThe licensing authority shall decide.")
    client.embed = AsyncMock(return_value=[0.1] * EMBEDDING_DIM)
    client.generate_outline = AsyncMock(return_value=sample_outline)
    client.close = AsyncMock()
    return client


@pytest.fixture
def sample_pdf_content():
    """Three-page PDF content."""
    return make_pdf(3)


@pytest.fixture
def build_pipeline(document_store, asset_store, vector_store, mock_recognition_client):
    """
    Factory wiring the full processing pipeline around a real task queue.

    The queue is not started; async tests call ``await pipeline.task_queue.start()``.
    """

    def _build(count_failed_pages: bool = False, task_queue=None):
        queue = task_queue or TaskQueue(max_workers=4)
        tracker = ProgressTracker(document_store, count_failed_pages=count_failed_pages)
        index_generator = IndexGenerator(document_store, mock_recognition_client)
        worker = PageWorker(
            store=document_store,
            asset_store=asset_store,
            recognition_client=mock_recognition_client,
            vector_store=vector_store,
            tracker=tracker,
            task_queue=queue,
            index_generator=index_generator,
        )
        orchestrator = PipelineOrchestrator(
            store=document_store,
            asset_store=asset_store,
            task_queue=queue,
            page_worker=worker,
            embedding_dimension=EMBEDDING_DIM,
        )
        service = DocumentService(
            store=document_store,
            asset_store=asset_store,
            vector_store=vector_store,
            task_queue=queue,
            orchestrator=orchestrator,
            page_worker=worker,
        )
        return SimpleNamespace(
            store=document_store,
            asset_store=asset_store,
            vector_store=vector_store,
            client=mock_recognition_client,
            task_queue=queue,
            tracker=tracker,
            index_generator=index_generator,
            worker=worker,
            orchestrator=orchestrator,
            service=service,
        )

    return _build
