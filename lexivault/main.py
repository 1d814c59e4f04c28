"""FastAPI application entry point."""
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic_settings import BaseSettings, SettingsConfigDict

from lexivault import __version__
from lexivault.api.routes import documents, metrics, search, upload
from lexivault.services.asset_store import AssetStore
from lexivault.services.document_service import DocumentService
from lexivault.services.document_store import DocumentStore
from lexivault.services.embedding_service import EmbeddingService
from lexivault.services.index_generator import IndexGenerator
from lexivault.services.page_worker import PageWorker
from lexivault.services.pipeline_orchestrator import PipelineOrchestrator
from lexivault.services.progress_tracker import ProgressTracker
from lexivault.services.recognition_client import DEFAULT_API_URL, RecognitionClient
from lexivault.services.search_service import SearchService
from lexivault.services.task_queue import TaskQueue
from lexivault.services.vector_store import VectorStore
from lexivault.utils.logger import logger
from lexivault.utils.tracer import initialize_tracing, shutdown_tracing


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        # Look for .env next to the package and in the working directory
        env_file=(os.path.join(os.path.dirname(__file__), "..", ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Recognition service (OpenAI-compatible endpoint)
    recognition_api_key: str = ""
    recognition_api_url: str = DEFAULT_API_URL
    extraction_model: str = "gemini-2.5-flash"
    outline_model: str = "gemini-2.5-flash"
    recognition_timeout_seconds: float = 120.0
    render_dpi: int = 200  # Resolution used to rasterise pages for recognition

    # Embeddings
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = 384  # Must match embedding_model
    embedding_batch_size: int = 32
    cpu_cores: int = 0  # Number of CPU cores to use (0 = use all available)

    # Storage
    sqlite_db_path: str = "./data/lexivault.db"
    qdrant_db_path: str = "./qdrant_db"
    asset_dir: str = "./data/assets"

    # Pipeline
    max_workers: int = 4  # Concurrent page workers
    outline_max_chars: int = 500_000
    report_failed_pages: bool = False  # Count failed pages towards completion

    # Search
    semantic_top_k: int = 10
    search_result_limit: int = 10
    semantic_boost: float = 1.5

    # Document upload limits
    max_file_size_mb: int = 100
    max_pages: int = 2000

    # Observability
    log_level: str = "INFO"
    tracing_enabled: bool = True
    trace_sample_ratio: float = 1.0
    otlp_endpoint: str = ""  # OTLP endpoint URL (empty = use console exporter)

    api_host: str = "0.0.0.0"
    api_port: int = 8000


# Global services (initialized in lifespan)
settings: Settings = None
task_queue: TaskQueue = None
document_store: DocumentStore = None
vector_store: VectorStore = None
recognition_client: RecognitionClient = None
document_service: DocumentService = None
search_service: SearchService = None
tracer_provider = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global settings, task_queue, document_store, vector_store, recognition_client
    global document_service, search_service, tracer_provider

    # Startup
    logger.info("Starting LexiVault")
    settings = Settings()

    # Initialize tracing before services
    tracer_provider = initialize_tracing(
        service_name="lexivault",
        service_version=__version__,
        otlp_endpoint=settings.otlp_endpoint if settings.otlp_endpoint else None,
        tracing_enabled=settings.tracing_enabled,
        sample_ratio=settings.trace_sample_ratio,
    )

    document_store = DocumentStore(db_path=settings.sqlite_db_path)
    # Runs do not survive a restart
    released = document_store.release_stale_runs()
    if released:
        logger.warning(f"Released {released} processing runs left over from a previous process")
    asset_store = AssetStore(root_dir=settings.asset_dir)
    vector_store = VectorStore(
        db_path=settings.qdrant_db_path,
        vector_size=settings.embedding_dimension,
    )

    # Model loaded lazily on first use
    embedding_service = EmbeddingService(
        model_name=settings.embedding_model,
        cpu_cores=settings.cpu_cores,
        batch_size=settings.embedding_batch_size,
        expected_dimension=settings.embedding_dimension,
    )
    recognition_client = RecognitionClient(
        embedding_service=embedding_service,
        api_key=settings.recognition_api_key,
        api_url=settings.recognition_api_url,
        extraction_model=settings.extraction_model,
        outline_model=settings.outline_model,
        timeout_seconds=settings.recognition_timeout_seconds,
        render_dpi=settings.render_dpi,
    )

    task_queue = TaskQueue(max_workers=settings.max_workers)
    await task_queue.start()

    tracker = ProgressTracker(document_store, count_failed_pages=settings.report_failed_pages)
    index_generator = IndexGenerator(
        document_store,
        recognition_client,
        max_chars=settings.outline_max_chars,
    )
    page_worker = PageWorker(
        store=document_store,
        asset_store=asset_store,
        recognition_client=recognition_client,
        vector_store=vector_store,
        tracker=tracker,
        task_queue=task_queue,
        index_generator=index_generator,
    )
    orchestrator = PipelineOrchestrator(
        store=document_store,
        asset_store=asset_store,
        task_queue=task_queue,
        page_worker=page_worker,
        embedding_dimension=settings.embedding_dimension,
    )
    document_service = DocumentService(
        store=document_store,
        asset_store=asset_store,
        vector_store=vector_store,
        task_queue=task_queue,
        orchestrator=orchestrator,
        page_worker=page_worker,
        max_file_size_mb=settings.max_file_size_mb,
        max_pages=settings.max_pages,
    )
    search_service = SearchService(
        store=document_store,
        vector_store=vector_store,
        recognition_client=recognition_client,
        semantic_top_k=settings.semantic_top_k,
        semantic_boost=settings.semantic_boost,
    )

    logger.info(
        f"All services initialized (workers: {settings.max_workers}, "
        f"report_failed_pages: {settings.report_failed_pages})"
    )

    yield

    # Shutdown
    logger.info("Shutting down LexiVault")
    if task_queue:
        await task_queue.stop()
    if recognition_client:
        await recognition_client.close()
    if vector_store:
        vector_store.close()
    if tracer_provider:
        shutdown_tracing(tracer_provider)


# Create FastAPI app
app = FastAPI(
    title="LexiVault",
    description="Scanned document recognition, indexing and hybrid search",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify allowed origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "LexiVault",
        "task_queue_running": bool(task_queue and task_queue.running),
    }


# Prometheus metrics endpoint
@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint."""
    return metrics.metrics_response()


# Include routers
app.include_router(upload.router, prefix="/api", tags=["documents"])
app.include_router(documents.router, prefix="/api", tags=["documents"])
app.include_router(search.router, prefix="/api", tags=["search"])
app.include_router(metrics.router, prefix="/api", tags=["metrics"])

# Services are accessed via dependency injection in route modules

if __name__ == "__main__":
    import uvicorn

    run_settings = settings or Settings()
    uvicorn.run(app, host=run_settings.api_host, port=run_settings.api_port)
