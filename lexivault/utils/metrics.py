"""Prometheus metrics for the processing pipeline and search."""
from prometheus_client import Counter, Histogram

PAGES_PROCESSED = Counter(
    "lexivault_pages_processed_total",
    "Pages that reached a terminal state",
    ["outcome"],
)

DOCUMENTS_FINALIZED = Counter(
    "lexivault_documents_finalized_total",
    "Documents whose completion barrier was crossed",
    ["status"],
)

DOCUMENT_RUNS = Counter(
    "lexivault_document_runs_total",
    "Orchestrator runs by outcome",
    ["outcome"],
)

INDEX_GENERATIONS = Counter(
    "lexivault_index_generations_total",
    "Outline generation attempts by outcome",
    ["outcome"],
)

SEARCH_LATENCY = Histogram(
    "lexivault_search_latency_seconds",
    "Hybrid search latency",
)
