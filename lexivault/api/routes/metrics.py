"""Metrics endpoint for monitoring."""
from fastapi import APIRouter
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

router = APIRouter()


def metrics_response() -> Response:
    """Render the default Prometheus registry (pipeline and search metrics)."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/metrics")
async def get_metrics():
    """
    Get Prometheus-compatible metrics.

    Returns:
        Page, document, index and search metrics in text format
    """
    return metrics_response()
