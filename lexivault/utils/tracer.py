"""OpenTelemetry setup for the processing pipeline, search and recognition calls."""
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.openai import OpenAIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode

from lexivault.utils.logger import logger


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the globally configured provider."""
    return trace.get_tracer(name)


def mark_span_failed(span: trace.Span, error: Exception) -> None:
    """Attach an exception to a span and flag the span as failed."""
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


def _build_exporter(otlp_endpoint: Optional[str]) -> SpanExporter:
    if otlp_endpoint:
        logger.info(f"Exporting traces to OTLP endpoint: {otlp_endpoint}")
        return OTLPSpanExporter(endpoint=otlp_endpoint)
    logger.info("Exporting traces to console")
    return ConsoleSpanExporter()


def initialize_tracing(
    service_name: str = "lexivault",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    tracing_enabled: bool = True,
    sample_ratio: float = 1.0,
) -> Optional[TracerProvider]:
    """
    Configure the global tracer provider and instrument the OpenAI SDK.

    Recognition requests are sent through the OpenAI SDK, so instrumenting it
    puts every page transcription and outline request under the spans opened
    by the page worker and index generator.

    Args:
        service_name: Service name reported on every span
        service_version: Service version reported on every span
        otlp_endpoint: OTLP HTTP endpoint (e.g. http://localhost:4318/v1/traces);
                      spans go to the console when None
        tracing_enabled: When False nothing is configured
        sample_ratio: Fraction of root traces to keep (0.0 - 1.0)

    Returns:
        The configured TracerProvider, or None when tracing is off or setup failed
    """
    if not tracing_enabled:
        logger.info("Tracing is disabled")
        return None

    try:
        provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": service_version,
            }),
            sampler=ParentBased(TraceIdRatioBased(sample_ratio)),
        )
        provider.add_span_processor(BatchSpanProcessor(_build_exporter(otlp_endpoint)))
        trace.set_tracer_provider(provider)

        OpenAIInstrumentor().instrument()

        logger.info(
            "OpenTelemetry tracing initialized",
            extra={"service_name": service_name, "sample_ratio": sample_ratio},
        )
        return provider

    except Exception as e:
        logger.error(f"Failed to initialize tracing: {str(e)}", exc_info=True)
        return None


def shutdown_tracing(tracer_provider: Optional[TracerProvider]) -> None:
    """Flush pending spans and shut the provider down."""
    if tracer_provider is None:
        return
    try:
        tracer_provider.shutdown()
        logger.info("Tracing shutdown completed")
    except Exception as e:
        logger.warning(f"Error during tracing shutdown: {str(e)}")
