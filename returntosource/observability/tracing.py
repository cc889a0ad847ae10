"""
OpenTelemetry Tracing Setup
"""

from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

# Global tracer instance
tracer: Optional[trace.Tracer] = None


def init_tracing(
    service_name: str = "return-to-source",
    enable_console_export: bool = False,
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing

    Args:
        service_name: Name of the service for trace identification
        enable_console_export: Whether to export traces to console (dev mode)

    Returns:
        Configured Tracer instance
    """
    global tracer

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    tracer = trace.get_tracer(__name__)

    return tracer


def get_tracer() -> trace.Tracer:
    """
    Get the global tracer instance

    Returns:
        Tracer instance

    Raises:
        RuntimeError: If tracing has not been initialized
    """
    if tracer is None:
        raise RuntimeError("Tracing not initialized. Call init_tracing() first.")
    return tracer


def trace_requeue(message_id: str, queue: str) -> trace.Span:
    """
    Create a span for a single-message requeue

    Args:
        message_id: Id the operator asked for
        queue: Path of the error queue

    Returns:
        Span for the requeue; a non-recording span if tracing is not initialized
    """
    if tracer is None:
        return trace.INVALID_SPAN

    return tracer.start_span(
        "return_message_to_source_queue",
        attributes={
            "message.id": message_id,
            "queue.path": queue,
        },
    )
