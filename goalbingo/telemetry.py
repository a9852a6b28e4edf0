"""OpenTelemetry distributed tracing integration.

Spans wrap feed assembly, outbox drains and AI inference requests.

Key Features:
    - TracerProvider with service metadata (name, version, environment)
    - BatchSpanProcessor with an OTLP exporter when tracing is enabled
    - ConsoleSpanExporter when tracing is enabled without an OTLP endpoint
    - Correlation with the logging context (request_id, user_id, operation, board_id)

Usage:
    ```python
    from goalbingo.telemetry import get_tracer, add_span_attributes

    tracer = get_tracer(__name__)

    with tracer.start_as_current_span("feed.assemble") as span:
        add_span_attributes(span, {"scope": "public", "viewer_id": viewer_id})
        ...
    ```

Environment Variables:
    - OTEL_SERVICE_NAME: Service name for traces (default: "goalbingo")
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from goalbingo import __version__
from goalbingo.config import settings
from goalbingo.logging import get_request_context, logger

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def initialize_telemetry() -> None:
    """Initialize the global OpenTelemetry tracer provider.

    Idempotent: calling it again has no effect.

    Raises:
        ValueError: If the OTLP endpoint is invalid
    """
    global _tracer_provider, _initialized

    if _initialized:
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "goalbingo")
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment.value,
        }
    )
    _tracer_provider = TracerProvider(resource=resource)

    if settings.enable_tracing and settings.otlp_endpoint:
        try:
            exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info(
                "Initialized OTLP span exporter",
                endpoint=settings.otlp_endpoint,
                service_name=service_name,
            )
        except Exception as e:
            logger.error("Failed to initialize OTLP exporter", error=str(e))
            raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
    elif settings.enable_tracing:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.debug("Initialized console span exporter")

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True

    logger.debug(
        "Telemetry initialized",
        service_name=service_name,
        tracing_enabled=settings.enable_tracing,
    )


def get_tracer(name: str) -> Tracer:
    """Get a tracer for a module, initializing the provider on first use."""
    if not _initialized:
        initialize_telemetry()
    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Add several attributes to a span.

    None values are skipped; lists and dicts are stringified.
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            value = str(value)
        span.set_attribute(key, value)


def record_exception_in_span(span: Span, exception: Exception, set_status: bool = True) -> None:
    """Record an exception in a span and optionally set ERROR status."""
    span.record_exception(exception)
    if set_status:
        span.set_status(Status(StatusCode.ERROR, str(exception)))


def sync_logging_context_to_span(span: Span) -> None:
    """Copy the logging context fields that are set onto a span."""
    add_span_attributes(span, get_request_context())


@contextmanager
def traced(tracer: Tracer, span_name: str, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
    """Start a span, attach attributes and logging context, record failures.

    Example:
        >>> with traced(tracer, "outbox.drain", {"limit": 100}) as span:
        ...     drain()
    """
    with tracer.start_as_current_span(span_name) as span:
        sync_logging_context_to_span(span)
        if attributes:
            add_span_attributes(span, attributes)
        try:
            yield span
        except Exception as ex:
            record_exception_in_span(span, ex)
            raise


def shutdown_telemetry() -> None:
    """Flush pending spans and shut the tracer provider down."""
    global _tracer_provider, _initialized

    if _tracer_provider and _initialized:
        _tracer_provider.shutdown()
        _initialized = False
        logger.info("Telemetry shut down successfully")


__all__ = [
    "initialize_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "add_span_attributes",
    "record_exception_in_span",
    "sync_logging_context_to_span",
    "traced",
]
