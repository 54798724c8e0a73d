import os
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor

TRACER_NAME = "ranking-engine"


@contextmanager
def store_span(
    operation: str,
    backend: str,
    **attributes: Any,
):
    """
    Create an OpenTelemetry span for item/profile store operations.

    Usage:
        with store_span("query_points", "qdrant", limit=10) as span:
            result = await qdrant_client.query_points(...)
            span.set_attribute("db.results_count", len(result.points))

    Args:
        operation: store operation name (e.g., "query_points", "zrange")
        backend: storage backend being queried ("qdrant", "redis")
        **attributes: Additional span attributes (e.g., limit, collection)

    Yields:
        The active span, allowing additional attributes to be set after the call
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        f"{backend}.{operation}",
        kind=trace.SpanKind.CLIENT,
    ) as span:
        span.set_attribute("db.system", backend)
        span.set_attribute("db.operation", operation)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"db.{backend}.{key}", value)
        try:
            yield span
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


@contextmanager
def stage_span(flow: str, stage: str):
    """Span around one stage of the ranking pipeline."""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(f"ranking.{flow}.{stage}") as span:
        span.set_attribute("ranking.flow", flow)
        span.set_attribute("ranking.stage", stage)
        try:
            yield span
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def setup_tracing(app, service_name: str = TRACER_NAME):
    """
    setup opentelemetry tracing with an otlp exporter.
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        processor = BatchSpanProcessor(exporter)
        provider.add_span_processor(processor)
    except Exception as e:
        # if the collector isn't reachable, just continue without tracing export
        print(f"Tracing export disabled (OTLP collector not available): {e}")

    trace.set_tracer_provider(provider)

    # auto-instrument fastapi
    FastAPIInstrumentor.instrument_app(app)

    # auto-instrument redis
    RedisInstrumentor().instrument()

    return trace.get_tracer(service_name)
