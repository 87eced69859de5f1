"""OpenTelemetry setup plus the span helper used around dispatch and backfill."""

from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from notifyflow.common.config import settings


tracer = trace.get_tracer("notifyflow")


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider exporting over OTLP HTTP."""

    resource = Resource.create({"service.name": service_name, "service.namespace": "notifyflow"})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app)


@contextmanager
def engine_span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Open a span for one engine operation; `None` attributes are dropped."""

    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"notifyflow.{key}", value)
        yield span
