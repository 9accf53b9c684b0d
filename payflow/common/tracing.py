"""OpenTelemetry wiring for the payment service.

Spans cover read API requests and one span per OrderCreated delivery. Both
helpers do nothing when `OTEL_ENABLED` is false, which is how tests run.
"""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from payflow.common.config import settings


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider exporting to `OTEL_EXPORTER_OTLP_ENDPOINT` over OTLP/HTTP."""

    if not settings.otel_enabled:
        return
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Trace read API requests."""

    if not settings.otel_enabled:
        return
    FastAPIInstrumentor.instrument_app(app)
