from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.flask import FlaskInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from .config import parse_bool

logger = logging.getLogger("lemon.tracing")

DEFAULT_EXCLUDED_URLS = "health,version,metrics"


def _sample_ratio() -> float:
    try:
        ratio = float(os.environ.get("LEMON_OTEL_SAMPLE_RATIO", "1.0"))
    except (TypeError, ValueError):
        ratio = 1.0
    return min(max(ratio, 0.0), 1.0)


def _build_exporter():
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    if endpoint:
        return OTLPSpanExporter(endpoint=endpoint, insecure=True)
    # No collector configured: print spans
    return ConsoleSpanExporter()


def configure_tracing(app) -> None:
    if not parse_bool(os.environ.get("LEMON_OTEL_ENABLED", "false")):
        return

    service_name = os.environ.get("LEMON_OTEL_SERVICE_NAME", "lemon")
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=ParentBased(TraceIdRatioBased(_sample_ratio())),
    )
    provider.add_span_processor(BatchSpanProcessor(_build_exporter()))
    trace.set_tracer_provider(provider)

    FlaskInstrumentor().instrument_app(
        app, excluded_urls=os.environ.get("LEMON_OTEL_EXCLUDED_URLS", DEFAULT_EXCLUDED_URLS)
    )
    # Blob uploads, downloads and deletes go through requests
    RequestsInstrumentor().instrument()
    logger.info("Tracing enabled for %s", service_name)
