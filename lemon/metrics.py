from __future__ import annotations

import os

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, multiprocess

from .config import parse_bool

METRICS_ENABLED = parse_bool(os.environ.get("LEMON_METRICS_ENABLED", "true"))
METRICS_TOKEN = (os.environ.get("LEMON_METRICS_TOKEN") or "").strip()
PROMETHEUS_MULTIPROC_DIR = (os.environ.get("PROMETHEUS_MULTIPROC_DIR") or "").strip()

if METRICS_ENABLED:
    REQUEST_LATENCY = Histogram(
        "lemon_http_request_duration_seconds",
        "HTTP request latency",
        ["method", "endpoint"],
    )
    REQUEST_COUNT = Counter(
        "lemon_http_requests_total",
        "Total HTTP requests",
        ["method", "endpoint", "status"],
    )
    REQUEST_ERRORS = Counter(
        "lemon_http_request_errors_total",
        "HTTP error responses",
        ["method", "endpoint", "status"],
    )
    REQUEST_IN_FLIGHT = Gauge(
        "lemon_http_requests_in_flight",
        "In-flight HTTP requests",
    )
    UPLOAD_COUNT = Counter(
        "lemon_uploads_total",
        "Upload attempts by outcome",
        ["status"],
    )
    UPLOAD_BYTES = Counter(
        "lemon_upload_bytes_total",
        "Bytes accepted by the upload pipeline",
    )
    BLOB_ERRORS = Counter(
        "lemon_blob_errors_total",
        "Blob storage failures",
        ["operation"],
    )
    RATE_LIMITED = Counter(
        "lemon_rate_limited_total",
        "Requests rejected by a rate limit",
        ["scope"],
    )
else:
    REQUEST_LATENCY = None
    REQUEST_COUNT = None
    REQUEST_ERRORS = None
    REQUEST_IN_FLIGHT = None
    UPLOAD_COUNT = None
    UPLOAD_BYTES = None
    BLOB_ERRORS = None
    RATE_LIMITED = None


def metrics_registry() -> CollectorRegistry:
    """Registry to expose; gunicorn workers share one through the multiprocess dir."""
    if PROMETHEUS_MULTIPROC_DIR:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return registry
    return REGISTRY
