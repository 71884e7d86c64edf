"""Prometheus metrics for the converter service.

HTTP metrics are labelled by route template, never by raw path, since the
static site mount matches arbitrary paths.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

REGISTRY = CollectorRegistry()

APP_INFO = Info(
    "audio_converter_app",
    "Converter build and deployment information",
    registry=REGISTRY,
)


# HTTP

HTTP_REQUESTS_TOTAL = Counter(
    "converter_http_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "converter_http_request_duration_seconds",
    "Time from request received to response sent, including the download",
    ["method", "route"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "converter_http_requests_in_progress",
    "HTTP requests currently being handled",
    ["method"],
    registry=REGISTRY,
)


# Conversion jobs

CONVERSIONS_TOTAL = Counter(
    "conversions_total",
    "Conversion jobs by final state",
    ["outcome"],
    registry=REGISTRY,
)

CONVERSIONS_IN_PROGRESS = Gauge(
    "conversions_in_progress",
    "Conversions holding an admission slot",
    registry=REGISTRY,
)

ADMISSION_REJECTIONS_TOTAL = Counter(
    "conversion_admission_rejections_total",
    "Conversions rejected because the concurrency limit was reached",
    registry=REGISTRY,
)

CONVERSION_DURATION_SECONDS = Histogram(
    "conversion_duration_seconds",
    "Wall-clock time spent in the transcoder",
    ["format"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    registry=REGISTRY,
)

CLEANUP_FAILURES_TOTAL = Counter(
    "conversion_cleanup_failures_total",
    "Temporary files that could not be deleted",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Render the registry in the Prometheus text format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})
