"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "hearth_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "hearth_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

INDEX_DURATION = Histogram(
    "hearth_index_duration_seconds",
    "Duration of indexing runs",
    labelnames=("trigger",),
    registry=REGISTRY,
)

INDEXED_DOCUMENTS = Counter(
    "hearth_indexed_documents_total",
    "Documents processed by the indexing orchestrator",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "hearth_index_chunks",
    "Number of chunks stored in the vector store",
    registry=REGISTRY,
)

PROVIDER_REQUESTS = Counter(
    "hearth_provider_requests_total",
    "Calls made to chat/embedding endpoints",
    labelnames=("provider", "operation", "outcome"),
    registry=REGISTRY,
)

TOOL_CALLS = Counter(
    "hearth_tool_calls_total",
    "Tool calls executed from model responses",
    labelnames=("tool", "outcome"),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "INDEX_DURATION",
    "INDEXED_DOCUMENTS",
    "INDEX_SIZE",
    "PROVIDER_REQUESTS",
    "TOOL_CALLS",
    "metrics_response",
]
