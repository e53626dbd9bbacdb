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
    "crag_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "crag_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "crag_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("status",),
    registry=REGISTRY,
)

CHUNKS_STORED = Gauge(
    "crag_chunks_stored",
    "Number of chunks stored across all documents",
    registry=REGISTRY,
)

TOKENS_DEBITED = Counter(
    "crag_tokens_debited_total",
    "Tokens charged against account budgets",
    labelnames=("kind",),
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
    "INGEST_DURATION",
    "CHUNKS_STORED",
    "TOKENS_DEBITED",
    "metrics_response",
]
