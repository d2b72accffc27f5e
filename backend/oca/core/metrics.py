"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "oca_requests_total",
    "API requests by endpoint and status",
    labelnames=("endpoint", "status"),
    registry=REGISTRY,
)

RETRIEVAL_LATENCY = Histogram(
    "oca_retrieval_latency_seconds",
    "Latency of embed + similarity search",
    labelnames=("mode",),
    registry=REGISTRY,
)

RETRIEVAL_DEGRADED = Counter(
    "oca_retrieval_degraded_total",
    "Retrievals that fell back to an empty context",
    labelnames=("mode",),
    registry=REGISTRY,
)

GENERATION_OUTCOMES = Counter(
    "oca_generation_outcomes_total",
    "Generation streams by terminal state",
    labelnames=("state",),
    registry=REGISTRY,
)

ARCHIVE_WRITES = Counter(
    "oca_archive_writes_total",
    "Interaction archive writes",
    labelnames=("status",),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "oca_ingest_duration_seconds",
    "Per-document ingest duration",
    labelnames=("status",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "RETRIEVAL_LATENCY",
    "RETRIEVAL_DEGRADED",
    "GENERATION_OUTCOMES",
    "ARCHIVE_WRITES",
    "INGEST_DURATION",
    "metrics_response",
]
