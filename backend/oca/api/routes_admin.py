"""Health and metrics routes."""

from __future__ import annotations

from fastapi import APIRouter

from oca.core.metrics import metrics_response
from oca.models.dto import HealthResponse

API_VERSION = "1.0.0"

router = APIRouter()


@router.get("/", response_model=HealthResponse, summary="Service banner")
async def root() -> HealthResponse:
    return HealthResponse(
        message="OCA API is running",
        version=API_VERSION,
        endpoints={
            "chat": "/api/chat",
            "search": "/api/search",
            "interactions": "/api/interactions",
            "sessions": "/api/sessions",
            "documents": "/api/documents",
        },
    )


@router.get("/health", summary="Liveness check")
def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["API_VERSION", "router"]
