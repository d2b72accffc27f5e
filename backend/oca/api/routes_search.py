"""Information-access search route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from oca.api.dependencies import get_search_service
from oca.chat.service import SearchService
from oca.core.metrics import REQUEST_COUNT
from oca.models.dto import SearchRequest, SearchResponse, SourceItem

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Summarize course material for a query")
async def search(
    request: SearchRequest,
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    result = await service.search(
        request.query,
        session_id=request.session_id,
        student_id=request.student_id,
        max_results=request.max_results,
    )
    REQUEST_COUNT.labels(endpoint="search", status="200").inc()
    return SearchResponse(
        summary=result.summary,
        sources=[
            SourceItem(
                chunk_id=source.chunk_id,
                document=source.document,
                section=source.section,
                page=source.page,
                excerpt=source.excerpt,
            )
            for source in result.sources
        ],
        timestamp=result.timestamp,
        session_id=result.session_id,
    )


__all__ = ["router"]
