"""Tutoring chat route (streamed plain-text body)."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from oca.api.dependencies import get_app_settings, get_tutoring_service
from oca.chat.service import TutoringService, TutoringTurn, turn_summary
from oca.core.config import Settings
from oca.core.errors import UpstreamError
from oca.core.logging import get_logger, log_context
from oca.core.metrics import REQUEST_COUNT
from oca.models.dto import ChatRequest

logger = get_logger(__name__)

router = APIRouter()


@router.post("/chat", summary="Stream a tutoring answer")
async def chat(
    request: ChatRequest,
    service: TutoringService = Depends(get_tutoring_service),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    turn = await service.start_turn(request.message, session_id=request.session_id, student_id=request.student_id)
    REQUEST_COUNT.labels(endpoint="chat", status="200").inc()
    headers = {"X-Session-Id": turn.session_id}
    if settings.stream_end_marker:
        headers["X-Stream-End-Marker"] = settings.stream_end_marker
    return StreamingResponse(
        _stream_turn(turn, settings.stream_end_marker),
        media_type="text/plain; charset=utf-8",
        headers=headers,
    )


async def _stream_turn(turn: TutoringTurn, end_marker: str | None) -> AsyncIterator[str]:
    try:
        async for fragment in turn.stream:
            yield fragment
        if end_marker:
            yield end_marker
    except UpstreamError as exc:
        # Status and headers are already sent; the missing end marker signals truncation.
        logger.warning("Stream ended early: %s", exc, extra=log_context(session_id=turn.session_id))
    finally:
        turn.finish()
        logger.info("Chat turn finished", extra=log_context(**turn_summary(turn)))


__all__ = ["router"]
