"""Read-only access to the interaction archive."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from oca.api.dependencies import get_session_manager
from oca.chat.sessions import SessionManager
from oca.models.dto import InteractionListResponse, InteractionResponse

router = APIRouter()


@router.get("/interactions", response_model=InteractionListResponse, summary="List a student's interactions")
async def list_interactions(
    student_id: str | None = Query(default=None, alias="studentId"),
    session_id: str | None = Query(default=None, alias="sessionId"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    sessions: SessionManager = Depends(get_session_manager),
) -> InteractionListResponse:
    rows, total = await sessions.list_interactions(student_id, session_id=session_id, limit=limit, offset=offset)
    return InteractionListResponse(
        interactions=[InteractionResponse.from_entity(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/interactions/{interaction_id}", response_model=InteractionResponse, summary="Interaction details")
async def get_interaction(
    interaction_id: str,
    sessions: SessionManager = Depends(get_session_manager),
) -> InteractionResponse:
    return InteractionResponse.from_entity(await sessions.get_interaction(interaction_id))


__all__ = ["router"]
