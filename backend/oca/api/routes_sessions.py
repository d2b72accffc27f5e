"""Session CRUD routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from oca.api.dependencies import get_session_manager
from oca.chat.sessions import SessionManager
from oca.models.dto import SessionCreateRequest, SessionResponse, SessionUpdateRequest

router = APIRouter()


@router.post("/sessions", response_model=SessionResponse, status_code=201, summary="Create a session")
async def create_session(
    request: SessionCreateRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await sessions.create(request.student_id, request.mode, request.context)
    return SessionResponse.from_entity(session)


@router.get(
    "/sessions/student/{student_id}",
    response_model=list[SessionResponse],
    summary="List a student's sessions, newest first",
)
async def list_student_sessions(
    student_id: str,
    sessions: SessionManager = Depends(get_session_manager),
) -> list[SessionResponse]:
    return [SessionResponse.from_entity(session) for session in await sessions.list_for_student(student_id)]


@router.get("/sessions/{session_id}", response_model=SessionResponse, summary="Session details")
async def get_session(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    session, message_count = await sessions.get(session_id)
    return SessionResponse.from_entity(session, message_count=message_count)


@router.patch("/sessions/{session_id}", response_model=SessionResponse, summary="Update a session")
async def update_session(
    session_id: str,
    request: SessionUpdateRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    fields = request.model_dump(exclude_unset=True)
    session = await sessions.update(session_id, fields)
    return SessionResponse.from_entity(session)


__all__ = ["router"]
