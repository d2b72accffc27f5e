"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from oca.models.entities import DocumentSummary, Interaction, Mode, Session


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    message: str
    session_id: str | None = None
    student_id: str | None = None


class SearchRequest(CamelModel):
    query: str
    session_id: str | None = None
    student_id: str | None = None
    max_results: int = Field(default=5, ge=1, le=50)


class SourceItem(CamelModel):
    chunk_id: str | None
    document: str
    section: str | None = None
    page: int | None = None
    excerpt: str


class SearchResponse(CamelModel):
    summary: str
    sources: list[SourceItem]
    timestamp: datetime
    session_id: str | None = None


class SessionCreateRequest(CamelModel):
    student_id: str
    mode: Mode
    context: dict[str, Any] | None = None


class SessionUpdateRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    last_activity: datetime | None = None
    context: dict[str, Any] | None = None
    mode: Mode | None = None


class SessionResponse(CamelModel):
    id: str
    student_id: str
    mode: Mode
    created_at: datetime
    last_activity: datetime
    context: dict[str, Any] = Field(default_factory=dict)
    message_count: int | None = None

    @classmethod
    def from_entity(cls, session: Session, message_count: int | None = None) -> "SessionResponse":
        return cls(
            id=session.id,
            student_id=session.student_id,
            mode=session.mode,
            created_at=session.created_at,
            last_activity=session.last_activity,
            context=session.context,
            message_count=message_count,
        )


class InteractionResponse(CamelModel):
    id: str
    student_id: str
    session_id: str
    mode: Mode
    user_message: str
    assistant_response: str
    retrieved_chunk_ids: list[str]
    timestamp: datetime | None
    metadata: dict[str, Any]

    @classmethod
    def from_entity(cls, interaction: Interaction) -> "InteractionResponse":
        return cls(
            id=str(interaction.id),
            student_id=interaction.student_id,
            session_id=interaction.session_id,
            mode=interaction.mode,
            user_message=interaction.user_message,
            assistant_response=interaction.assistant_response,
            retrieved_chunk_ids=list(interaction.retrieved_chunk_ids),
            timestamp=interaction.timestamp,
            metadata=interaction.metadata,
        )


class InteractionListResponse(CamelModel):
    interactions: list[InteractionResponse]
    total: int
    limit: int
    offset: int


class IngestRequest(CamelModel):
    paths: list[str] = Field(min_length=1, description="Files or directories on the server")
    section: str | None = None


class IngestErrorItem(CamelModel):
    file: str
    error: str


class IngestResponse(CamelModel):
    processed: int
    failed: int
    total_chunks: int
    errors: list[IngestErrorItem]


class DocumentItem(CamelModel):
    document_name: str
    chunk_count: int
    first_stored: datetime | None

    @classmethod
    def from_entity(cls, summary: DocumentSummary) -> "DocumentItem":
        return cls(
            document_name=summary.document_name,
            chunk_count=summary.chunk_count,
            first_stored=summary.first_stored,
        )


class DocumentListResponse(CamelModel):
    documents: list[DocumentItem]
    total_documents: int
    total_chunks: int


class HealthResponse(BaseModel):
    message: str
    version: str
    endpoints: dict[str, str]


__all__ = [
    "ChatRequest",
    "SearchRequest",
    "SearchResponse",
    "SourceItem",
    "SessionCreateRequest",
    "SessionUpdateRequest",
    "SessionResponse",
    "InteractionResponse",
    "InteractionListResponse",
    "IngestRequest",
    "IngestResponse",
    "DocumentItem",
    "DocumentListResponse",
    "HealthResponse",
]
