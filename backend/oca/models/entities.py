"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Mode(str, Enum):
    TUTORING = "tutoring"
    INFO_ACCESS = "info_access"


@dataclass(slots=True)
class DocumentChunk:
    id: str | None
    document_name: str
    chunk_index: int
    text: str
    section: str | None = None
    page_number: int | None = None
    document_path: str | None = None
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(slots=True)
class ScoredChunk:
    chunk: DocumentChunk
    similarity: float

    @property
    def id(self) -> str | None:
        return self.chunk.id


@dataclass(slots=True)
class DocumentSummary:
    document_name: str
    chunk_count: int
    first_stored: datetime | None


@dataclass(slots=True)
class Session:
    id: str
    student_id: str
    mode: Mode
    created_at: datetime
    last_activity: datetime
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Interaction:
    id: str | None
    student_id: str
    session_id: str
    mode: Mode
    user_message: str
    assistant_response: str
    retrieved_chunk_ids: list[str] = field(default_factory=list)
    timestamp: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HistoryTurn:
    user_message: str
    assistant_response: str


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


__all__ = [
    "Mode",
    "DocumentChunk",
    "ScoredChunk",
    "DocumentSummary",
    "Session",
    "Interaction",
    "HistoryTurn",
    "ChatMessage",
]
