"""Datastore interface shared by the SQLite and Supabase backends."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Mapping, Sequence

from oca.core.config import Settings
from oca.core.errors import DimensionMismatch
from oca.core.logging import get_logger
from oca.models.entities import (
    DocumentChunk,
    DocumentSummary,
    Interaction,
    Mode,
    ScoredChunk,
    Session,
)
from oca.utils.time import parse_iso

logger = get_logger(__name__)

SESSION_UPDATABLE_FIELDS = frozenset({"last_activity", "context", "mode"})


class Datastore:
    """Persistence for document chunks, sessions and interactions.

    Implementations hold no per-request state, so one instance is shared by
    every in-flight request.
    """

    backend: str = ""

    def __init__(self, embedding_dim: int) -> None:
        self.embedding_dim = embedding_dim

    # Document chunks ---------------------------------------------------

    async def insert_chunks(self, chunks: Sequence[DocumentChunk]) -> list[DocumentChunk]:
        raise NotImplementedError

    async def similarity_search(
        self,
        query_vector: Sequence[float],
        threshold: float,
        top_k: int,
    ) -> list[ScoredChunk]:
        """Chunks with cosine similarity strictly above ``threshold``, best first."""
        raise NotImplementedError

    async def list_documents(self) -> list[DocumentSummary]:
        raise NotImplementedError

    # Sessions ----------------------------------------------------------

    async def get_session(self, session_id: str) -> Session | None:
        raise NotImplementedError

    async def create_session(self, session: Session) -> Session:
        raise NotImplementedError

    async def update_session(self, session_id: str, fields: Mapping[str, Any]) -> Session | None:
        raise NotImplementedError

    async def touch_session(self, session_id: str, at: datetime) -> None:
        await self.update_session(session_id, {"last_activity": at})

    async def list_sessions_for_student(self, student_id: str) -> list[Session]:
        raise NotImplementedError

    # Interactions ------------------------------------------------------

    async def count_interactions(self, session_id: str) -> int:
        raise NotImplementedError

    async def insert_interaction(self, interaction: Interaction) -> Interaction:
        raise NotImplementedError

    async def recent_interactions(self, session_id: str, limit: int) -> list[Interaction]:
        """Most recent interactions of a session, newest first."""
        raise NotImplementedError

    async def list_interactions(
        self,
        student_id: str,
        session_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Interaction], int]:
        raise NotImplementedError

    async def get_interaction(self, interaction_id: str) -> Interaction | None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    # Shared checks -----------------------------------------------------

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.embedding_dim:
            raise DimensionMismatch(
                f"Vector has {len(vector)} dimensions, store is configured for {self.embedding_dim}"
            )

    def _check_session_fields(self, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - SESSION_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {sorted(unknown)}")


def build_datastore(settings: Settings) -> Datastore | None:
    """Construct the configured backend, or None when none is configured."""
    backend = settings.datastore_backend
    if backend == "supabase":
        from oca.db.supabase import SupabaseDatastore

        return SupabaseDatastore(
            url=settings.supabase_url or "",
            service_key=settings.supabase_service_key or "",
            embedding_dim=settings.embedding_dim,
        )
    if backend == "sqlite":
        from oca.db.sqlite import SQLiteDatabase, SQLiteDatastore

        if settings.db_path is None:
            raise ValueError("SQLite backend selected without a db_path")
        database = SQLiteDatabase(settings.db_path)
        database.ensure_schema()
        return SQLiteDatastore(database, embedding_dim=settings.embedding_dim)
    logger.warning("Datastore not configured; session, search and archive features are disabled")
    return None


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_scored(scored: Sequence[ScoredChunk], threshold: float, top_k: int) -> list[ScoredChunk]:
    """Filter to ``> threshold`` and sort descending; ties keep input order."""
    kept = [item for item in scored if item.similarity > threshold]
    kept.sort(key=lambda item: item.similarity, reverse=True)
    return kept[:top_k]


def chunk_from_row(row: Mapping[str, Any]) -> DocumentChunk:
    return DocumentChunk(
        id=str(row["id"]) if row.get("id") is not None else None,
        document_name=row["document_name"],
        document_path=row.get("document_path"),
        section=row.get("section"),
        page_number=row.get("page_number"),
        chunk_index=row.get("chunk_index") or 0,
        text=row["chunk_text"],
        metadata=row.get("metadata") or {},
        created_at=parse_iso(row.get("created_at")),
    )


def session_from_row(row: Mapping[str, Any]) -> Session:
    return Session(
        id=str(row["id"]),
        student_id=row["student_id"],
        mode=Mode(row["mode"]),
        created_at=parse_iso(row["created_at"]),
        last_activity=parse_iso(row["last_activity"]),
        context=row.get("context") or {},
    )


def interaction_from_row(row: Mapping[str, Any]) -> Interaction:
    return Interaction(
        id=str(row["id"]),
        student_id=row["student_id"],
        session_id=str(row["session_id"]),
        mode=Mode(row["mode"]),
        user_message=row["user_message"],
        assistant_response=row["assistant_response"],
        retrieved_chunk_ids=[str(item) for item in row.get("retrieved_chunk_ids") or []],
        timestamp=parse_iso(row.get("timestamp")),
        metadata=row.get("metadata") or {},
    )


def summarize_documents(rows: Sequence[Mapping[str, Any]]) -> list[DocumentSummary]:
    """Group chunk rows by document name, keeping first-seen order."""
    summaries: dict[str, DocumentSummary] = {}
    for row in rows:
        name = row["document_name"]
        created_at = parse_iso(row.get("created_at"))
        summary = summaries.get(name)
        if summary is None:
            summaries[name] = DocumentSummary(document_name=name, chunk_count=1, first_stored=created_at)
            continue
        summary.chunk_count += 1
        if created_at is not None and (summary.first_stored is None or created_at < summary.first_stored):
            summary.first_stored = created_at
    return list(summaries.values())


__all__ = [
    "Datastore",
    "SESSION_UPDATABLE_FIELDS",
    "build_datastore",
    "cosine_similarity",
    "rank_scored",
    "chunk_from_row",
    "session_from_row",
    "interaction_from_row",
    "summarize_documents",
]
