"""Supabase (PostgREST + pgvector) datastore backend."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx
import orjson

from oca.core.errors import StoreUnavailable
from oca.core.logging import get_logger
from oca.db.store import (
    Datastore,
    chunk_from_row,
    interaction_from_row,
    rank_scored,
    session_from_row,
    summarize_documents,
)
from oca.models.entities import (
    DocumentChunk,
    DocumentSummary,
    Interaction,
    Mode,
    ScoredChunk,
    Session,
)
from oca.utils.time import to_iso

logger = get_logger(__name__)

# Postgres "invalid text representation", e.g. a malformed uuid in a filter.
_INVALID_TEXT_CODE = "22P02"


class SupabaseDatastore(Datastore):
    """Talks to the REST API of a hosted Supabase project.

    Similarity search goes through the ``match_documents`` SQL function,
    which applies the threshold and limit server-side.
    """

    backend = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        embedding_dim: int,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(embedding_dim)
        self._client = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def insert_chunks(self, chunks: Sequence[DocumentChunk]) -> list[DocumentChunk]:
        rows = []
        for chunk in chunks:
            if chunk.embedding is None:
                raise ValueError(f"Chunk {chunk.chunk_index} of {chunk.document_name} has no embedding")
            self._check_dimension(chunk.embedding)
            rows.append(
                {
                    "document_name": chunk.document_name,
                    "document_path": chunk.document_path,
                    "section": chunk.section,
                    "page_number": chunk.page_number,
                    "chunk_text": chunk.text,
                    "chunk_index": chunk.chunk_index,
                    "embedding": list(chunk.embedding),
                    "metadata": chunk.metadata,
                }
            )
        if not rows:
            return []
        data = await self._request(
            "POST",
            "/document_chunks",
            json=rows,
            headers={"Prefer": "return=representation"},
            params={"select": "id,document_name,document_path,section,page_number,chunk_text,chunk_index,metadata,created_at"},
        )
        stored = [chunk_from_row(row) for row in data]
        for stored_chunk, original in zip(stored, chunks):
            stored_chunk.embedding = list(original.embedding or [])
        return stored

    async def similarity_search(
        self,
        query_vector: Sequence[float],
        threshold: float,
        top_k: int,
    ) -> list[ScoredChunk]:
        self._check_dimension(query_vector)
        data = await self._request(
            "POST",
            "/rpc/match_documents",
            json={
                "query_embedding": list(query_vector),
                "match_threshold": threshold,
                "match_count": top_k,
            },
        )
        scored = [ScoredChunk(chunk=chunk_from_row(row), similarity=float(row["similarity"])) for row in data or []]
        return rank_scored(scored, threshold, top_k)

    async def list_documents(self) -> list[DocumentSummary]:
        data = await self._request(
            "GET",
            "/document_chunks",
            params={"select": "document_name,created_at", "order": "created_at.desc"},
        )
        return summarize_documents(data or [])

    async def get_session(self, session_id: str) -> Session | None:
        data = await self._request(
            "GET",
            "/sessions",
            params={"select": "*", "id": f"eq.{session_id}"},
            missing_ok=True,
        )
        return session_from_row(data[0]) if data else None

    async def create_session(self, session: Session) -> Session:
        data = await self._request(
            "POST",
            "/sessions",
            json={
                "id": session.id,
                "student_id": session.student_id,
                "mode": Mode(session.mode).value,
                "created_at": to_iso(session.created_at),
                "last_activity": to_iso(session.last_activity),
                "context": session.context,
            },
            headers={"Prefer": "return=representation"},
        )
        return session_from_row(data[0])

    async def update_session(self, session_id: str, fields: Mapping[str, Any]) -> Session | None:
        self._check_session_fields(fields)
        body: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "last_activity":
                body[key] = to_iso(value)
            elif key == "mode":
                body[key] = Mode(value).value
            else:
                body[key] = value
        data = await self._request(
            "PATCH",
            "/sessions",
            json=body,
            params={"id": f"eq.{session_id}"},
            headers={"Prefer": "return=representation"},
            missing_ok=True,
        )
        return session_from_row(data[0]) if data else None

    async def list_sessions_for_student(self, student_id: str) -> list[Session]:
        data = await self._request(
            "GET",
            "/sessions",
            params={"select": "*", "student_id": f"eq.{student_id}", "order": "created_at.desc"},
        )
        return [session_from_row(row) for row in data or []]

    async def count_interactions(self, session_id: str) -> int:
        response = await self._send(
            "HEAD",
            "/interactions",
            params={"select": "id", "session_id": f"eq.{session_id}"},
            headers={"Prefer": "count=exact"},
        )
        if response.status_code == 400:
            return 0
        self._raise_for_status(response)
        return _content_range_total(response)

    async def insert_interaction(self, interaction: Interaction) -> Interaction:
        body: dict[str, Any] = {
            "student_id": interaction.student_id,
            "session_id": interaction.session_id,
            "mode": Mode(interaction.mode).value,
            "user_message": interaction.user_message,
            "assistant_response": interaction.assistant_response,
            "retrieved_chunk_ids": list(interaction.retrieved_chunk_ids),
            "metadata": interaction.metadata,
        }
        if interaction.timestamp is not None:
            body["timestamp"] = to_iso(interaction.timestamp)
        data = await self._request(
            "POST",
            "/interactions",
            json=body,
            headers={"Prefer": "return=representation"},
        )
        return interaction_from_row(data[0])

    async def recent_interactions(self, session_id: str, limit: int) -> list[Interaction]:
        data = await self._request(
            "GET",
            "/interactions",
            params={
                "select": "*",
                "session_id": f"eq.{session_id}",
                "order": "timestamp.desc,id.desc",
                "limit": str(limit),
            },
            missing_ok=True,
        )
        return [interaction_from_row(row) for row in data or []]

    async def list_interactions(
        self,
        student_id: str,
        session_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Interaction], int]:
        params = {
            "select": "*",
            "student_id": f"eq.{student_id}",
            "order": "timestamp.desc,id.desc",
            "limit": str(limit),
            "offset": str(offset),
        }
        if session_id:
            params["session_id"] = f"eq.{session_id}"
        response = await self._send("GET", "/interactions", params=params, headers={"Prefer": "count=exact"})
        if response.status_code == 400 and _error_code(response) == _INVALID_TEXT_CODE:
            return [], 0
        self._raise_for_status(response)
        rows = response.json() if response.content else []
        return [interaction_from_row(row) for row in rows], _content_range_total(response)

    async def get_interaction(self, interaction_id: str) -> Interaction | None:
        data = await self._request(
            "GET",
            "/interactions",
            params={"select": "*", "id": f"eq.{interaction_id}"},
            missing_ok=True,
        )
        return interaction_from_row(data[0]) if data else None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        missing_ok: bool = False,
    ) -> Any:
        response = await self._send(method, path, json=json, params=params, headers=headers)
        if missing_ok and response.status_code == 400 and _error_code(response) == _INVALID_TEXT_CODE:
            return []
        self._raise_for_status(response)
        if not response.content:
            return []
        return response.json()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        content = orjson.dumps(json) if json is not None else None
        try:
            return await self._client.request(method, path, content=content, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Supabase request failed: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        message = _error_message(response)
        logger.error("Supabase %s %s -> %s: %s", response.request.method, response.request.url.path, response.status_code, message)
        raise StoreUnavailable(f"Supabase error ({response.status_code}): {message}")


def _content_range_total(response: httpx.Response) -> int:
    content_range = response.headers.get("content-range", "")
    _, _, total = content_range.partition("/")
    return int(total) if total.isdigit() else 0


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_code(response: httpx.Response) -> str | None:
    return _error_payload(response).get("code")


def _error_message(response: httpx.Response) -> str:
    payload = _error_payload(response)
    return str(payload.get("message") or response.text[:200])


__all__ = ["SupabaseDatastore"]
