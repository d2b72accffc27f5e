"""SQLite management utilities and the local datastore backend."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

import orjson

from oca.core.errors import StoreUnavailable
from oca.db.store import (
    Datastore,
    chunk_from_row,
    cosine_similarity,
    interaction_from_row,
    rank_scored,
    session_from_row,
    summarize_documents,
)
from oca.ingest.embeddings import vector_from_bytes, vector_to_bytes
from oca.models.entities import (
    DocumentChunk,
    DocumentSummary,
    Interaction,
    Mode,
    ScoredChunk,
    Session,
)
from oca.utils.ids import new_uuid
from oca.utils.time import utc_now

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
)

_JSON_COLUMNS = ("metadata", "context", "retrieved_chunk_ids")


class SQLiteDatabase:
    """Thin wrapper around sqlite3 providing pragmatic defaults."""

    def __init__(self, db_path: Path, read_only: bool = False) -> None:
        self.db_path = db_path.expanduser()
        self.read_only = read_only
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._connection is None:
            if not self.read_only:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            if self.read_only:
                uri = f"file:{self.db_path}?mode=ro"
                self._connection = sqlite3.connect(uri, uri=True, check_same_thread=False)
            else:
                self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            for pragma in DEFAULT_PRAGMAS:
                self._connection.execute(pragma)
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def commit(self) -> None:
        if self._connection is not None:
            self._connection.commit()

    def rollback(self) -> None:
        if self._connection is not None:
            self._connection.rollback()

    def executescript(self, script: str) -> None:
        conn = self.connect()
        conn.executescript(script)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.execute(sql, params or [])

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.executemany(sql, seq_of_params)

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        cursor = self.execute(sql, params)
        return cursor.fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self.connect()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        self.executescript(schema_sql)


class SQLiteDatastore(Datastore):
    """Local datastore; similarity is computed in-process over all chunks.

    sqlite3 calls run synchronously inside the async methods and block the
    event loop while they execute. Intended for development and tests; the
    Supabase backend is the one meant for concurrent traffic.
    """

    backend = "sqlite"

    def __init__(self, database: SQLiteDatabase, embedding_dim: int) -> None:
        super().__init__(embedding_dim)
        self.db = database

    async def insert_chunks(self, chunks: Sequence[DocumentChunk]) -> list[DocumentChunk]:
        for chunk in chunks:
            if chunk.embedding is None:
                raise ValueError(f"Chunk {chunk.chunk_index} of {chunk.document_name} has no embedding")
            self._check_dimension(chunk.embedding)
        now = utc_now()
        stored: list[DocumentChunk] = []
        with self._errors():
            with self.db.transaction() as cursor:
                for chunk in chunks:
                    chunk_id = chunk.id or new_uuid()
                    cursor.execute(
                        """
                        INSERT INTO document_chunks (
                          id, document_name, document_path, section, page_number,
                          chunk_text, chunk_index, embedding, metadata, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            chunk_id,
                            chunk.document_name,
                            chunk.document_path,
                            chunk.section,
                            chunk.page_number,
                            chunk.text,
                            chunk.chunk_index,
                            vector_to_bytes(chunk.embedding or []),
                            _dumps(chunk.metadata),
                            _ts(now),
                        ],
                    )
                    stored.append(
                        DocumentChunk(
                            id=chunk_id,
                            document_name=chunk.document_name,
                            document_path=chunk.document_path,
                            section=chunk.section,
                            page_number=chunk.page_number,
                            chunk_index=chunk.chunk_index,
                            text=chunk.text,
                            embedding=list(chunk.embedding or []),
                            metadata=dict(chunk.metadata),
                            created_at=now,
                        )
                    )
        return stored

    async def similarity_search(
        self,
        query_vector: Sequence[float],
        threshold: float,
        top_k: int,
    ) -> list[ScoredChunk]:
        self._check_dimension(query_vector)
        with self._errors():
            rows = self.db.query("SELECT * FROM document_chunks ORDER BY rowid ASC")
        scored: list[ScoredChunk] = []
        for row in rows:
            record = _decode(row)
            vector = vector_from_bytes(record["embedding"])
            if len(vector) != self.embedding_dim:
                continue
            chunk = chunk_from_row(record)
            scored.append(ScoredChunk(chunk=chunk, similarity=cosine_similarity(query_vector, vector)))
        return rank_scored(scored, threshold, top_k)

    async def list_documents(self) -> list[DocumentSummary]:
        with self._errors():
            rows = self.db.query(
                "SELECT document_name, created_at FROM document_chunks ORDER BY created_at DESC, rowid DESC"
            )
        return summarize_documents([dict(row) for row in rows])

    async def get_session(self, session_id: str) -> Session | None:
        with self._errors():
            row = self.db.execute("SELECT * FROM sessions WHERE id = ?", [session_id]).fetchone()
        return session_from_row(_decode(row)) if row else None

    async def create_session(self, session: Session) -> Session:
        with self._errors():
            self.db.execute(
                """
                INSERT INTO sessions (id, student_id, mode, created_at, last_activity, context)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    session.id,
                    session.student_id,
                    Mode(session.mode).value,
                    _ts(session.created_at),
                    _ts(session.last_activity),
                    _dumps(session.context),
                ],
            )
            self.db.commit()
        created = await self.get_session(session.id)
        if created is None:
            raise StoreUnavailable(f"Session {session.id} was not readable after insert")
        return created

    async def update_session(self, session_id: str, fields: Mapping[str, Any]) -> Session | None:
        self._check_session_fields(fields)
        updates: list[str] = []
        params: list[Any] = []
        for key, value in fields.items():
            updates.append(f"{key} = ?")
            if key == "context":
                params.append(_dumps(value))
            elif key == "last_activity":
                params.append(_ts(value))
            else:
                params.append(Mode(value).value)
        if updates:
            params.append(session_id)
            with self._errors():
                self.db.execute(f"UPDATE sessions SET {', '.join(updates)} WHERE id = ?", params)
                self.db.commit()
        return await self.get_session(session_id)

    async def list_sessions_for_student(self, student_id: str) -> list[Session]:
        with self._errors():
            rows = self.db.query(
                "SELECT * FROM sessions WHERE student_id = ? ORDER BY created_at DESC, rowid DESC",
                [student_id],
            )
        return [session_from_row(_decode(row)) for row in rows]

    async def count_interactions(self, session_id: str) -> int:
        with self._errors():
            row = self.db.execute(
                "SELECT COUNT(*) AS count FROM interactions WHERE session_id = ?",
                [session_id],
            ).fetchone()
        return int(row["count"]) if row else 0

    async def insert_interaction(self, interaction: Interaction) -> Interaction:
        timestamp = interaction.timestamp or utc_now()
        with self._errors():
            cursor = self.db.execute(
                """
                INSERT INTO interactions (
                  student_id, session_id, mode, user_message, assistant_response,
                  retrieved_chunk_ids, timestamp, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    interaction.student_id,
                    interaction.session_id,
                    Mode(interaction.mode).value,
                    interaction.user_message,
                    interaction.assistant_response,
                    _dumps(list(interaction.retrieved_chunk_ids)),
                    _ts(timestamp),
                    _dumps(interaction.metadata),
                ],
            )
            self.db.commit()
            interaction_id = cursor.lastrowid
        stored = await self.get_interaction(str(interaction_id))
        if stored is None:
            raise StoreUnavailable(f"Interaction {interaction_id} was not readable after insert")
        return stored

    async def recent_interactions(self, session_id: str, limit: int) -> list[Interaction]:
        with self._errors():
            rows = self.db.query(
                "SELECT * FROM interactions WHERE session_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                [session_id, limit],
            )
        return [interaction_from_row(_decode(row)) for row in rows]

    async def list_interactions(
        self,
        student_id: str,
        session_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Interaction], int]:
        where = "student_id = ?"
        params: list[Any] = [student_id]
        if session_id:
            where += " AND session_id = ?"
            params.append(session_id)
        with self._errors():
            rows = self.db.query(
                f"SELECT * FROM interactions WHERE {where} ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            )
            total_row = self.db.execute(f"SELECT COUNT(*) AS count FROM interactions WHERE {where}", params).fetchone()
        total = int(total_row["count"]) if total_row else 0
        return [interaction_from_row(_decode(row)) for row in rows], total

    async def get_interaction(self, interaction_id: str) -> Interaction | None:
        if not interaction_id.isdigit():
            return None
        with self._errors():
            row = self.db.execute("SELECT * FROM interactions WHERE id = ?", [int(interaction_id)]).fetchone()
        return interaction_from_row(_decode(row)) if row else None

    async def aclose(self) -> None:
        self.db.close()

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"SQLite datastore error: {exc}") from exc


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    for column in _JSON_COLUMNS:
        if column in record and isinstance(record[column], str):
            record[column] = orjson.loads(record[column])
    return record


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def _ts(value: datetime) -> str:
    """Fixed-width UTC timestamps so text ordering matches time ordering."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


__all__ = ["SQLiteDatabase", "SQLiteDatastore"]
