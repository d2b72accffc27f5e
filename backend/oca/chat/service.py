"""Tutoring (streaming) and search (single response) request flows."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from oca.chat.archiver import Archiver
from oca.chat.assembler import PromptAssembler
from oca.chat.history import HistoryLoader
from oca.chat.prompts import SEARCH_FALLBACK_PROMPT, SEARCH_PROMPT, TUTORING_PROMPT
from oca.chat.sessions import ANONYMOUS_STUDENT, SessionManager
from oca.core.errors import DependencyUnavailable, ValidationFailed
from oca.core.logging import get_logger, log_context
from oca.llm.generator import GenerationState, GenerationStream, Generator
from oca.models.entities import ChatMessage, Interaction, Mode, ScoredChunk
from oca.retrieval.retriever import RetrievalPolicy, Retriever
from oca.utils.text import excerpt
from oca.utils.time import utc_now

logger = get_logger(__name__)


@dataclass(slots=True)
class TutoringTurn:
    """A primed generation plus everything needed to archive it."""

    session_id: str
    student_id: str
    message: str
    chunks: list[ScoredChunk]
    messages: list[ChatMessage]
    stream: GenerationStream
    archiver: Archiver
    archived: bool = False

    def finish(self) -> None:
        """Stop generation if still running and archive what was delivered.

        Runs at most once and never awaits, so it is safe in ``finally``.
        """
        if self.archived:
            return
        self.archived = True
        if not self.stream.finished:
            self.stream.cancel()
        if self.stream.fragment_count == 0 and self.stream.state is not GenerationState.COMPLETED:
            logger.info("Nothing delivered; skipping archive", extra=log_context(session_id=self.session_id))
            return
        self.archiver.submit(
            Interaction(
                id=None,
                student_id=self.student_id,
                session_id=self.session_id,
                mode=Mode.TUTORING,
                user_message=self.message,
                assistant_response=self.stream.text,
                retrieved_chunk_ids=[item.id for item in self.chunks if item.id],
                timestamp=utc_now(),
                metadata={"chunks_count": len(self.chunks), "generation_state": self.stream.state.value},
            )
        )


@dataclass(slots=True)
class Source:
    chunk_id: str | None
    document: str
    section: str | None
    page: int | None
    excerpt: str


@dataclass(slots=True)
class SearchResult:
    session_id: str
    summary: str
    sources: list[Source] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)


class TutoringService:
    def __init__(
        self,
        sessions: SessionManager,
        history: HistoryLoader,
        retriever: Retriever,
        assembler: PromptAssembler,
        generator: Generator,
        archiver: Archiver,
    ) -> None:
        self.sessions = sessions
        self.history = history
        self.retriever = retriever
        self.assembler = assembler
        self.generator = generator
        self.archiver = archiver

    async def start_turn(
        self,
        message: str,
        session_id: str | None = None,
        student_id: str | None = None,
    ) -> TutoringTurn:
        if not message or not message.strip():
            raise ValidationFailed("Missing required field: message is required")
        student_id = student_id or ANONYMOUS_STUDENT
        session_id = await self.sessions.ensure_session(session_id, student_id, Mode.TUTORING)
        history, chunks = await asyncio.gather(
            self.history.load_history(session_id),
            self.retriever.retrieve(message, policy=RetrievalPolicy.SOFT_DEGRADE),
        )
        prompt = self.assembler.assemble(TUTORING_PROMPT, chunks, history, message)
        stream = self.generator.stream(prompt.messages)
        await stream.prime()
        return TutoringTurn(
            session_id=session_id,
            student_id=student_id,
            message=message,
            chunks=prompt.chunks,
            messages=prompt.messages,
            stream=stream,
            archiver=self.archiver,
        )


class SearchService:
    def __init__(
        self,
        sessions: SessionManager,
        retriever: Retriever,
        assembler: PromptAssembler,
        generator: Generator,
        archiver: Archiver,
    ) -> None:
        self.sessions = sessions
        self.retriever = retriever
        self.assembler = assembler
        self.generator = generator
        self.archiver = archiver

    async def search(
        self,
        query: str,
        session_id: str | None = None,
        student_id: str | None = None,
        max_results: int = 5,
    ) -> SearchResult:
        if not query or not query.strip():
            raise ValidationFailed("Missing required field: query is required")
        if self.sessions.store is None:
            raise DependencyUnavailable("Course material search is not available until the datastore is configured.")
        student_id = student_id or ANONYMOUS_STUDENT
        session_id = await self.sessions.ensure_session(session_id, student_id, Mode.INFO_ACCESS)
        chunks = await self.retriever.retrieve(query, top_k=max_results, policy=RetrievalPolicy.HARD_FAIL)
        if chunks:
            prompt = self.assembler.assemble(SEARCH_PROMPT, chunks, [], query)
        else:
            logger.warning("No relevant course material found", extra=log_context(session_id=session_id))
            prompt = self.assembler.assemble(SEARCH_FALLBACK_PROMPT, [], [], query)
        summary = await self.generator.complete(prompt.messages)
        sources = [_to_source(item) for item in prompt.chunks]
        result = SearchResult(session_id=session_id, summary=summary, sources=sources)
        self.archiver.submit(
            Interaction(
                id=None,
                student_id=student_id,
                session_id=session_id,
                mode=Mode.INFO_ACCESS,
                user_message=query,
                assistant_response=summary,
                retrieved_chunk_ids=[item.id for item in prompt.chunks if item.id],
                timestamp=result.timestamp,
                metadata={"sources_count": len(sources)},
            )
        )
        return result


def _to_source(item: ScoredChunk) -> Source:
    chunk = item.chunk
    return Source(
        chunk_id=chunk.id,
        document=chunk.document_name,
        section=chunk.section,
        page=chunk.page_number,
        excerpt=excerpt(chunk.text),
    )


def turn_summary(turn: TutoringTurn) -> dict[str, Any]:
    return {
        "session_id": turn.session_id,
        "chunks": len(turn.chunks),
        "state": turn.stream.state.value,
        "fragments": turn.stream.fragment_count,
    }


__all__ = [
    "TutoringTurn",
    "TutoringService",
    "Source",
    "SearchResult",
    "SearchService",
]
