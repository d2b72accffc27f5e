"""Tests for history loading, prompt assembly and archiving."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from oca.chat.archiver import Archiver
from oca.chat.assembler import PromptAssembler
from oca.chat.history import HistoryLoader
from oca.chat.prompts import NO_MATERIAL_FOUND, TUTORING_PROMPT, format_context
from oca.chat.sessions import SessionManager
from oca.core.errors import StoreUnavailable
from oca.db.store import Datastore
from oca.models.entities import DocumentChunk, HistoryTurn, Interaction, Mode, ScoredChunk

BASE_TIME = datetime(2024, 9, 2, 14, 0, tzinfo=timezone.utc)


def _scored(chunk_id: str, similarity: float, text: str = "chunk text", section: str | None = "2.1") -> ScoredChunk:
    return ScoredChunk(
        chunk=DocumentChunk(
            id=chunk_id,
            document_name="syllabus.pdf",
            chunk_index=0,
            text=text,
            section=section,
            page_number=4,
        ),
        similarity=similarity,
    )


def _interaction(session_id: str, index: int) -> Interaction:
    return Interaction(
        id=None,
        student_id="s-1",
        session_id=session_id,
        mode=Mode.TUTORING,
        user_message=f"question {index}",
        assistant_response=f"answer {index}",
        timestamp=BASE_TIME + timedelta(minutes=index),
    )


class UnavailableStore(Datastore):
    async def recent_interactions(self, session_id, limit):
        raise StoreUnavailable("SQLite datastore error: disk I/O error")


class SlowStore(Datastore):
    def __init__(self, delay: float, fail: bool = False) -> None:
        super().__init__(embedding_dim=2)
        self.delay = delay
        self.fail = fail
        self.written: list[Interaction] = []

    async def insert_interaction(self, interaction):
        await asyncio.sleep(self.delay)
        if self.fail:
            raise StoreUnavailable("Supabase error (503): upstream unavailable")
        self.written.append(interaction)
        return interaction


async def _seed_session(datastore, session_id: str, turns: int) -> None:
    await SessionManager(datastore).ensure_session(session_id, "s-1", Mode.TUTORING)
    for index in range(turns):
        await datastore.insert_interaction(_interaction(session_id, index))


@pytest.mark.asyncio
async def test_history_is_oldest_first_and_capped(datastore) -> None:
    await _seed_session(datastore, "sess-1", 12)
    history = await HistoryLoader(datastore, limit=10).load_history("sess-1")
    assert len(history) == 10
    assert [turn.user_message for turn in history] == [f"question {idx}" for idx in range(2, 12)]


@pytest.mark.asyncio
async def test_history_empty_for_new_session(datastore) -> None:
    assert await HistoryLoader(datastore).load_history("never-used") == []


@pytest.mark.asyncio
async def test_history_failure_is_not_fatal() -> None:
    assert await HistoryLoader(UnavailableStore(embedding_dim=2)).load_history("sess-1", 5) == []
    assert await HistoryLoader(None).load_history("sess-1", 5) == []


def test_format_context_tags_provenance() -> None:
    context = format_context([_scored("a", 0.9, "Actors initiate use cases."), _scored("b", 0.8, "Goals.", None)])
    assert context == (
        "[syllabus.pdf, Section: 2.1, Page: 4]\nActors initiate use cases."
        "\n\n[syllabus.pdf, Section: N/A, Page: 4]\nGoals."
    )
    assert format_context([]) == NO_MATERIAL_FOUND


def test_assembly_order() -> None:
    history = [HistoryTurn("q1", "a1"), HistoryTurn("q2", "a2")]
    prompt = PromptAssembler().assemble(TUTORING_PROMPT, [_scored("a", 0.9, "Actors.")], history, "q3")
    assert [(message.role, message.content) for message in prompt.messages[1:]] == [
        ("user", "q1"),
        ("assistant", "a1"),
        ("user", "q2"),
        ("assistant", "a2"),
        ("user", "q3"),
    ]
    system = prompt.messages[0]
    assert system.role == "system"
    assert "[syllabus.pdf, Section: 2.1, Page: 4]\nActors." in system.content
    assert "{context}" not in system.content


def test_assembly_without_chunks_uses_placeholder() -> None:
    prompt = PromptAssembler().assemble(TUTORING_PROMPT, [], [], "hello")
    assert NO_MATERIAL_FOUND in prompt.messages[0].content


def test_no_truncation_by_default() -> None:
    history = [HistoryTurn("q" * 5000, "a" * 5000) for _ in range(5)]
    chunks = [_scored(str(idx), 0.9, "x" * 4000) for idx in range(5)]
    prompt = PromptAssembler().assemble(TUTORING_PROMPT, chunks, history, "now")
    assert len(prompt.messages) == 12
    assert prompt.chunks == chunks
    assert prompt.dropped_history == 0


def test_truncation_drops_oldest_history_first() -> None:
    history = [HistoryTurn(f"q{idx}" + "." * 100, f"a{idx}" + "." * 100) for idx in range(4)]
    chunks = [_scored("a", 0.9, "short")]
    full = PromptAssembler().assemble(TUTORING_PROMPT, chunks, history, "now")
    budget = full.char_count - 150
    prompt = PromptAssembler(max_chars=budget).assemble(TUTORING_PROMPT, chunks, history, "now")
    assert prompt.dropped_history == 1
    assert [turn.user_message[:2] for turn in prompt.history] == ["q1", "q2", "q3"]
    assert prompt.chunks == chunks
    assert prompt.messages[-1].content == "now"


def test_truncation_then_drops_lowest_similarity_chunks() -> None:
    history = [HistoryTurn("q", "a")]
    chunks = [_scored("high", 0.95, "h" * 300), _scored("low", 0.71, "l" * 300), _scored("mid", 0.8, "m" * 300)]
    without_low = PromptAssembler().assemble(TUTORING_PROMPT, [chunks[0], chunks[2]], [], "now")
    prompt = PromptAssembler(max_chars=without_low.char_count).assemble(TUTORING_PROMPT, chunks, history, "now")
    assert prompt.dropped_history == 1
    assert [item.id for item in prompt.dropped_chunks] == ["low"]
    assert [item.id for item in prompt.chunks] == ["high", "mid"]
    assert prompt.char_count <= without_low.char_count


@pytest.mark.asyncio
async def test_archiver_does_not_block_caller() -> None:
    store = SlowStore(delay=0.5)
    archiver = Archiver(store)
    started = time.perf_counter()
    archiver.submit(_interaction("sess-1", 0))
    assert time.perf_counter() - started < 0.1
    assert archiver.pending == 1
    await archiver.drain()
    assert archiver.pending == 0
    assert [item.user_message for item in store.written] == ["question 0"]


@pytest.mark.asyncio
async def test_archiver_swallows_failures() -> None:
    archiver = Archiver(SlowStore(delay=0.0, fail=True))
    task = archiver.submit(_interaction("sess-1", 0))
    await archiver.drain()
    assert task is not None and task.result() is None


@pytest.mark.asyncio
async def test_archiver_without_store_is_noop() -> None:
    assert Archiver(None).submit(_interaction("sess-1", 0)) is None


@pytest.mark.asyncio
async def test_ensure_session_creates_then_touches(datastore) -> None:
    manager = SessionManager(datastore)
    session_id = await manager.ensure_session(None, None, Mode.TUTORING)
    created = await datastore.get_session(session_id)
    assert created is not None
    assert created.student_id == "anonymous"
    assert created.mode is Mode.TUTORING

    assert await manager.ensure_session(session_id, "someone-else", Mode.TUTORING) == session_id
    touched = await datastore.get_session(session_id)
    assert touched.student_id == "anonymous"
    assert touched.last_activity >= created.last_activity


@pytest.mark.asyncio
async def test_ensure_session_without_store_returns_id() -> None:
    assert await SessionManager(None).ensure_session("given", None, Mode.INFO_ACCESS) == "given"
