"""Builds the ordered message list sent to the model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from oca.chat.prompts import render_system_prompt
from oca.core.logging import get_logger, log_context
from oca.models.entities import ChatMessage, HistoryTurn, ScoredChunk

logger = get_logger(__name__)


@dataclass(slots=True)
class AssembledPrompt:
    messages: list[ChatMessage]
    chunks: list[ScoredChunk]
    history: list[HistoryTurn]
    dropped_history: int = 0
    dropped_chunks: list[ScoredChunk] = field(default_factory=list)

    @property
    def char_count(self) -> int:
        return _char_count(self.messages)


class PromptAssembler:
    """Produces ``system, (user, assistant)*, user``.

    With ``max_chars`` unset every history pair and chunk is kept verbatim.
    When set, oversized prompts shed the oldest history pairs first and then
    the lowest-similarity chunks. The system instructions and the current
    message are always kept.
    """

    def __init__(self, max_chars: int | None = None) -> None:
        self.max_chars = max_chars

    def assemble(
        self,
        template: str,
        chunks: Sequence[ScoredChunk],
        history: Sequence[HistoryTurn],
        message: str,
    ) -> AssembledPrompt:
        kept_chunks = list(chunks)
        kept_history = list(history)
        messages = self._build(template, kept_chunks, kept_history, message)
        if self.max_chars is None or _char_count(messages) <= self.max_chars:
            return AssembledPrompt(messages=messages, chunks=kept_chunks, history=kept_history)

        dropped_history = 0
        while kept_history and _char_count(messages) > self.max_chars:
            kept_history.pop(0)
            dropped_history += 1
            messages = self._build(template, kept_chunks, kept_history, message)
        if dropped_history:
            logger.info("Dropped %s oldest history pairs to fit %s chars", dropped_history, self.max_chars)

        dropped_chunks: list[ScoredChunk] = []
        while kept_chunks and _char_count(messages) > self.max_chars:
            weakest = min(range(len(kept_chunks)), key=lambda idx: (kept_chunks[idx].similarity, -idx))
            dropped_chunks.append(kept_chunks.pop(weakest))
            messages = self._build(template, kept_chunks, kept_history, message)
        if dropped_chunks:
            logger.info(
                "Dropped %s lowest-similarity chunks to fit %s chars",
                len(dropped_chunks),
                self.max_chars,
                extra=log_context(dropped_chunk_ids=[item.id for item in dropped_chunks]),
            )
        if _char_count(messages) > self.max_chars:
            logger.warning("Prompt still exceeds %s chars after truncation", self.max_chars)

        return AssembledPrompt(
            messages=messages,
            chunks=kept_chunks,
            history=kept_history,
            dropped_history=dropped_history,
            dropped_chunks=dropped_chunks,
        )

    def _build(
        self,
        template: str,
        chunks: Sequence[ScoredChunk],
        history: Sequence[HistoryTurn],
        message: str,
    ) -> list[ChatMessage]:
        messages = [ChatMessage(role="system", content=render_system_prompt(template, chunks))]
        for turn in history:
            messages.append(ChatMessage(role="user", content=turn.user_message))
            messages.append(ChatMessage(role="assistant", content=turn.assistant_response))
        messages.append(ChatMessage(role="user", content=message))
        return messages


def _char_count(messages: Sequence[ChatMessage]) -> int:
    return sum(len(message.content) for message in messages)


__all__ = ["AssembledPrompt", "PromptAssembler"]
