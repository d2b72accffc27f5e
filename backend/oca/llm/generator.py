"""Streaming text generation over the LLM runtime."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncIterator, Protocol, Sequence

from oca.core.errors import UpstreamError
from oca.core.logging import get_logger
from oca.core.metrics import GENERATION_OUTCOMES
from oca.models.entities import ChatMessage

logger = get_logger(__name__)

_CLOSING: set[asyncio.Task] = set()


class GenerationState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = {GenerationState.COMPLETED, GenerationState.FAILED, GenerationState.CANCELLED}


class ChatBackend(Protocol):
    def chat_stream(self, messages: Sequence[ChatMessage], model: str) -> AsyncIterator[str]: ...

    async def chat(self, messages: Sequence[ChatMessage], model: str) -> str: ...


class GenerationStream:
    """Async iterator over model output fragments.

    ``text`` is the concatenation of the fragments handed to the consumer so
    far. It stays valid after cancellation or failure, so a partial answer can
    still be archived.
    """

    def __init__(self, source: AsyncIterator[str]) -> None:
        self._source = source
        self._fragments: list[str] = []
        self._pending: str | None = None
        self.state = GenerationState.IDLE
        self.error: Exception | None = None

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL

    async def prime(self) -> None:
        """Issue the request and wait for the first fragment.

        Errors raised here happen before any output reached the client.
        """
        if self.state is not GenerationState.IDLE:
            return
        self.state = GenerationState.REQUESTED
        try:
            first = await self._source.__anext__()
        except StopAsyncIteration:
            self._finish(GenerationState.COMPLETED)
            return
        except Exception as exc:
            raise self._fail(exc) from exc
        self.state = GenerationState.STREAMING
        self._pending = first

    def __aiter__(self) -> "GenerationStream":
        return self

    async def __anext__(self) -> str:
        if self.state is GenerationState.IDLE:
            await self.prime()
        if self._pending is not None:
            fragment, self._pending = self._pending, None
            self._fragments.append(fragment)
            return fragment
        if self.state is not GenerationState.STREAMING:
            raise StopAsyncIteration
        try:
            fragment = await self._source.__anext__()
        except StopAsyncIteration:
            self._finish(GenerationState.COMPLETED)
            raise
        except Exception as exc:
            raise self._fail(exc) from exc
        self._fragments.append(fragment)
        return fragment

    def cancel(self) -> None:
        """Stop consuming; the underlying request is closed in the background.

        Safe to call from a ``finally`` block of a cancelled task since it
        never awaits.
        """
        if self.finished:
            return
        self._pending = None
        self._finish(GenerationState.CANCELLED)
        aclose = getattr(self._source, "aclose", None)
        if aclose is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(aclose())
        except RuntimeError:
            return
        _CLOSING.add(task)
        task.add_done_callback(_CLOSING.discard)

    async def aclose(self) -> None:
        if self.finished:
            return
        self._pending = None
        self._finish(GenerationState.CANCELLED)
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()

    def _fail(self, exc: Exception) -> UpstreamError:
        self.error = exc
        self._finish(GenerationState.FAILED)
        if isinstance(exc, UpstreamError):
            return exc
        return UpstreamError(f"LLM service error: {exc}")

    def _finish(self, state: GenerationState) -> None:
        self.state = state
        GENERATION_OUTCOMES.labels(state=state.value).inc()
        if state is GenerationState.CANCELLED:
            logger.info("Generation cancelled after %s fragments", len(self._fragments))
        elif state is GenerationState.FAILED:
            logger.warning("Generation failed after %s fragments: %s", len(self._fragments), self.error)


class Generator:
    """Sends assembled messages to the model."""

    def __init__(self, backend: ChatBackend, model: str) -> None:
        self.backend = backend
        self.model = model

    def stream(self, messages: Sequence[ChatMessage]) -> GenerationStream:
        return GenerationStream(self.backend.chat_stream(messages, self.model))

    async def complete(self, messages: Sequence[ChatMessage]) -> str:
        """Non-streaming variant: accumulate then return."""
        try:
            text = await self.backend.chat(messages, self.model)
        except UpstreamError:
            GENERATION_OUTCOMES.labels(state=GenerationState.FAILED.value).inc()
            raise
        except Exception as exc:
            GENERATION_OUTCOMES.labels(state=GenerationState.FAILED.value).inc()
            raise UpstreamError(f"LLM service error: {exc}") from exc
        GENERATION_OUTCOMES.labels(state=GenerationState.COMPLETED.value).inc()
        return text


__all__ = ["GenerationState", "GenerationStream", "Generator", "ChatBackend"]
