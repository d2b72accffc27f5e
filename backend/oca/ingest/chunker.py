"""Chunking utilities."""

from __future__ import annotations

from typing import Any, Sequence

from oca.core.errors import InvalidChunkingConfig
from oca.ingest.types import LoadedDocument, TextWindow
from oca.models.entities import DocumentChunk


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 150) -> list[TextWindow]:
    """Split text into fixed-size character windows.

    Window ``n`` starts at ``n * (chunk_size - overlap)`` and spans at most
    ``chunk_size`` characters; the final window may be shorter. Windows that
    are pure whitespace are skipped. Splitting stops at the first window that
    reaches the end of the text, so no window is fully contained in the
    previous one.
    """
    if chunk_size <= 0:
        raise InvalidChunkingConfig(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise InvalidChunkingConfig(
            f"overlap must be in [0, chunk_size), got overlap={overlap} chunk_size={chunk_size}"
        )
    if not text or not text.strip():
        raise InvalidChunkingConfig("cannot chunk empty text")

    step = chunk_size - overlap
    length = len(text)
    windows: list[TextWindow] = []
    start = 0
    while True:
        end = min(start + chunk_size, length)
        piece = text[start:end]
        if piece.strip():
            windows.append(TextWindow(start=start, text=piece))
        if end >= length:
            break
        start += step
    return windows


def build_chunk_payloads(
    document: LoadedDocument,
    windows: Sequence[TextWindow],
    document_name: str | None = None,
    section: str | None = None,
    page_number: int | None = None,
) -> list[DocumentChunk]:
    """Attach document provenance to raw windows."""
    total = len(windows)
    payloads: list[DocumentChunk] = []
    for index, window in enumerate(windows):
        text = window.text.strip()
        metadata: dict[str, Any] = {
            "total_chunks": total,
            "chunk_size": len(text),
            "file_type": document.file_type,
            "start_char": window.start,
        }
        payloads.append(
            DocumentChunk(
                id=None,
                document_name=document_name or document.path.name,
                document_path=str(document.path),
                section=section,
                page_number=page_number,
                chunk_index=index,
                text=text,
                metadata=metadata,
            )
        )
    return payloads


__all__ = ["chunk_text", "build_chunk_payloads"]
