"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class LoadedDocument:
    """Represents a document extracted from a source file."""

    path: Path
    text: str
    metadata: dict[str, Any]
    mime: str
    title: str | None
    size_bytes: int
    section: str | None = None

    @property
    def file_type(self) -> str:
        return self.path.suffix.lower()


@dataclass(slots=True)
class TextWindow:
    """A chunk of source text and the offset it starts at."""

    start: int
    text: str


@dataclass(slots=True)
class IngestError:
    file: str
    error: str


@dataclass(slots=True)
class IngestStats:
    """Aggregated ingest statistics."""

    processed: int = 0
    failed: int = 0
    total_chunks: int = 0
    errors: list[IngestError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "totalChunks": self.total_chunks,
            "errors": [{"file": item.file, "error": item.error} for item in self.errors],
        }


@dataclass(slots=True)
class IngestResult:
    """Outcome for a single document."""

    path: Path
    status: str
    chunks: int = 0
    detail: str | None = None


__all__ = [
    "LoadedDocument",
    "TextWindow",
    "IngestError",
    "IngestStats",
    "IngestResult",
]
