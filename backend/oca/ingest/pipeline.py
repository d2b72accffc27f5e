"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Iterable, Sequence

from oca.core.logging import get_logger, log_context
from oca.core.metrics import INGEST_DURATION
from oca.db.store import Datastore
from oca.ingest.chunker import build_chunk_payloads, chunk_text
from oca.ingest.embeddings import Embedder
from oca.ingest.loaders import LoaderRegistry
from oca.ingest.types import IngestError, IngestResult, IngestStats

logger = get_logger(__name__)


class IngestPipeline:
    """Coordinate loaders, chunking, embeddings, and persistence.

    Documents are processed concurrently, one task each. Within a document
    chunks are embedded and stored in order. A failing document is recorded
    in the stats and does not affect its siblings.
    """

    def __init__(
        self,
        datastore: Datastore,
        embedder: Embedder,
        chunk_size: int = 800,
        chunk_overlap: int = 150,
        loader_registry: LoaderRegistry | None = None,
    ) -> None:
        self.datastore = datastore
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.loader_registry = loader_registry or LoaderRegistry()

    async def ingest_paths(self, paths: Sequence[Path | str], section: str | None = None) -> dict[str, object]:
        files = list(self._expand(Path(path).expanduser() for path in paths))
        logger.info("Ingesting %s documents", len(files))
        outcomes = await asyncio.gather(*(self._ingest_one(path, section) for path in files))
        stats = IngestStats()
        for outcome in outcomes:
            if outcome.status == "processed":
                stats.processed += 1
                stats.total_chunks += outcome.chunks
            else:
                stats.failed += 1
                stats.errors.append(IngestError(file=outcome.path.name, error=outcome.detail or "unknown error"))
        return stats.to_dict()

    async def _ingest_one(self, path: Path, section: str | None) -> IngestResult:
        start = time.perf_counter()
        try:
            chunks = await self._process(path, section)
        except Exception as exc:
            INGEST_DURATION.labels(status="failed").observe(time.perf_counter() - start)
            logger.error("Failed to ingest %s: %s", path, exc, extra=log_context(document=path.name))
            return IngestResult(path=path, status="error", detail=str(exc))
        INGEST_DURATION.labels(status="processed").observe(time.perf_counter() - start)
        logger.info("Ingested %s (%s chunks)", path.name, chunks, extra=log_context(document=path.name))
        return IngestResult(path=path, status="processed", chunks=chunks)

    async def _process(self, path: Path, section: str | None) -> int:
        document = self.loader_registry.load(path)
        windows = chunk_text(document.text, chunk_size=self.chunk_size, overlap=self.chunk_overlap)
        payloads = build_chunk_payloads(document, windows, section=section or document.section)
        for chunk in payloads:
            chunk.embedding = await self.embedder.embed(chunk.text)
            await self.datastore.insert_chunks([chunk])
        return len(payloads)

    def _expand(self, paths: Iterable[Path]) -> Iterable[Path]:
        for path in paths:
            if path.is_dir():
                for file_path in sorted(path.rglob("*")):
                    if file_path.is_file() and self.loader_registry.supports(file_path):
                        yield file_path
            else:
                yield path


__all__ = ["IngestPipeline"]
