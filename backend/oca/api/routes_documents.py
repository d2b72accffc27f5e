"""Document ingestion and listing routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from oca.api.dependencies import get_ingest_pipeline, require_datastore
from oca.db.store import Datastore
from oca.ingest.pipeline import IngestPipeline
from oca.models.dto import DocumentItem, DocumentListResponse, IngestRequest, IngestResponse

router = APIRouter()


@router.post("/documents/ingest", response_model=IngestResponse, summary="Chunk, embed and store documents")
async def ingest_documents(
    request: IngestRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> IngestResponse:
    stats = await pipeline.ingest_paths(request.paths, section=request.section)
    return IngestResponse.model_validate(stats)


@router.get("/documents", response_model=DocumentListResponse, summary="List stored documents")
async def list_documents(datastore: Datastore = Depends(require_datastore)) -> DocumentListResponse:
    summaries = await datastore.list_documents()
    return DocumentListResponse(
        documents=[DocumentItem.from_entity(summary) for summary in summaries],
        total_documents=len(summaries),
        total_chunks=sum(summary.chunk_count for summary in summaries),
    )


__all__ = ["router"]
