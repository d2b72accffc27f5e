"""Shared FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from oca.chat.archiver import Archiver
from oca.chat.assembler import PromptAssembler
from oca.chat.history import HistoryLoader
from oca.chat.service import SearchService, TutoringService
from oca.chat.sessions import SessionManager
from oca.core.config import Settings
from oca.core.errors import DependencyUnavailable
from oca.db.store import Datastore, build_datastore
from oca.ingest.embeddings import Embedder, build_embedder
from oca.ingest.pipeline import IngestPipeline
from oca.llm.client import OllamaClient
from oca.llm.generator import ChatBackend, Generator
from oca.retrieval import Retriever


@dataclass(slots=True)
class OCAServices:
    """Process-wide handles, built once and injected into every request."""

    settings: Settings
    llm: ChatBackend
    embedder: Embedder
    datastore: Datastore | None
    sessions: SessionManager
    archiver: Archiver
    tutoring: TutoringService
    search: SearchService

    async def aclose(self) -> None:
        await self.archiver.drain()
        if self.datastore is not None:
            await self.datastore.aclose()
        aclose = getattr(self.llm, "aclose", None)
        if aclose is not None:
            await aclose()


def build_services(
    settings: Settings,
    llm: ChatBackend | None = None,
    embedder: Embedder | None = None,
    datastore: Datastore | None = None,
) -> OCAServices:
    """Wire components explicitly; tests pass fakes for any of the handles."""
    if llm is None:
        llm = OllamaClient.from_settings(settings)
    if embedder is None:
        embedder = build_embedder(settings, llm)  # type: ignore[arg-type]
    if datastore is None:
        datastore = build_datastore(settings)

    sessions = SessionManager(datastore)
    archiver = Archiver(datastore)
    assembler = PromptAssembler(max_chars=settings.max_prompt_chars)
    generator = Generator(llm, settings.llm_model)
    retriever = Retriever(
        embedder,
        datastore,
        top_k=settings.retrieval_top_k,
        threshold=settings.retrieval_threshold,
    )
    tutoring = TutoringService(
        sessions=sessions,
        history=HistoryLoader(datastore, limit=settings.history_limit),
        retriever=retriever,
        assembler=assembler,
        generator=generator,
        archiver=archiver,
    )
    search = SearchService(
        sessions=sessions,
        retriever=retriever,
        assembler=assembler,
        generator=generator,
        archiver=archiver,
    )
    return OCAServices(
        settings=settings,
        llm=llm,
        embedder=embedder,
        datastore=datastore,
        sessions=sessions,
        archiver=archiver,
        tutoring=tutoring,
        search=search,
    )


def get_services(request: Request) -> OCAServices:
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return get_services(request).settings


def get_tutoring_service(request: Request) -> TutoringService:
    return get_services(request).tutoring


def get_search_service(request: Request) -> SearchService:
    return get_services(request).search


def get_session_manager(request: Request) -> SessionManager:
    return get_services(request).sessions


def get_ingest_pipeline(request: Request) -> IngestPipeline:
    services = get_services(request)
    if services.datastore is None:
        raise DependencyUnavailable("Document processing requires datastore configuration")
    return IngestPipeline(
        datastore=services.datastore,
        embedder=services.embedder,
        chunk_size=services.settings.chunk_size,
        chunk_overlap=services.settings.chunk_overlap,
    )


def require_datastore(request: Request) -> Datastore:
    datastore = get_services(request).datastore
    if datastore is None:
        raise DependencyUnavailable("Document listing requires datastore configuration")
    return datastore


__all__ = [
    "OCAServices",
    "build_services",
    "get_services",
    "get_app_settings",
    "get_tutoring_service",
    "get_search_service",
    "get_session_manager",
    "get_ingest_pipeline",
    "require_datastore",
]
