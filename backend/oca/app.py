"""FastAPI application setup for OCA."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from oca.api.dependencies import OCAServices, build_services
from oca.api.routes_admin import API_VERSION
from oca.api.routes_admin import router as admin_router
from oca.api.routes_chat import router as chat_router
from oca.api.routes_documents import router as documents_router
from oca.api.routes_interactions import router as interactions_router
from oca.api.routes_search import router as search_router
from oca.api.routes_sessions import router as sessions_router
from oca.core.config import Settings, get_settings
from oca.core.errors import OCAError
from oca.core.logging import configure_logging, get_logger, log_context
from oca.core.metrics import REQUEST_COUNT

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, services: OCAServices | None = None) -> FastAPI:
    """Build the application.

    ``services`` lets callers inject prebuilt handles (tests pass fakes);
    otherwise they are constructed from ``settings`` at startup and closed on
    shutdown.
    """
    if settings is None:
        settings = services.settings if services is not None else get_settings()
    configure_logging(settings.log_level, use_json=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        app.state.services = services if services is not None else build_services(settings)
        logger.info(
            "OCA API started",
            extra=log_context(datastore=app.state.services.datastore.backend if app.state.services.datastore else "none"),
        )
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
            else:
                await app.state.services.archiver.drain()

    app = FastAPI(
        title="OCA API",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id", "X-Stream-End-Marker"],
    )

    app.include_router(admin_router, prefix="", tags=["admin"])
    app.include_router(chat_router, prefix="/api", tags=["chat"])
    app.include_router(search_router, prefix="/api", tags=["search"])
    app.include_router(sessions_router, prefix="/api", tags=["sessions"])
    app.include_router(interactions_router, prefix="/api", tags=["interactions"])
    app.include_router(documents_router, prefix="/api", tags=["documents"])

    _register_error_handlers(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OCAError)
    async def handle_oca_error(request: Request, exc: OCAError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        REQUEST_COUNT.labels(endpoint=_endpoint_label(request), status=str(exc.status_code)).inc()
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        REQUEST_COUNT.labels(endpoint=_endpoint_label(request), status="400").inc()
        return JSONResponse(
            status_code=400,
            content={"error": _validation_message(errors), "details": jsonable_encoder(errors)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path.removeprefix("/api/") if path else "unmatched"


_LOCATION_MARKERS = ("body", "query", "path", "header", "cookie")


def _validation_message(errors: list[dict[str, Any]]) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = tuple(first.get("loc", ()))
    if loc[:1] and loc[0] in _LOCATION_MARKERS:
        loc = loc[1:]
    field = ".".join(str(part) for part in loc)
    if first.get("type") == "missing":
        return f"Missing required field: {field} is required"
    if field:
        return f"Invalid field {field}: {first.get('msg')}"
    return str(first.get("msg") or "Invalid request")


app = create_app()
