"""
Civic Federation - FastAPI Application Factory

Builds the HTTP service around a ProposalIndex and a
VerifierRegistrySyncEngine. Components may be injected (tests, embedding
in another service) or are assembled from Settings.
"""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from civic_federation.config import Settings, get_settings
from civic_federation.errors import FederationError
from civic_federation.federation.index import ProposalIndex
from civic_federation.monitoring import bind_context, configure_logging, unbind_context
from civic_federation.verification.registry_sync import (
    HttpRegistryFetcher,
    InMemoryRegistryFetcher,
    JsonFileRegistryFetcher,
    RegistryFetcher,
    VerifierRegistrySyncEngine,
)

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES = {
    "validation": 422,
    "fetch": 502,
    "timeout": 504,
    "consistency_violation": 500,
}


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind an X-Correlation-ID to every log line emitted while serving a request."""

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        bind_context(correlation_id=correlation_id)
        try:
            response = await call_next(request)
        finally:
            unbind_context("correlation_id")
        response.headers[self.HEADER_NAME] = correlation_id
        return response


def build_registry_fetcher(settings: Settings) -> RegistryFetcher:
    """Pick the registry source configured in settings."""
    if settings.registry_directory:
        return JsonFileRegistryFetcher(settings.registry_directory)
    if settings.registry_gateway_url:
        return HttpRegistryFetcher(
            settings.registry_gateway_url,
            timeout_seconds=settings.registry_fetch_timeout_seconds,
        )
    logger.warning(
        "registry_source_not_configured",
        hint="Set REGISTRY_DIRECTORY or REGISTRY_GATEWAY_URL",
    )
    return InMemoryRegistryFetcher()


def create_app(
    index: ProposalIndex | None = None,
    engine: VerifierRegistrySyncEngine | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        index: Proposal index to serve; built from settings when omitted
        engine: Registry sync engine to serve; built from settings when omitted
        settings: Application settings; defaults to the cached environment settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    load_on_startup = index is None and bool(settings.proposal_store_path)
    index = index or ProposalIndex.from_settings(settings)
    engine = engine or VerifierRegistrySyncEngine.from_settings(
        build_registry_fetcher(settings), settings=settings
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if load_on_startup:
            await index.load()
        logger.info("civic_federation_started", environment=settings.app_env)
        try:
            yield
        finally:
            await index.close()
            for component in (engine.fetcher, getattr(index.coordinator, "transport", None)):
                aclose = getattr(component, "aclose", None)
                if aclose is not None:
                    await aclose()
            logger.info("civic_federation_stopped")

    app = FastAPI(
        title="Civic Federation",
        description="Verifier registry synchronization and regional proposal federation",
        version="1.0.0",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.index = index
    app.state.engine = engine

    app.add_middleware(CorrelationIdMiddleware)

    # Exception handlers
    @app.exception_handler(FederationError)
    async def federation_error_handler(request: Request, exc: FederationError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
        if exc.kind == "validation":
            logger.info("request_rejected", path=str(request.url.path), reason=exc.message)
        elif exc.kind == "consistency_violation":
            logger.critical(
                "consistency_violation",
                path=str(request.url.path),
                error=exc.message,
                details=exc.details,
            )
        else:
            logger.warning("request_failed", path=str(request.url.path), kind=exc.kind, error=exc.message)
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.kind, "message": exc.message, **exc.details},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        error = "not_found" if exc.status_code == 404 else "http_error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": error, "message": exc.detail, "path": str(request.url.path)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Field location and error type only; submitted values are not echoed
        details = [
            {
                "loc": list(error.get("loc", [])),
                "type": error.get("type", "unknown"),
                "msg": error.get("msg", "Validation failed"),
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={"error": "validation", "message": "Request validation failed", "details": details},
        )

    from civic_federation.api import routes

    app.include_router(routes.router)
    return app


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json or settings.is_production)
    uvicorn.run(create_app(settings=settings), host=settings.api_host, port=settings.api_port)
