# audit_stream/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from audit_stream.api.middleware import (
    ActorContextMiddleware,
    CorrelationIdMiddleware,
    RequestAuditMiddleware,
)
from audit_stream.api.routers import agent, diagnostics, health, logs, stream, suspicious
from audit_stream.application.exceptions import (
    ApplicationError,
    ConnectFailure,
    NotConnected,
    SetupFailure,
)
from audit_stream.application.pipeline import AuditPipeline
from audit_stream.config.logging import configure_logging
from audit_stream.config.settings import AppSettings, get_settings
from audit_stream.core.container import build_in_memory_pipeline, build_pipeline, initial_store_config
from audit_stream.domain.exceptions import DomainError, DomainValidationError

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


def _build(app: FastAPI, settings: AppSettings) -> AuditPipeline:
    if settings.store_backend == "memory":
        stack = build_in_memory_pipeline(settings)
        app.state.entity_store = stack.store
        return stack.pipeline
    return build_pipeline(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = _build(app, settings)
    pipeline: AuditPipeline = app.state.pipeline
    pipeline.init_hub()

    config = initial_store_config(settings)
    if config is not None:
        try:
            await pipeline.configure(config)
        except ApplicationError as e:
            # Operator can still connect through POST /agent/connect.
            logger.error("initial_store_configure_failed", extra={"error": e.message})
    yield
    await pipeline.shutdown()


def create_app(pipeline: Optional[AuditPipeline] = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    # Middleware order: last added runs first (outermost). Request flow: CorrelationId -> ActorContext -> RequestAudit.
    app.add_middleware(RequestAuditMiddleware)
    app.add_middleware(ActorContextMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(DomainValidationError)
    async def domain_validation_error_handler(request, exc: DomainValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.message})

    @app.exception_handler(DomainError)
    async def domain_error_handler(request, exc: DomainError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(ConnectFailure)
    async def connect_failure_handler(request, exc: ConnectFailure):
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.exception_handler(SetupFailure)
    async def setup_failure_handler(request, exc: SetupFailure):
        return JSONResponse(status_code=500, content={"detail": exc.message, "step": exc.step})

    @app.exception_handler(NotConnected)
    async def not_connected_handler(request, exc: NotConnected):
        return JSONResponse(status_code=409, content={"detail": exc.message})

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request, exc: ApplicationError):
        return JSONResponse(status_code=500, content={"detail": exc.message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Routers: /health, /agent, /logs, /suspicious, /stream, /diagnostics
    app.include_router(health.router)
    app.include_router(agent.router, prefix="/agent")
    app.include_router(logs.router, prefix="/logs")
    app.include_router(suspicious.router, prefix="/suspicious")
    app.include_router(stream.router)
    app.include_router(diagnostics.router, prefix="/diagnostics")
    return app


app = create_app()


def run() -> None:
    uvicorn.run("audit_stream.main:app", host=settings.api_host, port=settings.api_port, log_config=None)
