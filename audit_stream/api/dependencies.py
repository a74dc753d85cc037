"""FastAPI dependency injection: pipeline, actor, correlation_id."""

from fastapi import Request
from starlette.requests import HTTPConnection

from audit_stream.application.pipeline import AuditPipeline
from audit_stream.domain.models.audit import ActorContext


def get_pipeline(connection: HTTPConnection) -> AuditPipeline:
    """Return the process pipeline built in the lifespan (works for HTTP and WebSocket routes)."""
    return connection.app.state.pipeline


def get_actor(request: Request) -> ActorContext:
    """Extract ActorContext from request.state (set by middleware)."""
    return getattr(request.state, "actor", None) or ActorContext()


def get_correlation_id(request: Request) -> str:
    """Extract correlation_id from request.state (set by middleware)."""
    return getattr(request.state, "correlation_id", "") or ""
