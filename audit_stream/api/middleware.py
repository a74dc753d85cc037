"""API middleware: correlation ID, actor context, request audit."""

import json
import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from audit_stream.core.context import correlation_id_ctx
from audit_stream.domain.models.audit import ActorContext

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
ACTOR_HEADER = "X-Actor-Name"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate or preserve correlation ID; attach to request.state, response header, and logging context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_id_ctx.set(correlation_id)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class ActorContextMiddleware(BaseHTTPMiddleware):
    """Read X-Actor-Name into a request-scoped ActorContext. Missing or blank means "System"."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.actor = ActorContext.from_optional(request.headers.get(ACTOR_HEADER))
        return await call_next(request)


class RequestAuditMiddleware(BaseHTTPMiddleware):
    """After response: log structured request audit (correlation_id, actor, path, method, status_code)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        correlation_id = getattr(request.state, "correlation_id", None)
        actor = getattr(request.state, "actor", None)
        audit_event = {
            "event": "request_audit",
            "correlation_id": correlation_id,
            "actor": actor.actor_name if actor is not None else None,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
        }
        logger.info(json.dumps(audit_event))
        return response
