# audit_stream/api/routers/health.py

from typing import Annotated

from fastapi import APIRouter, Depends

from audit_stream.api.dependencies import get_actor, get_correlation_id, get_pipeline
from audit_stream.application.pipeline import AuditPipeline
from audit_stream.config.settings import get_settings
from audit_stream.domain.models.audit import ActorContext

router = APIRouter()


@router.get("/health")
async def health(
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    pipeline: Annotated[AuditPipeline, Depends(get_pipeline)],
    actor: Annotated[ActorContext, Depends(get_actor)],
):
    """Health check with correlation ID, caller actor and pipeline status."""
    settings = get_settings()
    return {
        "status": "ok",
        "correlation_id": correlation_id,
        "actor": actor.actor_name,
        "environment": settings.environment,
        "version": settings.version,
        "pipeline": pipeline.status(),
    }
