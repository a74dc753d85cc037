"""Agent API router: POST /agent/connect points the pipeline at a store and installs capture."""

from typing import Annotated

from fastapi import APIRouter, Depends

from audit_stream.api.dependencies import get_pipeline
from audit_stream.application.pipeline import AuditPipeline
from audit_stream.domain.schemas.audit import ConnectionConfigRequest

router = APIRouter()


@router.post("/connect")
async def connect(
    body: ConnectionConfigRequest,
    pipeline: Annotated[AuditPipeline, Depends(get_pipeline)],
):
    """Configure the store, install audit tables and triggers, start listening.
    ConnectFailure -> 503, SetupFailure -> 500 (exception handlers in main)."""
    await pipeline.configure(body.to_config())
    return {"message": "Connected and triggers installed"}
