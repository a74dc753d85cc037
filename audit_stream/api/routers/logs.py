"""Logs API router: POST /logs/stream (start listening), GET /logs (recent audit records)."""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from audit_stream.api.dependencies import get_pipeline
from audit_stream.application.exceptions import NotConnected
from audit_stream.application.pipeline import AuditPipeline
from audit_stream.domain.schemas.audit import audit_records_to_payloads

router = APIRouter()


@router.post("/stream")
async def start_stream(pipeline: Annotated[AuditPipeline, Depends(get_pipeline)]):
    try:
        await pipeline.start_listening()
    except NotConnected as e:
        return {"connected": False, "message": e.message}
    return {"connected": True, "message": "Listening for audit events"}


@router.get("")
async def recent_logs(
    pipeline: Annotated[AuditPipeline, Depends(get_pipeline)],
    limit: Annotated[Optional[int], Query(ge=1)] = None,
):
    """Newest first; limit defaults to and is capped at recent_audit_limit."""
    records = await pipeline.list_recent_audit_records(limit)
    return audit_records_to_payloads(records)
