"""Suspicious activity API router: GET /suspicious (recent alerts)."""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from audit_stream.api.dependencies import get_pipeline
from audit_stream.application.pipeline import AuditPipeline
from audit_stream.domain.schemas.audit import alerts_to_payloads

router = APIRouter()


@router.get("")
async def recent_alerts(
    pipeline: Annotated[AuditPipeline, Depends(get_pipeline)],
    limit: Annotated[Optional[int], Query(ge=1)] = None,
):
    """Newest first; limit defaults to and is capped at recent_alert_limit."""
    alerts = await pipeline.list_recent_alerts(limit)
    return alerts_to_payloads(alerts)
