"""Diagnostics API router: GET /diagnostics/schema. NotConnected -> 409 (exception handler in main)."""

from typing import Annotated

from fastapi import APIRouter, Depends

from audit_stream.api.dependencies import get_pipeline
from audit_stream.application.pipeline import AuditPipeline

router = APIRouter()


@router.get("/schema")
async def schema(pipeline: Annotated[AuditPipeline, Depends(get_pipeline)]):
    return await pipeline.describe_schema()
