"""Realtime stream: WS /stream pushes audit_event and suspicion_alert messages."""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from audit_stream.api.dependencies import get_pipeline
from audit_stream.application.pipeline import AuditPipeline

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/stream")
async def stream(websocket: WebSocket, pipeline: Annotated[AuditPipeline, Depends(get_pipeline)]):
    hub = pipeline.init_hub()
    await websocket.accept()
    hub.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "Invalid JSON"})
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        hub.disconnect(websocket)
    except Exception as e:
        logger.error("websocket_error", extra={"error": str(e)})
        hub.disconnect(websocket)
