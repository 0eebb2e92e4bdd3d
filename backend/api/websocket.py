"""
WebSocket endpoint for real-time workflow progress.

Clients connect to /ws/workflows/{session_id} and receive a JSON event
whenever the progress record of the run changes. The stream ends after the
run reaches Completed or Failed.

Event format:
    {"event": "progress", "session_id": "...", "stage": "Generating", "message": "...", "progress": 50, "script_id": null}
    {"event": "workflow_complete", "session_id": "...", "script_id": "...", "progress": 100, ...}
    {"event": "workflow_failed", "session_id": "...", "message": "...", ...}
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.dependencies import get_progress_tracker
from config import settings
from services.progress_tracker import ProgressTracker, default_payload
from state import WorkflowStage


logger = logging.getLogger(__name__)

ws_router = APIRouter()

_FINAL_EVENTS = {
    WorkflowStage.COMPLETED.value: "workflow_complete",
    WorkflowStage.FAILED.value: "workflow_failed",
}


@ws_router.websocket("/ws/workflows/{session_id}")
async def workflow_websocket(
    websocket: WebSocket,
    session_id: str,
    tracker: ProgressTracker = Depends(get_progress_tracker),
):
    """
    WebSocket endpoint for live workflow progress.

    On connect: sends the current progress immediately (default payload if
    the run is not yet known).
    While running: polls the tracker and pushes every change.
    On Completed/Failed: sends a final event and closes the connection.
    """
    await websocket.accept()

    last_payload = None
    try:
        while True:
            record = tracker.get_progress(session_id)
            payload = record.to_payload() if record else default_payload(session_id)

            final_event = _FINAL_EVENTS.get(payload["stage"])
            if final_event:
                await websocket.send_text(json.dumps({"event": final_event, **payload}))
                break

            if payload != last_payload:
                await websocket.send_text(json.dumps({"event": "progress", **payload}))
                last_payload = payload

            await asyncio.sleep(settings.WS_POLL_INTERVAL_SECONDS)

        await websocket.close()
    except WebSocketDisconnect:
        logger.debug(f"WebSocket client for {session_id} disconnected")
