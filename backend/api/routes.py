"""
REST API routes for generation workflows.

Endpoints:
    GET  /api/health                              — Health check
    POST /api/workflows                           — Start a generation workflow
    GET  /api/workflows/progress?sessionId=<id>   — Poll the progress of a workflow
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel

from api.auth import get_current_user_id
from api.dependencies import get_orchestrator, get_progress_tracker
from services.progress_tracker import ProgressTracker, default_payload
from services.workflow_orchestrator import WorkflowOrchestrator
from state import GenerationRequest, WorkflowStage


router = APIRouter()


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class WorkflowStartResponse(BaseModel):
    session_id: str
    status: str
    message: str


class ProgressResponse(BaseModel):
    session_id: str
    stage: str
    message: str
    progress: int
    script_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "ScriptForge API"}


@router.post("/workflows", response_model=WorkflowStartResponse, status_code=202)
async def start_workflow(
    request: GenerationRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Start a new script generation workflow.

    The workflow executes asynchronously in the background. Poll
    GET /api/workflows/progress?sessionId=<id> for progress, or connect to
    the WebSocket at /ws/workflows/{session_id} for live updates.
    """
    session_id = await orchestrator.start(
        request,
        owner_id=user_id,
        schedule=background_tasks.add_task,
    )
    return WorkflowStartResponse(
        session_id=session_id,
        status=WorkflowStage.INITIALIZING.value,
        message=(
            "Workflow started. Poll "
            f"/api/workflows/progress?sessionId={session_id} for updates."
        ),
    )


@router.get("/workflows/progress", response_model=ProgressResponse)
async def get_workflow_progress(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    tracker: ProgressTracker = Depends(get_progress_tracker),
):
    """
    Latest progress of a workflow.

    Unknown or expired sessions get a default "Initializing" payload rather
    than an error, so a client may start polling before the run registers.
    """
    record = tracker.get_progress(session_id)
    if record is None:
        return default_payload(session_id)
    return record.to_payload()
