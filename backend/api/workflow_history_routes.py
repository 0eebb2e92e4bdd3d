"""
REST API routes for workflow run history.

Endpoints:
    GET  /api/workflows               — List the caller's recent workflow runs
    GET  /api/workflows/{session_id}  — Resume view of a single run
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.auth import get_current_user_id
from api.dependencies import get_orchestrator
from database import get_session
from services import version_store
from services.run_service import list_runs
from services.workflow_orchestrator import WorkflowOrchestrator


workflow_history_router = APIRouter()


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class WorkflowRunResponse(BaseModel):
    session_id: str
    topic: str
    stage: str
    progress: int
    message: Optional[str] = None
    options: Dict[str, Any] = {}
    script_id: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@workflow_history_router.get("/workflows", response_model=List[WorkflowRunResponse])
async def list_workflow_runs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """List the caller's workflow runs, most recent first."""
    async with version_store.store_errors(session, "list workflow runs"):
        runs = await list_runs(session, owner_id=user_id, limit=limit, offset=offset)
    return [r.to_dict() for r in runs]


@workflow_history_router.get("/workflows/{session_id}", response_model=WorkflowRunResponse)
async def resume_workflow(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Last recorded state of a run, whether it is still executing or finished.

    Returns 404 for unknown runs and for runs owned by someone else.
    """
    return await orchestrator.resume(session_id, user_id)
