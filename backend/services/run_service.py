"""
Run Service — CRUD operations for persisted workflow runs.

Works alongside the in-memory progress tracker: the tracker is the live view
polled by clients, these rows keep the outcome once the tracker has evicted
a session.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.workflow_run import WorkflowRun

TERMINAL_STAGES = ("Completed", "Failed")


async def create_run(
    session: AsyncSession,
    session_id: str,
    owner_id: str,
    topic: str,
    options: Optional[dict] = None,
) -> WorkflowRun:
    """Create a new workflow run record."""
    run = WorkflowRun(
        id=session_id,
        owner_id=owner_id,
        topic=topic,
        stage="Initializing",
        progress_percent=0,
        message="Workflow queued.",
        options=options or {},
    )
    session.add(run)
    await session.commit()
    await session.refresh(run)
    return run


async def get_run(session: AsyncSession, session_id: str) -> Optional[WorkflowRun]:
    """Get a workflow run by session id."""
    result = await session.execute(select(WorkflowRun).where(WorkflowRun.id == session_id))
    return result.scalar_one_or_none()


async def list_runs(
    session: AsyncSession,
    owner_id: str,
    limit: int = 50,
    offset: int = 0,
) -> List[WorkflowRun]:
    """List a user's workflow runs, most recent first."""
    result = await session.execute(
        select(WorkflowRun)
        .where(WorkflowRun.owner_id == owner_id)
        .order_by(WorkflowRun.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_unfinished_runs(session: AsyncSession) -> List[WorkflowRun]:
    """Runs that never reached a terminal stage."""
    result = await session.execute(
        select(WorkflowRun).where(WorkflowRun.stage.not_in(TERMINAL_STAGES))
    )
    return list(result.scalars().all())


async def update_run(
    session: AsyncSession,
    session_id: str,
    updates: dict,
) -> Optional[WorkflowRun]:
    """Update a workflow run with the given fields."""
    run = await get_run(session, session_id)
    if run is None:
        return None

    for key, value in updates.items():
        if hasattr(run, key):
            setattr(run, key, value)

    # Auto-set completed_at when the stage becomes terminal
    if updates.get("stage") in TERMINAL_STAGES:
        run.completed_at = datetime.now(timezone.utc)

    await session.commit()
    await session.refresh(run)
    return run
