"""
Process-wide service instances, exposed as FastAPI dependencies.

The progress tracker must be shared by the orchestrator (writer) and the
progress endpoints (readers), so both are built once per process.
"""

from functools import lru_cache

from config import settings
from database import async_session
from services.progress_tracker import ProgressTracker
from services.text_generator import generate
from services.workflow_orchestrator import WorkflowOrchestrator
from tools.web_search import search_web


@lru_cache(maxsize=1)
def get_progress_tracker() -> ProgressTracker:
    return ProgressTracker(
        ttl_seconds=settings.PROGRESS_TTL_SECONDS,
        undelivered_ttl_seconds=settings.PROGRESS_UNDELIVERED_TTL_SECONDS,
        capacity=settings.PROGRESS_MAX_ENTRIES,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        tracker=get_progress_tracker(),
        session_factory=async_session,
        generate=generate,
        search=search_web,
        settings=settings,
    )
