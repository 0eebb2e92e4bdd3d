"""
REST API routes for scripts and their version history.

Endpoints:
    GET  /api/scripts/{id}                         — Script with its current content
    GET  /api/scripts/{id}/versions?limit=<n>      — Version history, newest first
    POST /api/scripts/{id}/versions                — Save a new version
    POST /api/scripts/{id}/revert/{version_id}     — Revert to an earlier version
    GET  /api/scripts/{id}/stats                   — Length statistics of the current content
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.auth import get_current_user_id
from config import settings
from database import get_session
from services import version_store
from services.revert_service import revert_to_version


script_router = APIRouter()


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------

class SaveVersionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    hook: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    change_summary: Optional[str] = Field(default=None, max_length=500)


class VersionResponse(BaseModel):
    id: str
    script_id: str
    sequence_number: int
    content: str
    title: str
    hook: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = []
    change_summary: Optional[str] = None
    created_by: str
    created_at: Optional[str] = None


class ScriptResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    hook: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = []
    current_version_id: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RevertResponse(BaseModel):
    script: ScriptResponse
    version: VersionResponse


class ScriptStatsResponse(BaseModel):
    script_id: str
    characters: int
    words: int
    estimated_duration_minutes: int
    version_count: int
    current_sequence_number: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@script_router.get("/scripts/{script_id}", response_model=ScriptResponse)
async def get_script(
    script_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Retrieve a script the caller owns, including its current content."""
    script = await version_store.get_script(session, script_id, user_id)
    current = await version_store.get_current_version(session, script)
    return script.to_dict(content=current.content if current else "")


@script_router.get("/scripts/{script_id}/versions", response_model=List[VersionResponse])
async def list_versions(
    script_id: str,
    limit: int = Query(default=50, ge=1, le=version_store.MAX_VERSIONS_LIMIT),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """List a script's versions, newest first."""
    versions = await version_store.get_versions(session, script_id, user_id, limit=limit)
    return [v.to_dict() for v in versions]


@script_router.post(
    "/scripts/{script_id}/versions",
    response_model=VersionResponse,
    status_code=201,
)
async def save_version(
    script_id: str,
    request: SaveVersionRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Save edited content as a new version and make it current."""
    version = await version_store.save_as_version(
        session,
        script_id=script_id,
        requester_id=user_id,
        content=request.content,
        title=request.title,
        change_summary=request.change_summary,
        # Omitted metadata keeps the current values, an explicit null clears it
        **request.model_dump(include={"hook", "description", "tags"}, exclude_unset=True),
    )
    return version.to_dict()


@script_router.post(
    "/scripts/{script_id}/revert/{version_id}",
    response_model=RevertResponse,
)
async def revert_script(
    script_id: str,
    version_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """
    Revert a script to an earlier version.

    The old version is not made current again; its content is copied into a
    new version at the head of the history.
    """
    version = await revert_to_version(session, script_id, version_id, user_id)
    script = await version_store.get_script(session, script_id, user_id)
    return {
        "script": script.to_dict(content=version.content),
        "version": version.to_dict(),
    }


@script_router.get("/scripts/{script_id}/stats", response_model=ScriptStatsResponse)
async def get_script_stats(
    script_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Character and word counts plus the estimated spoken duration."""
    return await version_store.get_script_stats(
        session,
        script_id,
        user_id,
        words_per_minute=settings.WORDS_PER_MINUTE,
    )
