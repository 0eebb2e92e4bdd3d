"""
Version Store — scripts, their immutable versions, and the current pointer.

Every write that appends a version also moves `Script.current_version_id`
in the same transaction, so a reader never sees a pointer to a version that
is not yet visible. Sequence numbers are allocated as max + 1 under a unique
constraint; a writer that loses a race rolls back and tries again on fresh
state.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import Conflict, UpstreamUnavailable
from models.script import Script
from models.script_version import ScriptVersion
from services.authorization import require_owner

logger = logging.getLogger(__name__)

MAX_SAVE_ATTEMPTS = 3
MAX_VERSIONS_LIMIT = 200

# Marks a save_as_version metadata argument the caller did not pass
UNSET: Any = object()


@asynccontextmanager
async def store_errors(session: AsyncSession, operation: str):
    """Translate driver failures into UpstreamUnavailable after rolling back."""
    try:
        yield
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(f"Record store failure during {operation}: {exc}")
        raise UpstreamUnavailable(
            f"The script store is unavailable ({operation}). Please try again."
        ) from exc


async def load_script(
    session: AsyncSession,
    script_id: str,
    for_update: bool = False,
) -> Optional[Script]:
    stmt = select(Script).where(Script.id == script_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _get_version_by_id(
    session: AsyncSession,
    version_id: Optional[str],
) -> Optional[ScriptVersion]:
    if not version_id:
        return None
    result = await session.execute(select(ScriptVersion).where(ScriptVersion.id == version_id))
    return result.scalar_one_or_none()


async def _next_sequence_number(session: AsyncSession, script_id: str) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(ScriptVersion.sequence_number), 0))
        .where(ScriptVersion.script_id == script_id)
    )
    return int(result.scalar_one()) + 1


def summarize_changes(
    previous: Optional[ScriptVersion],
    title: str,
    content: str,
    hook: Optional[str],
    description: Optional[str],
    tags: Sequence[str],
) -> str:
    """Describe what differs between the previous version and new values."""
    if previous is None:
        return "Initial version"

    changes = []
    if previous.title != title:
        changes.append("title updated")

    if previous.content != content:
        word_diff = len(content.split()) - len(previous.content.split())
        if word_diff > 0:
            changes.append(f"added {word_diff} word{'s' if word_diff != 1 else ''}")
        elif word_diff < 0:
            changes.append(f"removed {-word_diff} word{'s' if word_diff != -1 else ''}")
        else:
            changes.append("content modified")

    if previous.hook != hook:
        changes.append("hook updated")
    if previous.description != description:
        changes.append("description updated")
    if list(previous.tags or []) != list(tags or []):
        changes.append("tags updated")

    return ", ".join(changes) if changes else "minor changes"


async def create_script(
    session: AsyncSession,
    owner_id: str,
    title: str,
    content: str,
    hook: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    change_summary: str = "Initial generation",
) -> Tuple[Script, ScriptVersion]:
    """Create a script together with its first version, atomically."""
    async with store_errors(session, "create script"):
        script = Script(
            owner_id=owner_id,
            title=title,
            hook=hook,
            description=description,
            tags=list(tags or []),
        )
        session.add(script)
        await session.flush()

        version = ScriptVersion(
            script_id=script.id,
            sequence_number=1,
            content=content,
            title=title,
            hook=hook,
            description=description,
            tags=list(tags or []),
            change_summary=change_summary,
            created_by=owner_id,
        )
        session.add(version)
        await session.flush()

        script.current_version_id = version.id
        await session.commit()

    logger.info(f"Created script {script.id} (version {version.id}) for {owner_id}")
    return script, version


async def get_script(
    session: AsyncSession,
    script_id: str,
    requester_id: str,
) -> Script:
    """Retrieve a script the requester owns. Raises NotFound otherwise."""
    async with store_errors(session, "get script"):
        script = await load_script(session, script_id)
    return require_owner(script, requester_id, "Script", script_id)


async def get_current_version(
    session: AsyncSession,
    script: Script,
) -> Optional[ScriptVersion]:
    async with store_errors(session, "get current version"):
        return await _get_version_by_id(session, script.current_version_id)


async def get_version(
    session: AsyncSession,
    script_id: str,
    version_id: str,
) -> Optional[ScriptVersion]:
    """Retrieve a version only if it belongs to the given script."""
    async with store_errors(session, "get version"):
        result = await session.execute(
            select(ScriptVersion).where(
                ScriptVersion.id == version_id,
                ScriptVersion.script_id == script_id,
            )
        )
        return result.scalar_one_or_none()


async def get_versions(
    session: AsyncSession,
    script_id: str,
    requester_id: str,
    limit: int = 50,
) -> List[ScriptVersion]:
    """
    List a script's versions, newest first.

    Raises:
        NotFound: The script does not exist or the requester does not own it.
    """
    limit = max(1, min(limit, MAX_VERSIONS_LIMIT))
    async with store_errors(session, "list versions"):
        script = await load_script(session, script_id)
        require_owner(script, requester_id, "Script", script_id)
        result = await session.execute(
            select(ScriptVersion)
            .where(ScriptVersion.script_id == script_id)
            .order_by(ScriptVersion.sequence_number.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def save_as_version(
    session: AsyncSession,
    script_id: str,
    requester_id: str,
    content: str,
    title: Any = UNSET,
    hook: Any = UNSET,
    description: Any = UNSET,
    tags: Any = UNSET,
    change_summary: Optional[str] = None,
) -> ScriptVersion:
    """
    Append a new version and make it current.

    Metadata fields that are not passed keep the current version's values;
    an explicit None clears them. When no change_summary is given one is
    derived from the differences.

    Raises:
        NotFound:         The script does not exist.
        PermissionDenied: The requester does not own the script.
        Conflict:         Concurrent writers won every attempt.
    """
    for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
        async with store_errors(session, "save version"):
            script = await load_script(session, script_id, for_update=True)
            require_owner(script, requester_id, "Script", script_id, hide_existence=False)
            previous = await _get_version_by_id(session, script.current_version_id)

            base = previous or script
            fields = {
                "title": base.title if title is UNSET or title is None else title,
                "hook": base.hook if hook is UNSET else hook,
                "description": base.description if description is UNSET else description,
                "tags": list((base.tags if tags is UNSET else tags) or []),
            }
            summary = change_summary or summarize_changes(previous, content=content, **fields)

            version = ScriptVersion(
                script_id=script_id,
                sequence_number=await _next_sequence_number(session, script_id),
                content=content,
                change_summary=summary,
                created_by=requester_id,
                **fields,
            )
            session.add(version)
            try:
                await session.flush()
                script.current_version_id = version.id
                script.title = fields["title"]
                script.hook = fields["hook"]
                script.description = fields["description"]
                script.tags = fields["tags"]
                script.updated_at = datetime.now(timezone.utc)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(
                    f"Sequence race on script {script_id} "
                    f"(attempt {attempt}/{MAX_SAVE_ATTEMPTS}); retrying"
                )
                continue

        logger.info(
            f"Script {script_id} → version {version.sequence_number} ({version.id}) by {requester_id}"
        )
        return version

    raise Conflict(
        f"Script '{script_id}' is being edited concurrently. Please retry your save."
    )


async def get_script_stats(
    session: AsyncSession,
    script_id: str,
    requester_id: str,
    words_per_minute: int = 130,
) -> dict:
    """Word/character counts and estimated spoken duration of the current content."""
    script = await get_script(session, script_id, requester_id)
    current = await get_current_version(session, script)
    async with store_errors(session, "count versions"):
        result = await session.execute(
            select(func.count(ScriptVersion.id)).where(ScriptVersion.script_id == script_id)
        )
        version_count = int(result.scalar_one())

    content = current.content if current else ""
    words = len(content.split())
    return {
        "script_id": script.id,
        "characters": len(content),
        "words": words,
        "estimated_duration_minutes": max(1, round(words / words_per_minute)),
        "version_count": version_count,
        "current_sequence_number": current.sequence_number if current else None,
        "created_at": script.created_at.isoformat() if script.created_at else None,
        "updated_at": script.updated_at.isoformat() if script.updated_at else None,
    }
