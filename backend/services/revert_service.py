"""
Revert Service — restore a script's content to an earlier version.

A revert never rewinds the current pointer to an old version id. It appends
a brand-new version that copies the target's content and metadata, so the
history stays append-only and a revert can itself be reverted.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFound
from models.script_version import ScriptVersion
from services import version_store
from services.authorization import require_owner

logger = logging.getLogger(__name__)


async def revert_to_version(
    session: AsyncSession,
    script_id: str,
    version_id: str,
    requester_id: str,
) -> ScriptVersion:
    """
    Make the target version's content current by appending a copy of it.

    Returns:
        The newly created head version.

    Raises:
        NotFound:         The script or the version does not exist, or the
                          version belongs to a different script.
        PermissionDenied: The requester does not own the script.
    """
    async with version_store.store_errors(session, "load script for revert"):
        script = await version_store.load_script(session, script_id)
    require_owner(script, requester_id, "Script", script_id, hide_existence=False)

    target = await version_store.get_version(session, script_id, version_id)
    if target is None:
        raise NotFound(f"Version '{version_id}' not found for script '{script_id}'.")

    new_version = await version_store.save_as_version(
        session,
        script_id=script_id,
        requester_id=requester_id,
        content=target.content,
        title=target.title,
        hook=target.hook,
        description=target.description,
        tags=list(target.tags or []),
        change_summary=f"Reverted to version {target.sequence_number}",
    )
    logger.info(
        f"Script {script_id} reverted to version {target.sequence_number} "
        f"as version {new_version.sequence_number}"
    )
    return new_version
