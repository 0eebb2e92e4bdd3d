"""
Ownership checks shared by every service that touches user-owned resources.

`is_owner` is the single predicate; `require_owner` turns it into the right
error. Read paths hide other users' resources behind NotFound so existence
never leaks; write paths that have already revealed existence may answer
PermissionDenied instead.
"""

from typing import Any, Optional

from errors import NotFound, PermissionDenied


def is_owner(resource: Any, requester_id: Optional[str]) -> bool:
    """True when the resource exists and belongs to the requester."""
    if resource is None or not requester_id:
        return False
    return getattr(resource, "owner_id", None) == requester_id


def require_owner(
    resource: Any,
    requester_id: Optional[str],
    label: str,
    resource_id: str,
    hide_existence: bool = True,
) -> Any:
    """
    Return the resource if the requester owns it, otherwise raise.

    Raises:
        NotFound:         The resource is missing, or is not owned and
                          hide_existence is True.
        PermissionDenied: The resource exists, is not owned, and
                          hide_existence is False.
    """
    if resource is None:
        raise NotFound(f"{label} '{resource_id}' not found.")
    if not is_owner(resource, requester_id):
        if hide_existence:
            raise NotFound(f"{label} '{resource_id}' not found.")
        raise PermissionDenied(f"You do not have permission to modify {label.lower()} '{resource_id}'.")
    return resource
