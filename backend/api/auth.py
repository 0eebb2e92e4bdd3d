"""
Requester identity for API routes.

Authentication happens upstream: the gateway verifies the user and forwards
the id in the X-User-Id header. Routes only ever see the resolved user id.
Tests and alternative deployments replace `get_current_user_id` through
FastAPI dependency overrides.
"""

from typing import Optional

from fastapi import Header

from errors import Unauthenticated


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """Return the authenticated user id or raise Unauthenticated (401)."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthenticated("Authentication required.")
    return x_user_id.strip()
