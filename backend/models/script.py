"""
Script model — a user-owned document with a movable current-version pointer.

The script row mirrors the metadata (title, hook, description, tags) of its
current version so lists can be rendered without joining versions. Content
itself lives only in ScriptVersion rows.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass


class Script(Base):
    """A script owned by a single user."""

    __tablename__ = "scripts"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    hook = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    # Always set in the same transaction that creates the referenced version
    current_version_id = Column(String(36), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self, content: Optional[str] = None) -> dict:
        """Serialize to a JSON-friendly dict, optionally with current content."""
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "hook": self.hook,
            "description": self.description,
            "tags": list(self.tags or []),
            "current_version_id": self.current_version_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if content is not None:
            data["content"] = content
        return data
