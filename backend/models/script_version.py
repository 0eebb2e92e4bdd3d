"""
ScriptVersion model — an immutable, append-only snapshot of a script.

Rows are never updated or deleted. `(script_id, sequence_number)` is unique,
so two writers racing for the same next number cannot both commit.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    event,
)

from models.script import Base


class ImmutableVersionError(RuntimeError):
    """Raised when code tries to modify a persisted ScriptVersion."""


class ScriptVersion(Base):
    __tablename__ = "script_versions"
    __table_args__ = (
        UniqueConstraint("script_id", "sequence_number", name="uq_script_versions_sequence"),
    )

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    script_id = Column(
        String(36),
        ForeignKey("scripts.id"),
        nullable=False,
        index=True,
    )
    sequence_number = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    title = Column(String(500), nullable=False)
    hook = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    change_summary = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "id": self.id,
            "script_id": self.script_id,
            "sequence_number": self.sequence_number,
            "content": self.content,
            "title": self.title,
            "hook": self.hook,
            "description": self.description,
            "tags": list(self.tags or []),
            "change_summary": self.change_summary,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(ScriptVersion, "before_update")
def _reject_version_update(mapper, connection, target) -> None:
    raise ImmutableVersionError(
        f"Script version '{target.id}' is immutable and cannot be updated."
    )
