"""
WorkflowRun model — persisted history of script generation runs.

The in-memory progress tracker is the live view while a run executes; this
table keeps the outcome after the progress record has been evicted and lets
users list their past runs.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from models.script import Base


class WorkflowRun(Base):
    """
    A persisted workflow run.

    Tracks the lifecycle: Initializing → ... → Completed | Failed.
    """

    __tablename__ = "workflow_runs"

    # The session id handed to the client
    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    topic = Column(Text, nullable=False)
    stage = Column(
        String(20),
        nullable=False,
        default="Initializing",
    )
    progress_percent = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=True)
    options = Column(JSON, nullable=False, default=dict)
    script_id = Column(String(36), nullable=True)
    error = Column(Text, nullable=True)
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
    completed_at = Column(
        DateTime(timezone=True),
        nullable=True,
    )

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "session_id": self.id,
            "owner_id": self.owner_id,
            "topic": self.topic,
            "stage": self.stage,
            "progress": self.progress_percent,
            "message": self.message,
            "options": self.options or {},
            "script_id": self.script_id,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
