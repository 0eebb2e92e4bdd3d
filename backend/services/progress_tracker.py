"""
Progress Tracker — keyed store of the latest progress record per session.

Polling clients read from here; the orchestrator writes here before every
stage. Memory is bounded: records expire after a TTL (checked lazily on read
and swept on write) and the store never holds more than `capacity` entries.

A terminal record (Completed/Failed) that nobody has read yet is kept past
the normal TTL so the client's next poll still sees the outcome.
"""

from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
import threading
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

TERMINAL_STAGE_NAMES = frozenset({"Completed", "Failed"})


def _stage_name(stage) -> str:
    return getattr(stage, "value", stage)


@dataclass
class ProgressRecord:
    """Latest progress of one workflow run."""

    session_id: str
    stage: str
    message: str
    percent: int
    script_id: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    recorded_at: float = 0.0
    delivered: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGE_NAMES

    def to_payload(self) -> Dict[str, object]:
        """Serialize to the polling response format."""
        return {
            "session_id": self.session_id,
            "stage": self.stage,
            "message": self.message,
            "progress": self.percent,
            "script_id": self.script_id,
        }


def default_payload(session_id: str) -> Dict[str, object]:
    """Payload returned while no record exists for a session."""
    return {
        "session_id": session_id,
        "stage": "Initializing",
        "message": "Waiting for the workflow to start.",
        "progress": 0,
        "script_id": None,
    }


class ProgressTracker:
    """Thread-safe, TTL-evicting, capacity-bounded progress store."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        undelivered_ttl_seconds: float = 86400.0,
        capacity: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._records: "OrderedDict[str, ProgressRecord]" = OrderedDict()
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._undelivered_ttl = max(undelivered_ttl_seconds, ttl_seconds)
        self._capacity = capacity
        self._clock = clock

    def set_progress(
        self,
        session_id: str,
        stage,
        message: str,
        percent: int,
        script_id: Optional[str] = None,
    ) -> ProgressRecord:
        """
        Upsert the progress record for a session.

        The stored percent never decreases within a session; a lower value is
        raised to the previous one.

        Returns:
            A copy of the stored record.
        """
        now = self._clock()
        percent = max(0, min(100, int(percent)))

        with self._lock:
            self._purge_expired(now)
            previous = self._records.pop(session_id, None)
            if previous is not None:
                percent = max(percent, previous.percent)
                if script_id is None:
                    script_id = previous.script_id

            record = ProgressRecord(
                session_id=session_id,
                stage=_stage_name(stage),
                message=message,
                percent=percent,
                script_id=script_id,
                recorded_at=now,
            )
            self._records[session_id] = record
            self._evict_overflow()
            return replace(record)

    def get_progress(self, session_id: str) -> Optional[ProgressRecord]:
        """
        Return the latest record for a session, or None if there is none.

        Reading a terminal record marks it delivered, which makes it eligible
        for normal TTL expiry.
        """
        now = self._clock()
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            if self._is_expired(record, now):
                del self._records[session_id]
                return None
            snapshot = replace(record)
            if record.is_terminal:
                record.delivered = True
            return snapshot

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._records.pop(session_id, None)

    def sweep(self) -> int:
        """Drop every expired record. Returns the number removed."""
        with self._lock:
            return self._purge_expired(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Internal helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _is_expired(self, record: ProgressRecord, now: float) -> bool:
        age = now - record.recorded_at
        if record.is_terminal and not record.delivered:
            return age > self._undelivered_ttl
        return age > self._ttl

    def _purge_expired(self, now: float) -> int:
        expired = [sid for sid, r in self._records.items() if self._is_expired(r, now)]
        for sid in expired:
            del self._records[sid]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired progress record(s)")
        return len(expired)

    def _evict_overflow(self) -> None:
        while len(self._records) > self._capacity:
            victim = next(
                (sid for sid, r in self._records.items() if r.is_terminal and r.delivered),
                None,
            )
            if victim is None:
                victim = next(iter(self._records))
            logger.warning(f"Progress store full; evicting session {victim}")
            del self._records[victim]
