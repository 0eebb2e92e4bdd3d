"""
Error taxonomy for ScriptForge.

Every error carries a `kind` (stable, client-visible name), an HTTP status
used by the API layer, and a human-readable message. Store and collaborator
failures are translated into these types at the service boundary.
"""

from typing import Optional


class ScriptForgeError(Exception):
    """Base class for all domain errors."""

    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ScriptForgeError):
    """Malformed or missing request fields."""

    kind = "ValidationError"
    status_code = 400


class Unauthenticated(ScriptForgeError):
    kind = "Unauthenticated"
    status_code = 401


class PermissionDenied(ScriptForgeError):
    kind = "PermissionDenied"
    status_code = 403


class NotFound(ScriptForgeError):
    """Resource is absent, or deliberately indistinguishable from not owned."""

    kind = "NotFound"
    status_code = 404


class Conflict(ScriptForgeError):
    """A concurrent writer kept winning; the caller may retry."""

    kind = "Conflict"
    status_code = 409


class StageError(ScriptForgeError):
    """
    Failure inside a pipeline stage.

    Args:
        message:   Human-readable reason, safe to show to the client.
        kind:      Short machine-readable failure category.
        retryable: Whether the orchestrator may re-run the stage.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.kind = kind or "StageError"
        self.retryable = retryable


class UpstreamUnavailable(StageError):
    """An external collaborator (AI provider, search, record store) failed."""

    status_code = 503

    def __init__(self, message: str, kind: str = "UpstreamUnavailable") -> None:
        super().__init__(message, kind=kind, retryable=True)
