"""Typed failures surfaced by the sync engine.

Every public operation completes with a value or raises exactly one of these.
``code`` is the stable string the host sees; ``str(exc)`` carries the
message, preserving the store's own wording where the store failed.
"""

from __future__ import annotations


class HealthSyncError(Exception):
    """Base class for all sync-engine failures."""

    code = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class UnavailableError(HealthSyncError):
    """The health store does not exist on this platform."""

    code = "UNAVAILABLE"


class InvalidArgumentError(HealthSyncError):
    """Malformed caller input, detected before any store call."""

    code = "INVALID_ARGS"


class InvalidTypeError(HealthSyncError):
    """Unrecognized or unsupported sample kind."""

    code = "INVALID_TYPE"


class AuthorizationError(HealthSyncError):
    code = "AUTHORIZATION_ERROR"


class QueryError(HealthSyncError):
    code = "QUERY_ERROR"


class WriteFailedError(HealthSyncError):
    code = "SAVE_FAILED"


class DeleteFailedError(HealthSyncError):
    code = "DELETE_FAILED"


class NotFoundError(HealthSyncError):
    """A delete window contained no candidate samples."""

    code = "NOT_FOUND"
