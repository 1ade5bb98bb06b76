"""
Application-level exception hierarchy.

Route handlers translate these into HTTP responses (see ``main.py``); the
services raise them and never build HTTP responses themselves.
"""

from typing import Optional


class ReportWatchError(Exception):
    """Base exception for all business errors."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(ReportWatchError):
    """Malformed or out-of-range input. Raised before any side effect."""

    status_code = 400


class InvalidTransitionError(ValidationError):
    """Incident status change not permitted by the lifecycle."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot transition incident from '{current}' to '{target}'",
            {"current_status": current, "requested_status": target},
        )
        self.current = current
        self.target = target


class NotFoundError(ReportWatchError):
    """Referenced entity, incident or evidence row does not exist."""

    status_code = 404


class ServiceAuthError(ReportWatchError):
    """Caller is not the privileged service identity."""

    status_code = 403


class RateLimitExceededError(ReportWatchError):
    """Client fingerprint exhausted the ceiling for an action class."""

    status_code = 429

    def __init__(self, message: str, status):
        super().__init__(message, {"retry_after_seconds": status.retry_after_seconds})
        self.status = status


class StorageError(ReportWatchError):
    """The relational store failed a read or write."""


class CollaboratorUnavailable(ReportWatchError):
    """An optional AI collaborator failed, timed out or is not configured.

    Never surfaces past the enrichment service.
    """
