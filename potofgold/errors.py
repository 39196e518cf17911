"""
potofgold.errors — Error Taxonomy
==================================

Every failure a request handler can surface to a client.  Services raise
these; :mod:`potofgold.api.main` renders them as
``{"error": <code>, "message": <text>}`` with the matching HTTP status.

Cheat-detection outcomes are deliberately reported as a plain
:class:`InvalidArgument` so clients cannot learn which signal fired.
"""

from __future__ import annotations


class GameError(Exception):
    """Base class for all client-visible errors."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(GameError):
    """Missing or invalid caller identity."""

    code = "unauthenticated"
    status_code = 401


class PermissionDenied(GameError):
    """Caller does not own the session, or the account is suspended."""

    code = "permission-denied"
    status_code = 403


class InvalidArgument(GameError):
    """Failed checkpoint/score validation or malformed input."""

    code = "invalid-argument"
    status_code = 400


class NotFound(GameError):
    code = "not-found"
    status_code = 404


class FailedPrecondition(GameError):
    """Operation on a session that is not in the required state."""

    code = "failed-precondition"
    status_code = 409


class ResourceExhausted(GameError):
    """Rate limit exceeded."""

    code = "resource-exhausted"
    status_code = 429

    def __init__(self, message: str, retry_after: int = 1, **details) -> None:
        super().__init__(message, retry_after=retry_after, **details)
        self.retry_after = retry_after
