"""Domain errors raised by the service layer.

Each error carries a short, stable ``reason`` string. The HTTP layer maps the
error class to a status code and returns the reason as ``detail``.
"""

from __future__ import annotations


class PhiliaError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(PhiliaError):
    status_code = 400


class Unauthenticated(PhiliaError):
    status_code = 401


class Forbidden(PhiliaError):
    status_code = 403


class NotFound(PhiliaError):
    status_code = 404


class Conflict(PhiliaError):
    status_code = 409


class CapacityExceeded(Conflict):
    """Raised when a going RSVP would push an event past its capacity."""

    def __init__(self, reason: str = "Event is at capacity"):
        super().__init__(reason)


class DuplicateReport(Conflict):
    """Raised when a reporter already holds an open report for a target."""

    def __init__(self, reason: str = "You have already reported this content"):
        super().__init__(reason)


class RateLimited(PhiliaError):
    status_code = 429

    def __init__(self, reason: str = "Too many requests", *, retry_after: int = 0):
        super().__init__(reason)
        self.retry_after = retry_after


class DependencyError(PhiliaError):
    """An external collaborator (geocoder, bot check) failed."""

    status_code = 502
