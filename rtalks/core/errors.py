"""
Error taxonomy for RTalks.

Every error raised by the core carries its HTTP status and a stable,
non-leaking public message. The API layer translates them into
``{"error": <message>}`` responses.
"""

from __future__ import annotations


class RTalksError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    public_message = "Internal server error"
    category = "other"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(RTalksError):
    """Malformed or incomplete request input."""

    status_code = 400
    public_message = "Invalid request"


class UploadRejectedError(ValidationError):
    """Bad declared type, oversized payload, magic-number mismatch, bad extension."""

    category = "upload"


class AuthError(RTalksError):
    """
    Authentication failure.

    The message is fixed so callers cannot tell which check failed.
    """

    status_code = 401
    public_message = "Not authorized"
    category = "auth"

    def __init__(self, reason: str | None = None):
        super().__init__(self.public_message)
        # Kept for server-side logging only
        self.reason = reason


class NotFoundError(RTalksError):
    status_code = 404
    public_message = "Not found"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")


class RateLimitError(RTalksError):
    """Too many requests in the current window; retry after ``retry_after`` seconds."""

    status_code = 429
    public_message = "Too many requests, please try again later"

    def __init__(self, route_class: str, retry_after: int):
        super().__init__(self.public_message)
        self.route_class = route_class
        self.retry_after = retry_after


class StorageError(RTalksError):
    """Upload directory unusable or a disk write failed."""

    status_code = 500
    public_message = "Storage operation failed"
    category = "upload"


class DatabaseError(RTalksError):
    status_code = 500
    public_message = "Database operation failed"
    category = "database"
