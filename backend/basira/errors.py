from __future__ import annotations


class ApiError(Exception):
    """Base for errors that map directly onto an HTTP response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class InvalidState(ApiError):
    status_code = 400
    default_message = "Property is not pending approval"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation failed"


class TooManyRequests(ApiError):
    status_code = 429
    default_message = "Too many requests"
