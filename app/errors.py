"""Domain error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations


class MyMoviesError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(MyMoviesError):
    status_code = 401

    def __init__(self, detail: str):
        super().__init__(f"Authentication failed: {detail}")


class MissingAuthHeaderError(MyMoviesError):
    status_code = 401
    default_message = "Missing or invalid Authorization header"


class InvalidCredentialsError(MyMoviesError):
    status_code = 401
    default_message = "Invalid credentials"


class TokenExpiredError(MyMoviesError):
    status_code = 401
    default_message = "Token expired"


class ForbiddenError(MyMoviesError):
    status_code = 403
    default_message = "Permission denied"


class NotFoundError(MyMoviesError):
    status_code = 404
    default_message = "Item not found"


class UserNotFoundError(NotFoundError):
    default_message = "User not found"


class DuplicateError(MyMoviesError):
    """A unique constraint was violated; ``field`` names the offending column."""

    status_code = 400

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Duplicate entry: {field}")


class ValidationError(MyMoviesError):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(f"Validation error: {detail}")


class InvalidResetTokenError(MyMoviesError):
    status_code = 400
    default_message = "Invalid or expired reset token"


class ConflictError(MyMoviesError):
    status_code = 409
    default_message = "Conflict"


class UnavailableError(MyMoviesError):
    """The connection pool could not hand out a connection in time."""

    status_code = 503
    default_message = "Service temporarily unavailable"


class ExternalApiError(MyMoviesError):
    def __init__(self, detail: str):
        super().__init__(f"External API error: {detail}")


class CsvImportError(MyMoviesError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"CSV import error: {detail}")


class ConfigurationError(MyMoviesError):
    def __init__(self, detail: str):
        super().__init__(f"Configuration error: {detail}")


class DatabaseError(MyMoviesError):
    def __init__(self, detail: str):
        super().__init__(f"Database error: {detail}")


class InternalError(MyMoviesError):
    def __init__(self, detail: str):
        super().__init__(f"Internal error: {detail}")
