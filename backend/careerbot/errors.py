"""Domain error taxonomy.

Services raise these at the store boundary; `careerbot.main` turns them
into JSON envelopes with the matching HTTP status code.
"""


class AppError(Exception):
    """Base class for errors that map onto a client-visible status."""
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(AppError, ValueError):
    """Malformed or missing input."""
    status_code = 400


class Unauthenticated(AppError):
    """Missing, invalid or expired credential, or unknown user."""
    status_code = 401


class Forbidden(AppError):
    """Authenticated but not allowed to perform the operation."""
    status_code = 403


class NotFound(AppError):
    """Entity absent or not owned by the caller."""
    status_code = 404


class StorageError(AppError):
    """Underlying persistence failure."""
    status_code = 500
