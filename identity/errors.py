"""
identity/errors.py -- Error taxonomy for the identity core.

Every failure the core reports to a caller is one of these classes. All of
them are recoverable at the request boundary; none is process-fatal. The HTTP
layer maps each class to a status code in one exception handler (api/main.py),
so route handlers raise and never build error responses by hand.

Each error carries a stable machine-readable ``code`` and a ``message`` that
is safe to show to the end user. Messages never include passwords, hashes, or
token contents.
"""

from __future__ import annotations


class IdentityError(Exception):
    """Base class for all expected identity failures."""

    code: str = "identity_error"
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(IdentityError):
    """Malformed input. Carries a per-field error list for the caller to render."""

    code = "validation_error"
    default_message = "Validation failed."

    def __init__(self, errors: list[dict[str, str]], message: str | None = None) -> None:
        self.errors = errors
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls([{"field": field, "message": message}])


class AlreadyExists(IdentityError):
    code = "already_exists"
    default_message = "An account with this email already exists."


class InvalidCredentials(IdentityError):
    """Wrong password or unknown email. The two cases are deliberately identical."""

    code = "invalid_credentials"
    default_message = "Invalid email or password."


class NotFound(IdentityError):
    code = "not_found"
    default_message = "Account not found."


class InvalidToken(IdentityError):
    """Expired, forged, or malformed session token."""

    code = "invalid_token"
    default_message = "Your session has expired. Please sign in again."
