"""
Error taxonomy for the API.

Every error carries a fixed HTTP status and a fixed client-facing message.
The optional `detail` is for server-side logs only and is never rendered.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    status_code: int = 500
    message: str = "An internal error occurred."

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail


# ---- OAuth2 flow ----


class UnsupportedProvider(AppError):
    status_code = 400
    message = "Invalid provider was presented."


class MissingCode(AppError):
    status_code = 400
    message = "The request is missing OAuth2 code."


class MissingVerifier(AppError):
    status_code = 400
    message = "The request is missing OAuth2 PKCE code."


class InvalidState(AppError):
    status_code = 400
    message = "The OAuth2 state is invalid."


class InvalidGrant(AppError):
    status_code = 400
    message = "The OAuth2 token is invalid."


class UpstreamIdentityError(AppError):
    status_code = 502
    message = "Could not fetch OAuth2 account details."


# ---- Access control ----


class Unauthorized(AppError):
    status_code = 401
    message = "You are not authorized to access this resource."


class NotFound(AppError):
    status_code = 404
    message = "The resource you are looking for could not be found."


class ValidationFailed(AppError):
    status_code = 400
    message = "The request body is in malformed format."


# ---- Infrastructure ----


class StoreUnavailable(AppError):
    status_code = 500
    message = "Could not access the session store."


class DatabaseUnavailable(AppError):
    status_code = 500
    message = "Could not access the database."


class InternalError(AppError):
    status_code = 500
    message = "An internal error occurred."


class UniqueConflict(Exception):
    """Raised by repositories when an insert violates a uniqueness constraint."""
