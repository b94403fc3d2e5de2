"""Application-level errors raised by session and sync operations."""

from __future__ import annotations

from matrix_sync.infrastructure.matrix.http_client import MatrixApiError


class NotAuthenticatedError(RuntimeError):
    """Raised when an authenticated request or sync is attempted without a credential.

    This is a programming error; it is never retried.
    """


class InvalidCredentialsError(MatrixApiError):
    """Raised when the homeserver rejects login credentials (HTTP 403)."""
