"""
auth/errors.py -- Exception types raised by the auth package.

AuthServiceError is the expected, user-facing failure (bad credentials,
duplicate account, invalid name). The route layer maps it to HTTP 400 with
the message as-is, so messages here are part of the API contract.

Token verification failure is NOT an exception -- verify_token() returns
None. Only the refresh path raises, and always with one fixed message.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    """Domain error with a stable, client-safe message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RefreshNotSupportedError(AuthServiceError):
    """The configured token service cannot issue or refresh refresh tokens."""

    def __init__(self) -> None:
        super().__init__("Refresh token functionality not supported")


class InvalidRefreshTokenError(Exception):
    """Refresh token rejected.

    Signature failure, expiry, wrong token kind and a dead session all
    collapse into this one error so callers cannot tell which check failed.
    """

    def __init__(self) -> None:
        super().__init__("Invalid refresh token")
        self.message = "Invalid refresh token"


class NotFoundError(LookupError):
    """A store update targeted a record that does not exist."""
