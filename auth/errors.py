"""
auth/errors.py -- Typed failures returned by the auth engine.

Every expected failure path raises a subclass of AuthError; the API layer maps
each class to one HTTP status. Messages are safe to show to clients and never
say WHICH check failed:

  InvalidCredentials  -- unknown email and wrong password share this error so
                         responses cannot be used to enumerate accounts.
  InvalidToken        -- absent, expired, revoked, forged or malformed token.
  NotVerified         -- reported distinctly; not a security-sensitive fact.
  UserAlreadyExists   -- reported distinctly; registration already reveals it.
  AuthUnavailable     -- infrastructure failure (store, entropy, deadline). The
                         underlying exception is chained for the logs only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all engine failures."""

    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class InvalidCredentials(AuthError):
    code = "bad_credentials"
    message = "Invalid email or password."


class UserAlreadyExists(AuthError):
    code = "conflict"
    message = "A user with this email already exists."


class UserNotFound(AuthError):
    code = "not_found"
    message = "User not found."


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Invalid or expired token."


class NotVerified(AuthError):
    code = "not_verified"
    message = "Email not verified."


class AuthUnavailable(AuthError):
    code = "unavailable"
    message = "Authentication service temporarily unavailable."


class EntropyUnavailable(AuthUnavailable):
    """The OS randomness source could not be read. Never degraded to a weaker source."""

    message = "Secure random source unavailable."


class OperationTimeout(AuthUnavailable):
    message = "Authentication operation timed out."
