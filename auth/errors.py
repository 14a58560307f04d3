"""
auth/errors.py -- Failure kinds raised by the auth core.

Every AuthError carries the HTTP-equivalent status_code and a stable machine
code, so the HTTP adapter renders them without a lookup table:

  RateLimitExceeded   429  retry after retry_after seconds; never retried internally
  InvalidCredentials  401  unknown email or wrong password (deliberately indistinguishable)
  MfaCodeRequired     428  MFA-enabled user submitted no code
  InvalidMfaCode      401  code outside the accepted window, or already consumed
  DuplicateEmail      409  the store reported a uniqueness violation
  PasswordTooLong     422  password exceeds the 72-byte bcrypt input limit
  RegistrationFailed  500  generic envelope; the real cause goes to logs and monitoring

StoreError is not an AuthError: it is an internal persistence fault that the
orchestrator folds into RegistrationFailed.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for failures that are safe to show to the caller."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class RateLimitExceeded(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many attempts."

    def __init__(self, message: str | None = None, retry_after: int = 60, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.context = dict(context or {})

    def get_context_value(self, key: str, default: Any = None) -> Any:
        return self.context.get(key, default)


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class MfaCodeRequired(AuthError):
    status_code = 428
    code = "mfa_required"
    default_message = "MFA code required."


class InvalidMfaCode(AuthError):
    status_code = 401
    code = "invalid_mfa_code"
    default_message = "Invalid MFA code."


class DuplicateEmail(AuthError):
    status_code = 409
    code = "duplicate_email"
    default_message = "A user with that email already exists."


class PasswordTooLong(AuthError):
    status_code = 422
    code = "password_too_long"
    default_message = "Password must be at most 72 bytes."


class RegistrationFailed(AuthError):
    status_code = 500
    code = "registration_failed"
    default_message = "Registration failed. Please try again."


class StoreError(Exception):
    """Unexpected persistence failure (connection lost, schema mismatch, ...)."""
