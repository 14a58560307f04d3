"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
orchestrator do the work; these only own the domain shape.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An identity record owned by the UserStore.

    email is stored normalised (stripped, lower-cased) and is unique.
    mfa_secret is the base32 TOTP seed; it is None until the user enrolls.
    verification_token is issued at registration and mailed to the user.
    """

    name: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    mfa_secret: str | None = None
    mfa_enabled: bool = False
    verification_token: str | None = None
    email_verified_at: str | None = None
    created_at: str | None = None


@dataclass
class AuthToken:
    """Bearer credential returned by a successful authenticate() call."""

    access_token: str
    token_type: str = "Bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int = 3600


@dataclass
class MfaEnrollment:
    """Result of enroll_mfa(). The secret is shown to the user once."""

    secret: str
    provisioning_uri: str
