"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace. Deliverability is proven by the
# verification email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"

# ---------------------------------------------------------------------------
# Request models
#
# Whitespace is stripped per field. Passwords are taken verbatim so the API
# and the CLI (getpass) hash and compare the same string.
# ---------------------------------------------------------------------------

StrippedName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
StrippedCode = Annotated[str, StringConstraints(strip_whitespace=True, max_length=10)]


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    name: StrippedName
    email: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    ]
    password: str = Field(min_length=8, max_length=MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # bcrypt reads at most 72 bytes; a multibyte password can be short in
        # characters and still exceed that.
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)
    mfa_code: Optional[StrippedCode] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash or MFA secret."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    mfa_enabled: bool = False
    email_verified_at: Optional[str] = None
    created_at: Optional[str] = None


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class MfaEnrollResponse(BaseModel):
    """Response for POST /api/v1/auth/mfa/enroll. The secret is shown once."""

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
