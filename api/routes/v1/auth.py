"""
api/routes/v1/auth.py -- Registration, login and MFA enrollment endpoints.

Routes:
  POST /api/v1/auth/register     -- create an account; 201
  POST /api/v1/auth/login        -- password (+ MFA code) login; returns a bearer token
  POST /api/v1/auth/mfa/enroll   -- enable TOTP for the current user (requires auth)
  GET  /api/v1/auth/me           -- current user's public view (requires auth)

Errors raised by AuthService (rate limit, bad credentials, MFA, duplicate
email, registration failure) are rendered by the AuthError handler in
api/main.py; these handlers only translate HTTP <-> service calls.

Security:
  [C1] AuthService.authenticate() equalizes timing -- never inline a lookup +
       password check here.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginRequest, MfaEnrollResponse, RegisterRequest, TokenResponse, UserResponse
from auth.dependencies import get_current_user
from auth.service import AuthService, public_view

router = APIRouter()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _service(request: Request) -> AuthService:
    return request.app.state.components.service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account and queue its verification email.

    Sync handler: bcrypt and the store calls block, so FastAPI runs this in
    its thread pool.
    """
    user = _service(request).register(body.name, body.email, body.password, ip=_client_ip(request))
    return UserResponse(**public_view(user))


@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email, password and (when enabled) a TOTP code.

    Returns the same generic error for an unknown email and a wrong password
    so account existence is not revealed.
    """
    token = _service(request).authenticate(body.email, body.password, body.mfa_code, ip=_client_ip(request))
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: dict[str, Any] = Depends(get_current_user)) -> UserResponse:
    """Return the public view of the currently authenticated user."""
    return UserResponse(**current_user)


@router.post("/auth/mfa/enroll", response_model=MfaEnrollResponse)
def enroll_mfa(request: Request, current_user: dict[str, Any] = Depends(get_current_user)) -> JSONResponse:
    """Enable TOTP for the current user and return the secret once."""
    enrollment = _service(request).enroll_mfa(current_user["id"])
    resp = JSONResponse(
        content=MfaEnrollResponse(
            secret=enrollment.secret,
            provisioning_uri=enrollment.provisioning_uri,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
