"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Both resolve the user through AuthService.current_user(), so the public view
is served from the user:auth:{id} cache entry when it is warm.

Layer rule: auth/dependencies.py may import from fastapi (for HTTPException /
Request) because this module is part of the FastAPI dependency injection
system. It still does not import from api/.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request


def try_get_current_user(request: Request) -> dict[str, Any] | None:
    """Authenticate the request from its Authorization: Bearer header.

    Returns the user's public view on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    components = request.app.state.components

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    payload = components.tokens.decode(auth_header[7:])
    if payload is None:
        return None
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        return None
    return components.service.current_user(user_id)


def get_current_user(request: Request) -> dict[str, Any]:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: dict = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
