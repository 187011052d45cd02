"""Authentication API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from runebook.api.deps import (
    get_auth_service,
    get_client_ip,
    get_session_key,
    get_settings,
    require_auth,
)
from runebook.config import Settings
from runebook.models.user import User
from runebook.schemas.auth import UserResponse
from runebook.services.auth_service import AuthService, SessionCookie

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _apply_cookie(response: Response, cookie: SessionCookie, settings: Settings) -> None:
    response.set_cookie(
        key=cookie.name,
        value=cookie.value,
        expires=cookie.expires,
        path=cookie.path,
        httponly=cookie.http_only,
        secure=not settings.debug,
        samesite="lax",
    )


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        uid=str(user.uid),
        username=user.username,
        display_name=user.display_name,
        created_at=user.created_at,
        last_login=user.last_login,
    )


@router.post("/login", response_model=UserResponse)
async def login(
    request: Request,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> UserResponse:
    """Login with username and password; sets the session cookie."""
    result = await auth.login(await request.body(), get_client_ip(request))
    _apply_cookie(response, result.cookie, settings)
    return _user_response(result.user)


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    """Delete the current session and clear the session cookie."""
    cookie = await auth.logout(get_session_key(request))
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    _apply_cookie(response, cookie, settings)
    return response


@router.get("/me", response_model=UserResponse)
async def me(
    user: Annotated[User, Depends(require_auth)],
) -> UserResponse:
    """Get current user info."""
    return _user_response(user)


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(
    request: Request,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> UserResponse:
    """Register a new user account."""
    if not settings.registration_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Registration is disabled",
        )
    user = await auth.register(await request.body())
    return _user_response(user)


@router.post("/password", status_code=204)
async def change_password(
    request: Request,
    user: Annotated[User, Depends(require_auth)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> Response:
    """Change the current user's password and sign out their other sessions."""
    await auth.change_password(user, await request.body(), session_key=get_session_key(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
