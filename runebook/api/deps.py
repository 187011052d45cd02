"""Shared API dependencies: settings, DB session, auth."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from runebook.config import Settings
from runebook.models.user import User
from runebook.services.auth_service import AuthService


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_auth_service(request: Request) -> AuthService:
    """Get the auth service from app state."""
    auth: AuthService = request.app.state.auth_service
    return auth


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_client_ip(request: Request) -> str:
    """Client address, honouring X-Forwarded-For only from trusted proxies."""
    settings: Settings = request.app.state.settings
    peer = request.client.host if request.client and request.client.host else "unknown"
    if peer in settings.trusted_proxy_ips:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",", maxsplit=1)[0].strip()
    return peer


def get_session_key(request: Request) -> str | None:
    """Session key from the session cookie, if present."""
    settings: Settings = request.app.state.settings
    return request.cookies.get(settings.session_cookie_name) or None


async def require_auth(
    request: Request,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> User:
    """Require a valid session. Raises UnauthorizedError otherwise."""
    return await auth.check_request_auth(get_session_key(request), get_client_ip(request))
