"""Authentication service: login throttling, sessions and credentials."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import cached_property
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ValidationError

from runebook.exceptions import (
    BadRequestError,
    ConflictError,
    RateLimitedError,
    UnauthorizedError,
)
from runebook.models.user import User
from runebook.schemas.auth import LoginRequest, PasswordChangeRequest, RegisterRequest
from runebook.services.datetime_service import UNIX_EPOCH, format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from runebook.config import Settings
    from runebook.services.hashing_service import CredentialHasher
    from runebook.services.id_service import SnowflakeGenerator
    from runebook.services.rate_limit_service import RateLimitRegistry, TokenBucket
    from runebook.services.session_store import SessionStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_INVALID_CREDENTIALS = "Invalid username or password"
_DUMMY_PASSWORD = "runebook-dummy-password"


@dataclass(frozen=True)
class SessionCookie:
    """Cookie directive for the transport layer to attach to a response."""

    name: str
    value: str
    expires: datetime
    path: str = "/"
    http_only: bool = True


@dataclass(frozen=True)
class LoginResult:
    user: User
    cookie: SessionCookie


def login_attempt_key(client_addr: str) -> str:
    """Rate limit key for failed logins from one network address."""
    return f"loginAttempt#{client_addr}"


def _parse_body(model: type[ModelT], raw_body: bytes | str) -> ModelT:
    try:
        return model.model_validate_json(raw_body)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise BadRequestError(f"Invalid request body: {details}") from exc


class AuthService:
    """Orchestrates login, request authentication, logout and account credentials.

    All collaborators are injected: the persistent store, the process-local
    rate limit registry, the password hasher and the user id generator.
    ``clock`` returns the current UTC time and exists so tests can move time.
    """

    def __init__(
        self,
        store: SessionStore,
        rate_limiter: RateLimitRegistry,
        hasher: CredentialHasher,
        id_generator: SnowflakeGenerator,
        settings: Settings,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._rate_limiter = rate_limiter
        self._hasher = hasher
        self._id_generator = id_generator
        self._settings = settings
        self._clock = clock

    @property
    def cookie_name(self) -> str:
        return self._settings.session_cookie_name

    @cached_property
    def _dummy_digest(self) -> str:
        return self._hasher.hash(_DUMMY_PASSWORD)

    def _verify_missing_user(self, password: str) -> bool:
        # Spend the same hashing effort as for a real user to blunt timing probes.
        return self._hasher.verify(self._dummy_digest, password)

    def _login_bucket(self, client_addr: str) -> TokenBucket:
        return self._rate_limiter.get_or_create(
            login_attempt_key(client_addr),
            self._settings.login_max_failures,
            self._settings.login_refill_seconds,
        )

    async def _authenticate(self, request: LoginRequest) -> User:
        user = await self._store.get_user(username=request.username.lower())
        if user is None:
            await asyncio.to_thread(self._verify_missing_user, request.password)
            raise UnauthorizedError(_INVALID_CREDENTIALS)
        if not await asyncio.to_thread(self._hasher.verify, user.password_hash, request.password):
            raise UnauthorizedError(_INVALID_CREDENTIALS)
        return user

    async def login(self, raw_body: bytes | str, client_addr: str) -> LoginResult:
        """Verify credentials and issue a session.

        Each attempt reserves one token from the address's bucket before the
        credentials are checked.  A failed check spends the token; a success
        or a store failure hands it back.  With no free token the attempt is
        rejected without touching the store.

        Raises:
            BadRequestError: The body is not a valid login payload.
            RateLimitedError: Too many failed attempts from ``client_addr``.
            UnauthorizedError: Unknown user or wrong password.
            InternalServerError: The store failed or timed out.
        """
        request = _parse_body(LoginRequest, raw_body)

        bucket = self._login_bucket(client_addr)
        if not bucket.try_reserve():
            logger.info("Login attempt from %s rejected by rate limit", client_addr)
            raise RateLimitedError(bucket.retry_after())

        try:
            user = await self._authenticate(request)
        except UnauthorizedError:
            bucket.commit_reservation()
            logger.info("Failed login attempt from %s", client_addr)
            raise
        except BaseException:
            bucket.release_reservation()
            raise
        bucket.release_reservation()

        cookie = await self._create_session(user, client_addr, request.remember)
        logger.info("User %s logged in from %s", user.uid, client_addr)
        return LoginResult(user=user, cookie=cookie)

    async def _create_session(self, user: User, client_addr: str, remember: bool) -> SessionCookie:
        key = secrets.token_urlsafe(self._settings.session_key_bytes)
        now = self._clock()
        if remember:
            lifetime = timedelta(days=self._settings.session_remember_days)
        else:
            lifetime = timedelta(hours=self._settings.session_expire_hours)
        expires = now + lifetime

        await self._store.create_or_replace_session(key, user.uid, expires, client_addr)
        await self._store.update_user(User(uid=user.uid), touch_last_login=True, now=now)
        user.last_login = format_iso(now)

        return SessionCookie(name=self.cookie_name, value=key, expires=expires)

    async def check_request_auth(self, session_key: str | None, remote_addr: str) -> User:
        """Resolve a session key to its owning user.

        Raises:
            UnauthorizedError: The key is missing, unknown or expired.
            InternalServerError: The store failed or timed out.
        """
        if not session_key:
            raise UnauthorizedError("Not authenticated")
        user = await self._store.get_session_owner(session_key, remote_addr, now=self._clock())
        if user is None:
            raise UnauthorizedError("Not authenticated")
        return user

    async def logout(self, session_key: str | None) -> SessionCookie:
        """Delete the session, if any, and return a cookie directive that clears it."""
        if session_key:
            await self._store.delete_session(session_key)
        return SessionCookie(name=self.cookie_name, value="", expires=UNIX_EPOCH)

    async def register(self, raw_body: bytes | str) -> User:
        """Create an account from a registration payload.

        Usernames are stored lower-cased; the submitted casing becomes the
        display name.
        """
        request = _parse_body(RegisterRequest, raw_body)
        username = request.username.lower()

        if await self._store.get_user(username=username) is not None:
            raise ConflictError("Username already taken")

        try:
            password_hash = await asyncio.to_thread(self._hasher.hash, request.password)
        except ValueError as exc:
            raise BadRequestError(str(exc)) from exc

        now = format_iso(self._clock())
        user = User(
            uid=self._id_generator.generate(),
            username=username,
            display_name=request.username,
            password_hash=password_hash,
            last_login=now,
            created_at=now,
        )
        await self._store.create_user(user)
        logger.info("Registered user %s (%s)", user.uid, username)
        return user

    async def change_password(
        self, user: User, raw_body: bytes | str, session_key: str | None = None
    ) -> None:
        """Replace the user's password digest and end their other sessions."""
        request = _parse_body(PasswordChangeRequest, raw_body)

        if not await asyncio.to_thread(
            self._hasher.verify, user.password_hash, request.current_password
        ):
            raise UnauthorizedError("Invalid current password")

        try:
            password_hash = await asyncio.to_thread(self._hasher.hash, request.new_password)
        except ValueError as exc:
            raise BadRequestError(str(exc)) from exc

        if not await self._store.update_user(User(uid=user.uid, password_hash=password_hash)):
            raise UnauthorizedError("Not authenticated")
        revoked = await self._store.delete_user_sessions(user.uid, keep_key=session_key)
        logger.info("User %s changed password, revoked %d other sessions", user.uid, revoked)

    async def cleanup(self) -> None:
        """Purge expired sessions and idle rate limit buckets."""
        deleted = await self._store.delete_expired_sessions(self._clock())
        pruned = self._rate_limiter.prune()
        logger.debug("Cleanup removed %d sessions and %d idle rate limit buckets", deleted, pruned)
