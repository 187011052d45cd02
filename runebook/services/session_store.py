"""Persistent store access for users and sessions.

The auth service only talks to the store through the ``SessionStore``
protocol.  ``SqlSessionStore`` implements it on top of async SQLAlchemy and
bounds every operation with a timeout; any database failure or timeout is
surfaced as ``InternalServerError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, TypeVar

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from runebook.exceptions import ConflictError, InternalServerError
from runebook.models.user import Session, User
from runebook.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionStore(Protocol):
    """Operations the auth core needs from the persistent store."""

    async def get_user(self, uid: int | None = None, username: str | None = None) -> User | None:
        ...

    async def create_user(self, user: User) -> None: ...

    async def update_user(
        self, user: User, touch_last_login: bool = False, now: datetime | None = None
    ) -> bool: ...

    async def create_or_replace_session(
        self, key: str, user_id: int, expires_at: datetime, remote_addr: str
    ) -> None: ...

    async def get_session_owner(
        self, key: str, remote_addr: str, now: datetime | None = None
    ) -> User | None: ...

    async def delete_session(self, key: str) -> None: ...

    async def delete_user_sessions(self, user_id: int, keep_key: str | None = None) -> int: ...

    async def delete_expired_sessions(self, now: datetime | None = None) -> int: ...


class SqlSessionStore:
    """``SessionStore`` backed by the SQLAlchemy ``users`` and ``sessions`` tables.

    Args:
        session_factory: Factory producing ``AsyncSession`` objects.
        timeout: Upper bound in seconds for each store operation.
        bind_address: Reject sessions presented from a different address than
            the one they were created from.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 5.0,
        bind_address: bool = False,
    ) -> None:
        if timeout <= 0:
            msg = f"timeout must be > 0, got {timeout}"
            raise ValueError(msg)
        self._session_factory = session_factory
        self._timeout = timeout
        self._bind_address = bind_address

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    return await work(session)
        except TimeoutError as exc:
            raise InternalServerError(
                f"Store operation {operation} timed out after {self._timeout}s"
            ) from exc
        except SQLAlchemyError as exc:
            raise InternalServerError(f"Store operation {operation} failed: {exc}") from exc

    async def get_user(self, uid: int | None = None, username: str | None = None) -> User | None:
        """Find a user by id or (already lower-cased) username."""
        conditions = []
        if uid is not None:
            conditions.append(User.uid == uid)
        if username:
            conditions.append(User.username == username)
        if not conditions:
            return None

        async def work(session: AsyncSession) -> User | None:
            result = await session.execute(select(User).where(or_(*conditions)).limit(1))
            return result.scalar_one_or_none()

        return await self._run("get_user", work)

    async def create_user(self, user: User) -> None:
        """Insert a new user. Raises ConflictError if the id or username is taken."""

        async def work(session: AsyncSession) -> None:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("Username already taken") from exc

        await self._run("create_user", work)

    async def update_user(
        self, user: User, touch_last_login: bool = False, now: datetime | None = None
    ) -> bool:
        """Merge non-empty fields of ``user`` into the stored record.

        ``touch_last_login`` stamps ``last_login`` with ``now`` (default: the
        current time).  Returns False if no user with ``user.uid`` exists.
        """
        stamp = format_iso(now or now_utc())

        async def work(session: AsyncSession) -> bool:
            stored = await session.get(User, user.uid)
            if stored is None:
                return False
            if touch_last_login:
                stored.last_login = stamp
            if user.display_name:
                stored.display_name = user.display_name
            if user.password_hash:
                stored.password_hash = user.password_hash
            await session.commit()
            return True

        return await self._run("update_user", work)

    async def create_or_replace_session(
        self, key: str, user_id: int, expires_at: datetime, remote_addr: str
    ) -> None:
        """Persist a session, overwriting any existing row with the same key."""

        async def work(session: AsyncSession) -> None:
            await session.merge(
                Session(
                    key=key,
                    user_id=user_id,
                    expires_at=format_iso(expires_at),
                    created_at=format_iso(now_utc()),
                    remote_addr=remote_addr,
                )
            )
            await session.commit()

        await self._run("create_or_replace_session", work)

    async def get_session_owner(
        self, key: str, remote_addr: str, now: datetime | None = None
    ) -> User | None:
        """Return the user owning a live session, or None if absent or expired."""
        cutoff = format_iso(now or now_utc())
        stmt = (
            select(User)
            .join(Session, Session.user_id == User.uid)
            .where(Session.key == key, Session.expires_at > cutoff)
        )
        if self._bind_address:
            stmt = stmt.where(Session.remote_addr == remote_addr)

        async def work(session: AsyncSession) -> User | None:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run("get_session_owner", work)

    async def delete_session(self, key: str) -> None:
        """Delete a session by key. Unknown keys are ignored."""

        async def work(session: AsyncSession) -> None:
            await session.execute(delete(Session).where(Session.key == key))
            await session.commit()

        await self._run("delete_session", work)

    async def delete_user_sessions(self, user_id: int, keep_key: str | None = None) -> int:
        """Delete every session of a user except ``keep_key``. Returns the count."""
        stmt = delete(Session).where(Session.user_id == user_id)
        if keep_key is not None:
            stmt = stmt.where(Session.key != keep_key)

        async def work(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            await session.commit()
            return int(result.rowcount or 0)

        return await self._run("delete_user_sessions", work)

    async def delete_expired_sessions(self, now: datetime | None = None) -> int:
        """Delete sessions whose expiry is at or before ``now``. Returns the count."""
        cutoff = format_iso(now or now_utc())

        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(Session).where(Session.expires_at <= cutoff))
            await session.commit()
            return int(result.rowcount or 0)

        count = await self._run("delete_expired_sessions", work)
        if count:
            logger.info("Deleted %d expired sessions", count)
        return count
