"""User and session models."""

from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from runebook.models.base import Base


class User(Base):
    """Application user.

    ``uid`` is a snowflake assigned by the application, never by the database.
    """

    __tablename__ = "users"

    uid: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    last_login: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)

    sessions: Mapped[list[Session]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class Session(Base):
    """Login session identified by an opaque bearer key."""

    __tablename__ = "sessions"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.uid", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    remote_addr: Mapped[str] = mapped_column(String, nullable=False)

    user: Mapped[User] = relationship(back_populates="sessions")
