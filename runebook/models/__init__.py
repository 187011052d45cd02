"""SQLAlchemy ORM models for Runebook."""

from runebook.models.base import Base
from runebook.models.user import Session, User

__all__ = [
    "Base",
    "Session",
    "User",
]
