"""Application-level exception types.

Every public operation of the auth core either returns normally or raises one
of the ``ServiceError`` subclasses below.  The core never decides transport
details; the handlers in ``runebook/main.py`` map each kind to a fixed HTTP
status.

Convention:
- ``InternalServerError`` — store failures, timeouts and anything else whose
  details must never reach clients.  The global handler logs the full chain
  at ERROR and returns a generic "Internal server error" (500).
- ``BadRequestError``, ``UnauthorizedError``, ``RateLimitedError`` and
  ``ConflictError`` — expected traffic.  Their message is safe to forward to
  clients and they are only logged at low severity.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors surfaced by the auth core."""

    default_message = "Service error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class BadRequestError(ServiceError):
    """Malformed input that the client can fix."""

    default_message = "Bad request"


class UnauthorizedError(ServiceError):
    """Bad credentials or an absent/expired session.

    Deliberately carries the same message for unknown users and wrong
    passwords so responses do not reveal which usernames exist.
    """

    default_message = "Unauthorized"


class RateLimitedError(ServiceError):
    """The client exhausted its login attempt allowance."""

    default_message = "Too many failed login attempts"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ConflictError(ServiceError):
    """A resource with the same natural key already exists."""

    default_message = "Conflict"


class InternalServerError(ServiceError):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``runebook/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """

    default_message = "Internal server error"
