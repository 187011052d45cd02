"""Password hashing: one-way, salted bcrypt digests."""

from __future__ import annotations

import logging
from typing import Protocol

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of input.
MAX_PASSWORD_BYTES = 72


class CredentialHasher(Protocol):
    """Capability for turning passwords into digests and checking them."""

    def hash(self, plaintext: str) -> str: ...

    def verify(self, digest: str, plaintext: str) -> bool: ...


class BcryptHasher:
    """bcrypt-backed ``CredentialHasher``.

    The salt is embedded in every digest, so hashing the same password twice
    yields different digests.  ``rounds`` is the log2 cost factor; the default
    of 12 takes a few hundred milliseconds on current hardware.
    """

    def __init__(self, rounds: int = 12) -> None:
        if not (4 <= rounds <= 31):
            msg = f"rounds must be between 4 and 31, got {rounds}"
            raise ValueError(msg)
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, plaintext: str) -> str:
        """Hash a password. Raises ValueError if it exceeds bcrypt's input limit."""
        password = plaintext.encode("utf-8")
        if len(password) > MAX_PASSWORD_BYTES:
            msg = f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
            raise ValueError(msg)
        return bcrypt.hashpw(password, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, digest: str, plaintext: str) -> bool:
        """Check a password against a digest. Never raises on malformed input."""
        password = plaintext.encode("utf-8")
        if len(password) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(password, digest.encode("utf-8"))
        except ValueError:
            logger.debug("Rejected malformed password digest", exc_info=True)
            return False
