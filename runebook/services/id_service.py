"""Time-ordered snowflake identifiers for users."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

# 2019-01-01T00:00:00Z in milliseconds.
DEFAULT_EPOCH_MS = 1_546_300_800_000

NODE_BITS = 10
SEQUENCE_BITS = 12
MAX_NODE_ID = (1 << NODE_BITS) - 1
_SEQUENCE_MASK = (1 << SEQUENCE_BITS) - 1
_TIMESTAMP_SHIFT = NODE_BITS + SEQUENCE_BITS


def _time_ms() -> int:
    return time.time_ns() // 1_000_000


class SnowflakeGenerator:
    """Generate unique, roughly time-sortable 63-bit integer ids.

    Layout (most to least significant): 41 bits of milliseconds since
    ``epoch_ms``, 10 bits of node id, 12 bits of per-millisecond sequence.
    Generators with distinct ``node_id`` values never collide.  A single
    generator is safe to share between threads and never goes backwards,
    even if the wall clock does.
    """

    def __init__(
        self,
        node_id: int = 0,
        epoch_ms: int = DEFAULT_EPOCH_MS,
        clock: Callable[[], int] = _time_ms,
    ) -> None:
        if not (0 <= node_id <= MAX_NODE_ID):
            msg = f"node_id must be between 0 and {MAX_NODE_ID}, got {node_id}"
            raise ValueError(msg)
        self._node_id = node_id
        self._epoch_ms = epoch_ms
        self._clock = clock
        self._last_ms = -1
        self._sequence = 0
        self._lock = threading.Lock()

    @property
    def node_id(self) -> int:
        return self._node_id

    def generate(self) -> int:
        """Return the next id."""
        with self._lock:
            now_ms = max(self._clock(), self._last_ms)
            if now_ms == self._last_ms:
                self._sequence = (self._sequence + 1) & _SEQUENCE_MASK
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond; borrow the next one.
                    now_ms += 1
            else:
                self._sequence = 0
            self._last_ms = now_ms
            return (
                ((now_ms - self._epoch_ms) << _TIMESTAMP_SHIFT)
                | (self._node_id << SEQUENCE_BITS)
                | self._sequence
            )

    def timestamp_ms(self, snowflake: int) -> int:
        """Extract the creation time (Unix milliseconds) from an id."""
        return (snowflake >> _TIMESTAMP_SHIFT) + self._epoch_ms
