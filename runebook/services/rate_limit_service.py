"""In-memory token-bucket rate limiting for auth endpoints. State is lost on restart."""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


class TokenBucket:
    """A capped pool of permits regenerated at a fixed interval.

    Thread-safety: every public method takes the bucket's lock, so concurrent
    ``consume`` calls observe a serializable sequence of decrements.  Token
    count stays within ``[0, capacity]``; tokens only come back through
    elapsed-time refill.

    A caller that only learns later whether a token should be spent holds a
    reservation: ``try_reserve`` sets one token aside, then
    ``commit_reservation`` spends it or ``release_reservation`` hands it back.
    Reserved tokens are not available to other callers in the meantime.
    """

    def __init__(
        self,
        capacity: int,
        refill_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            msg = f"capacity must be >= 1, got {capacity}"
            raise ValueError(msg)
        if refill_interval <= 0:
            msg = f"refill_interval must be > 0, got {refill_interval}"
            raise ValueError(msg)
        self._capacity = capacity
        self._refill_interval = refill_interval
        self._clock = clock
        self._tokens = capacity
        self._reserved = 0
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def refill_interval(self) -> float:
        return self._refill_interval

    def _refill(self, now: float) -> None:
        # Caller holds the lock.
        if self._tokens >= self._capacity:
            # Idle time must not bank tokens beyond capacity.
            self._last_refill = max(self._last_refill, now)
            return
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        added = math.floor(elapsed / self._refill_interval)
        if added <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + added)
        self._last_refill += added * self._refill_interval

    def refill(self, now: float | None = None) -> None:
        """Restore tokens proportional to the time elapsed since the last refill."""
        with self._lock:
            self._refill(self._clock() if now is None else now)

    def peek(self, now: float | None = None) -> int:
        """Return the current unreserved allowance after refilling, without consuming."""
        with self._lock:
            self._refill(self._clock() if now is None else now)
            return self._tokens - self._reserved

    def consume(self, now: float | None = None) -> bool:
        """Take one token. Returns False when no unreserved token is left."""
        with self._lock:
            self._refill(self._clock() if now is None else now)
            if self._tokens - self._reserved <= 0:
                return False
            self._tokens -= 1
            return True

    def try_reserve(self, now: float | None = None) -> bool:
        """Set one token aside for a pending decision. Returns False when none is free."""
        with self._lock:
            self._refill(self._clock() if now is None else now)
            if self._tokens - self._reserved <= 0:
                return False
            self._reserved += 1
            return True

    def commit_reservation(self) -> None:
        """Spend a token previously set aside with ``try_reserve``."""
        with self._lock:
            if self._reserved <= 0:
                raise RuntimeError("commit_reservation called without a reservation")
            self._reserved -= 1
            self._tokens -= 1

    def release_reservation(self) -> None:
        """Return a token previously set aside with ``try_reserve`` unspent."""
        with self._lock:
            if self._reserved <= 0:
                raise RuntimeError("release_reservation called without a reservation")
            self._reserved -= 1

    def is_full(self, now: float | None = None) -> bool:
        """Whether the bucket has refilled to capacity with nothing reserved."""
        with self._lock:
            self._refill(self._clock() if now is None else now)
            return self._tokens >= self._capacity and self._reserved == 0

    def retry_after(self, now: float | None = None) -> int:
        """Whole seconds until a token is available (0 if one is available now)."""
        with self._lock:
            now = self._clock() if now is None else now
            self._refill(now)
            if self._tokens - self._reserved > 0:
                return 0
            wait = self._last_refill + self._refill_interval - now
            return max(math.ceil(wait), 1)


class RateLimitRegistry:
    """Map arbitrary keys to lazily created token buckets.

    ``get_or_create`` is atomic: concurrent callers asking for the same key
    always receive the same bucket.  The registry holds at most
    ``max_entries`` buckets.  Buckets that have refilled to capacity carry no
    throttling state and are dropped first; if every bucket is still draining,
    the least recently used one is evicted.
    """

    def __init__(
        self,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            msg = f"max_entries must be >= 1, got {max_entries}"
            raise ValueError(msg)
        self._max_entries = max_entries
        self._clock = clock
        self._buckets: OrderedDict[str, TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._buckets

    def get_or_create(self, key: str, capacity: int, refill_interval: float) -> TokenBucket:
        """Return the bucket for ``key``, creating it with the given parameters if absent."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is not None:
                self._buckets.move_to_end(key)
                return bucket
            if len(self._buckets) >= self._max_entries:
                self._evict()
            bucket = TokenBucket(capacity, refill_interval, clock=self._clock)
            self._buckets[key] = bucket
            return bucket

    def prune(self, now: float | None = None) -> int:
        """Drop buckets that have refilled to capacity. Returns the number removed."""
        with self._lock:
            return self._prune(self._clock() if now is None else now)

    def _prune(self, now: float) -> int:
        # Caller holds the lock.
        idle = [key for key, bucket in self._buckets.items() if bucket.is_full(now)]
        for key in idle:
            del self._buckets[key]
        return len(idle)

    def _evict(self) -> None:
        # Caller holds the lock.
        if self._prune(self._clock()) == 0:
            self._buckets.popitem(last=False)
