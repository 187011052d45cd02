"""Recurring background task that runs a cleanup callback on a fixed interval."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """Fire ``callback`` once per ``interval`` seconds until stopped.

    The first firing happens one full interval after ``start()``.  ``stop()``
    lets an in-flight callback finish, then returns; no firing starts after
    ``stop()`` has returned.  Exceptions raised by the callback are logged and
    do not end the schedule.

    Args:
        interval: Seconds between firings.
        callback: Zero-argument coroutine function.
        name: Label used for the task and in log messages.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "sweeper",
    ) -> None:
        if interval <= 0:
            msg = f"interval must be > 0, got {interval}"
            raise ValueError(msg)
        self._interval = interval
        self._callback = callback
        self._name = name
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        """Whether the background task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> PeriodicSweeper:
        """Schedule the background task. Must be called from a running event loop."""
        if self.is_running:
            raise RuntimeError(f"{self._name} is already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self._name)
        logger.info("Started %s (interval=%ss)", self._name, self._interval)
        return self

    async def stop(self) -> None:
        """Stop firing and wait for an in-flight callback to complete."""
        task = self._task
        if task is None:
            return
        self._stop_event.set()
        try:
            await task
        finally:
            self._task = None
        logger.info("Stopped %s", self._name)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            if self._stop_event.is_set():
                return
            await self._fire()

    async def _fire(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("%s callback failed", self._name)
