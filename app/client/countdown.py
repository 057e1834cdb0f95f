"""
Display countdown for the tenant's response window.

The server owns the deadline; this only ticks the number shown between
polls.  Each match-info response resyncs it.  When it reaches zero it stops
and asks its owner for an authoritative refresh instead of assuming the
match expired.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from app.config import get_settings

logger = structlog.get_logger("roomify.client.countdown")


class ResponseCountdown:

    def __init__(
        self,
        on_elapsed: Optional[Callable[[], Awaitable[None]]] = None,
        tick_seconds: float | None = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.tick_seconds = tick_seconds or get_settings().COUNTDOWN_TICK_SECONDS
        self.seconds_left: int = 0
        self._on_elapsed = on_elapsed
        self._on_tick = on_tick
        self._task: asyncio.Task | None = None
        self._elapsed_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def resync(self, seconds_left: int) -> None:
        """Adopt the server's figure; start ticking if time remains."""
        self.seconds_left = max(0, int(seconds_left))
        if self.seconds_left == 0:
            self._cancel()
            return
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the ticker and any refresh it started, and wait for both."""
        tasks = [self._task, self._elapsed_task]
        self._task = None
        self._elapsed_task = None
        current = asyncio.current_task()
        for task in tasks:
            if task is None or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while self.seconds_left > 0:
            await asyncio.sleep(self.tick_seconds)
            self.seconds_left = max(0, self.seconds_left - 1)
            if self._on_tick is not None:
                self._on_tick(self.seconds_left)

        logger.debug("countdown_elapsed")
        # The refresh runs as its own task so a resync from it can start a new
        # ticker, while stop() can still cancel it.
        self._task = None
        if self._on_elapsed is not None:
            self._elapsed_task = asyncio.create_task(self._on_elapsed())
