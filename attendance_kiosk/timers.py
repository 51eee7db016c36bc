"""Per-session timers: one-shot delays, countdowns, progress ticks and tickers."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import AsyncIterator, Optional, Set

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class TimerGroup:
    """Owns every pending timer of one session so they can be cancelled together.

    Cancelling the group raises ``asyncio.CancelledError`` inside whichever
    coroutine is currently awaiting one of its sleeps.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: Set[asyncio.Task[None]] = set()
        self._tickers: Set[asyncio.Task[None]] = set()

    @property
    def active(self) -> int:
        """Number of sleeps and tickers that have not finished yet."""
        return sum(1 for task in self._pending | self._tickers if not task.done())

    async def sleep(self, seconds: float) -> None:
        task = asyncio.create_task(asyncio.sleep(max(seconds, 0.0)), name=f"{self.name}-sleep")
        self._pending.add(task)
        try:
            await task
        finally:
            self._pending.discard(task)

    async def countdown(self, start: int, interval: float) -> AsyncIterator[int]:
        """Yield start, start-1, ... 0 with ``interval`` seconds between values."""
        value = start
        yield value
        while value > 0:
            await self.sleep(interval)
            value -= 1
            yield value

    async def progress(self, duration_ms: int, tick_ms: int) -> AsyncIterator[float]:
        """Yield recording progress in percent, one value per tick, ending at 100.0."""
        if duration_ms <= 0 or tick_ms <= 0:
            raise ValueError("duration_ms and tick_ms must be positive")
        elapsed = 0
        while elapsed < duration_ms:
            await self.sleep(tick_ms / 1000)
            elapsed = min(elapsed + tick_ms, duration_ms)
            yield elapsed * 100.0 / duration_ms

    def every(self, interval: float, callback: TickCallback, *, name: Optional[str] = None) -> asyncio.Task[None]:
        """Start a repeating ticker that awaits ``callback`` every ``interval`` seconds."""
        task = asyncio.create_task(self._tick_loop(interval, callback), name=name or f"{self.name}-ticker")
        self._tickers.add(task)
        task.add_done_callback(self._tickers.discard)
        return task

    async def _tick_loop(self, interval: float, callback: TickCallback) -> None:
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Timer %s tick callback failed", self.name)
        except asyncio.CancelledError:
            logger.debug("Ticker %s cancelled", self.name)
            raise

    def cancel_all(self) -> int:
        """Cancel every pending sleep and ticker; returns how many were live."""
        cancelled = 0
        for task in list(self._pending | self._tickers):
            if not task.done():
                task.cancel()
                cancelled += 1
        self._pending.clear()
        self._tickers.clear()
        if cancelled:
            logger.debug("Timer group %s cancelled %d timer(s)", self.name, cancelled)
        return cancelled


__all__ = ["TickCallback", "TimerGroup"]
