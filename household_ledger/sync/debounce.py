"""
Debounced scheduler.

Owns exactly one pending timer. Every trigger() resets it, so a burst of
mutations inside the quiet window produces a single callback run.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class DebouncedScheduler:
    """Run an async callback once the triggers have been quiet for `delay_seconds`."""

    def __init__(
        self,
        delay_seconds: float,
        callback: Callable[[], Awaitable[None]],
    ):
        self._delay = delay_seconds
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """A timer is armed and has not fired yet."""
        return self._handle is not None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def trigger(self) -> None:
        """(Re)start the quiet window. Must be called from the event loop thread."""
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._callback())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def flush(self) -> bool:
        """Run a pending callback now instead of waiting. Returns False if nothing was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        await self._callback()
        return True

    def cancel(self) -> None:
        """Drop the pending timer. Callbacks already running are left to finish."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("debounce_cancelled")

    async def wait_idle(self) -> None:
        """Wait for callbacks that have already fired."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
