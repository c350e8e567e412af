from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional


class DebounceTimer:
    """Single-slot trailing debounce on the running event loop.

    ``trigger()`` cancels any pending call and schedules *callback* to run
    ``delay_ms`` later. Only the last trigger in a burst fires.
    """

    def __init__(self, delay_ms: int, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay_ms = delay_ms
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_ms / 1000.0, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Run a pending callback now instead of waiting for the delay."""
        if self._handle is not None:
            self.cancel()
            await self._callback()
        elif self._task is not None and not self._task.done():
            await self._task

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._callback())
