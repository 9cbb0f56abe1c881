"""Periodic loops with a cooperative stop signal."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

log = logging.getLogger(__name__)


class PeriodicLoop:
    """
    Runs ``tick`` every ``interval`` seconds until stopped.

    ``stop()`` never interrupts a running tick: the loop finishes the current
    iteration, then exits. An exception in a tick is logged and the loop waits
    ``error_backoff`` seconds before the next one.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[None]],
        error_backoff: float | None = None,
    ) -> None:
        self.name = name
        self.interval = interval
        self.tick = tick
        self.error_backoff = interval if error_backoff is None else error_backoff
        self.ticks = 0
        self.errors = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError(f"loop {self.name} already running")
        self._stop.clear()
        self._task = asyncio.create_task(self.run(), name=f"loop:{self.name}")
        return self._task

    async def run(self) -> None:
        log.info("Loop %s started (every %.1fs)", self.name, self.interval)
        while not self._stop.is_set():
            delay = self.interval
            try:
                await self.tick()
            except Exception:
                self.errors += 1
                delay = self.error_backoff
                log.exception("Loop %s tick failed", self.name)
            self.ticks += 1
            await self._sleep(delay)
        log.info("Loop %s stopped after %d ticks", self.name, self.ticks)

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self._stop.set()

    async def join(self) -> None:
        if self._task is not None:
            await self._task
