"""
Schedule runner: periodic tick driving on-schedule workflows.

The runner calls ``Session.run_scheduled`` once per tick with the current
local wall-clock time. Ticks must be at most 60 seconds apart so daily and
weekly triggers see every HH:MM value.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from folio.core.session import Session

logger = logging.getLogger(__name__)

MAX_TICK_SECONDS = 60.0


def local_now() -> datetime:
    """Current local wall-clock time (tz-aware)."""
    return datetime.now().astimezone()


class ScheduleRunner:
    """
    Background loop ticking a session's scheduled workflows.

    Example:
        >>> runner = ScheduleRunner(session, tick_seconds=60)
        >>> runner.start()
        >>> ...
        >>> await runner.stop()
    """

    def __init__(
        self,
        session: Session,
        tick_seconds: float = MAX_TICK_SECONDS,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        """
        Initialize the runner.

        Raises:
            ValueError: If tick_seconds is not in (0, 60]
        """
        if not 0 < tick_seconds <= MAX_TICK_SECONDS:
            raise ValueError(f"tick_seconds must be in (0, {MAX_TICK_SECONDS}], got {tick_seconds}")
        self.session = session
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.tick_count = 0
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """
        Run one tick.

        Returns:
            Number of workflows that ran on this tick
        """
        self.tick_count += 1
        try:
            results = await self.session.run_scheduled(self.clock())
        except Exception:
            # A failing tick must not stop the loop
            logger.exception("Scheduled workflow tick failed")
            return 0
        if results:
            logger.info("Tick %d ran %d workflow(s)", self.tick_count, len(results))
        return len(results)

    async def run(self) -> None:
        """Tick until ``stop`` is called."""
        self._stopping.clear()
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> asyncio.Task[None]:
        """Start the loop as a background task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Ask the loop to stop and wait for it."""
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None


__all__ = ["MAX_TICK_SECONDS", "ScheduleRunner", "local_now"]
