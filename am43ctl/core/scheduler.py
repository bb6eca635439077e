"""Background polling and post-write forced reads."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

LOGGER = logging.getLogger(__name__)

STARTUP_READ_DELAY_S = 5.0
POLL_INTERVAL_S = 3 * 60.0
RANDOM_POLL_MIN_S = 10 * 60.0
RANDOM_POLL_MAX_S = 20 * 60.0

FULL_TRAVEL_TIME_S = 137.0
FAST_FORCED_READ_DELAY_S = 15.0
END_OF_TRAVEL_BUFFER_S = 5.0

Job = Callable[[], Awaitable[object]]
Timer = Callable[[float, Job], None]


class PollScheduler:
    """Owns every delayed read of one device.

    All delays go through ``timer``; the default runs each job in its own
    asyncio task after sleeping. Tests pass a recording timer instead.
    """

    def __init__(
        self,
        *,
        poll: bool = False,
        rng: random.Random | None = None,
        timer: Timer | None = None,
    ) -> None:
        self.poll = poll
        self._rng = rng or random.Random()
        self._timer = timer or self._call_later
        self._tasks: set[asyncio.Task[None]] = set()
        self._cancelled = False

    def poll_interval_s(self) -> float:
        if self.poll:
            return POLL_INTERVAL_S
        return RANDOM_POLL_MIN_S + self._rng.random() * (RANDOM_POLL_MAX_S - RANDOM_POLL_MIN_S)

    @staticmethod
    def forced_read_delays() -> tuple[float, float]:
        return (FAST_FORCED_READ_DELAY_S, FULL_TRAVEL_TIME_S + END_OF_TRAVEL_BUFFER_S)

    def start(self, read: Job) -> None:
        self._timer(STARTUP_READ_DELAY_S, read)
        self._schedule_poll(read)

    def schedule_forced_reads(self, read: Job) -> None:
        for delay in self.forced_read_delays():
            self._timer(delay, read)

    def _schedule_poll(self, read: Job) -> None:
        if self._cancelled:
            return
        interval = self.poll_interval_s()
        LOGGER.debug("Next poll in %.0fs", interval)

        async def _poll() -> None:
            try:
                await read()
            finally:
                self._schedule_poll(read)

        self._timer(interval, _poll)

    def _call_later(self, delay_s: float, job: Job) -> None:
        if self._cancelled:
            return
        task = asyncio.get_running_loop().create_task(self._run_later(delay_s, job))
        self._tasks.add(task)
        task.add_done_callback(self._forget)

    @staticmethod
    async def _run_later(delay_s: float, job: Job) -> None:
        await asyncio.sleep(delay_s)
        await job()

    def _forget(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Scheduled read failed", exc_info=task.exception())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def cancel(self) -> None:
        self._cancelled = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
