"""Bounded fixed-delay retries for radio sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

MAX_RETRIES = 30
RETRY_DELAY_S = 1.0


@dataclass(frozen=True)
class RetryOutcome:
    success: bool
    attempts: int


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = MAX_RETRIES
    delay_s: float = RETRY_DELAY_S

    async def run(
        self,
        attempt: Callable[[], Awaitable[bool]],
        *,
        label: str = "operation",
        on_wait: Callable[[], None] | None = None,
    ) -> RetryOutcome:
        """Run ``attempt`` until it reports success or the budget is spent.

        The attempt counter lives in this call only, so every run starts from
        zero regardless of how the previous one ended.
        """
        attempts = 0
        while True:
            attempts += 1
            if await attempt():
                LOGGER.debug("%s succeeded after %d attempt(s)", label, attempts)
                return RetryOutcome(success=True, attempts=attempts)
            if attempts > self.max_retries:
                LOGGER.warning("%s unsuccessful, giving up after %d attempts", label, attempts)
                return RetryOutcome(success=False, attempts=attempts)
            LOGGER.info("%s unsuccessful, retrying in %.1fs", label, self.delay_s)
            if on_wait is not None:
                on_wait()
            await asyncio.sleep(self.delay_s)
