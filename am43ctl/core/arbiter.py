"""Process-wide exclusive access to the BLE radio."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)

BUSY_BACKOFF_S = 1.0


class LinkArbiter:
    """Single-slot lock shared by every device of the process.

    The adapter supports one active central link at a time. Waiters poll on a
    fixed delay instead of queueing, so ordering across devices is approximate.
    """

    def __init__(self, *, backoff_s: float = BUSY_BACKOFF_S) -> None:
        self.backoff_s = backoff_s
        self._holder: object | None = None

    @property
    def holder(self) -> object | None:
        return self._holder

    def acquire(self, requester: object) -> bool:
        if self._holder is None:
            self._holder = requester
            return True
        return False

    def release(self, requester: object) -> None:
        if self._holder is requester:
            self._holder = None

    async def wait_acquire(
        self,
        requester: object,
        *,
        label: str = "",
        on_busy: Callable[[], None] | None = None,
    ) -> None:
        while not self.acquire(requester):
            LOGGER.info(
                "%sConnection busy for other device %s, retrying in %.1fs",
                f"[{label}] " if label else "",
                getattr(self._holder, "id", self._holder),
                self.backoff_s,
            )
            if on_busy is not None:
                on_busy()
            await asyncio.sleep(self.backoff_s)
