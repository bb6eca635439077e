from __future__ import annotations

import asyncio

from am43ctl.core.arbiter import LinkArbiter


class Requester:
    def __init__(self, id: str) -> None:
        self.id = id


def test_only_one_requester_is_granted() -> None:
    arbiter = LinkArbiter()
    first, second = Requester("a"), Requester("b")

    assert arbiter.acquire(first) is True
    assert arbiter.acquire(second) is False
    assert arbiter.holder is first

    arbiter.release(first)
    assert arbiter.holder is None
    assert arbiter.acquire(second) is True


def test_stale_release_is_ignored() -> None:
    arbiter = LinkArbiter()
    holder, stale = Requester("a"), Requester("b")
    arbiter.acquire(holder)

    arbiter.release(stale)
    assert arbiter.holder is holder


def test_wait_acquire_polls_until_released() -> None:
    arbiter = LinkArbiter(backoff_s=0.01)
    first, second = Requester("a"), Requester("b")
    busy_checks: list[int] = []

    async def scenario() -> None:
        arbiter.acquire(first)
        waiter = asyncio.create_task(
            arbiter.wait_acquire(second, on_busy=lambda: busy_checks.append(1))
        )
        await asyncio.sleep(0.05)
        assert not waiter.done()
        assert arbiter.holder is first
        arbiter.release(first)
        await asyncio.wait_for(waiter, timeout=1)

    asyncio.run(scenario())
    assert arbiter.holder is second
    assert busy_checks
