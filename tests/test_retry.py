from __future__ import annotations

import asyncio

from am43ctl.core.retry import RetryPolicy


def test_always_failing_attempt_runs_31_times() -> None:
    calls: list[int] = []

    async def attempt() -> bool:
        calls.append(1)
        return False

    outcome = asyncio.run(RetryPolicy(delay_s=0).run(attempt))
    assert outcome.success is False
    assert outcome.attempts == 31
    assert len(calls) == 31


def test_success_stops_retrying() -> None:
    results = iter([False, False, True, True])

    async def attempt() -> bool:
        return next(results)

    outcome = asyncio.run(RetryPolicy(delay_s=0).run(attempt))
    assert outcome.success is True
    assert outcome.attempts == 3


def test_each_run_starts_with_a_fresh_budget() -> None:
    policy = RetryPolicy(max_retries=2, delay_s=0)
    waits: list[int] = []

    async def failing() -> bool:
        return False

    first = asyncio.run(policy.run(failing, on_wait=lambda: waits.append(1)))
    second = asyncio.run(policy.run(failing))
    assert first.attempts == second.attempts == 3
    assert len(waits) == 2
