"""Tests for the bounded retry policy and deadlines."""

import asyncio

import pytest

from linkmemory.core.retry import Deadline, bounded, retry
from linkmemory.errors import DeadlineExceededError


class Flaky:
    """Fails ``failures`` times, then returns ``result``."""

    def __init__(self, failures: int, result: str = "ok"):
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return self.result


@pytest.mark.asyncio
async def test_returns_first_success_without_reinvoking():
    op = Flaky(failures=0)

    assert await retry(op, 3) == "ok"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_retries_until_success():
    op = Flaky(failures=2)

    assert await retry(op, 3) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_raises_last_error_after_budget():
    op = Flaky(failures=5)

    with pytest.raises(RuntimeError, match="failure 3"):
        await retry(op, 3)
    assert op.calls == 3


@pytest.mark.asyncio
async def test_rejects_non_positive_budget():
    with pytest.raises(ValueError):
        await retry(Flaky(failures=0), 0)


@pytest.mark.asyncio
async def test_timed_out_attempt_counts_toward_budget():
    calls = 0

    async def slow_then_fast():
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(1)
        return "done"

    assert await retry(slow_then_fast, 2, attempt_timeout=0.05) == "done"
    assert calls == 2


@pytest.mark.asyncio
async def test_expired_deadline_stops_retrying():
    calls = 0

    async def hangs():
        nonlocal calls
        calls += 1
        await asyncio.sleep(1)

    with pytest.raises(DeadlineExceededError):
        await retry(hangs, 5, deadline=Deadline.after(0.05))
    assert calls == 1


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
    calls = 0

    async def cancelled():
        nonlocal calls
        calls += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await retry(cancelled, 3)
    assert calls == 1


@pytest.mark.asyncio
async def test_bounded_fails_fast_on_expired_deadline():
    async def never_started():
        raise AssertionError("should not run")

    deadline = Deadline.after(0)
    with pytest.raises(DeadlineExceededError):
        await bounded(never_started(), deadline=deadline)


@pytest.mark.asyncio
async def test_bounded_passes_result_through():
    async def value():
        return 42

    assert await bounded(value(), deadline=Deadline.after(5), timeout=1) == 42
    assert await bounded(value()) == 42


def test_unbounded_deadline_never_expires():
    deadline = Deadline.after(None)

    assert deadline.remaining() is None
    assert not deadline.expired


@pytest.mark.asyncio
async def test_fatal_error_is_not_retried():
    calls = 0

    async def misconfigured():
        nonlocal calls
        calls += 1
        raise LookupError("no prompt")

    with pytest.raises(LookupError):
        await retry(misconfigured, 3, fatal=(LookupError,))
    assert calls == 1


@pytest.mark.asyncio
async def test_other_errors_still_retried_with_fatal_types():
    op = Flaky(failures=2)

    assert await retry(op, 3, fatal=(LookupError,)) == "ok"
    assert op.calls == 3
