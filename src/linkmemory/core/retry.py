"""
Bounded retry and deadline helpers shared by every pipeline stage.

``retry`` re-invokes a zero-argument async operation until it succeeds or the
attempt budget runs out, then re-raises the last error. ``bounded`` puts a
deadline on a single external call.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

from linkmemory.errors import DeadlineExceededError

T = TypeVar("T")


class Deadline:
    """Absolute point in (monotonic) time by which a request must finish."""

    def __init__(self, expires_at: Optional[float] = None):
        self.expires_at = expires_at

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        if seconds is None:
            return cls(None)
        return cls(time.monotonic() + seconds)

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded deadline."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()})"


def _effective_timeout(
    deadline: Optional[Deadline], timeout: Optional[float]
) -> Optional[float]:
    remaining = deadline.remaining() if deadline is not None else None
    if remaining is None:
        return timeout
    if timeout is None:
        return remaining
    return min(remaining, timeout)


async def bounded(
    awaitable: Awaitable[T],
    deadline: Optional[Deadline] = None,
    timeout: Optional[float] = None,
) -> T:
    """
    Await an external call with the tighter of ``timeout`` and the deadline.

    Raises:
        DeadlineExceededError: If the deadline had already passed or the call
            did not finish in time.
    """
    if deadline is not None and deadline.expired:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise DeadlineExceededError("Deadline expired before the call started")

    effective = _effective_timeout(deadline, timeout)
    if effective is None:
        return await awaitable

    try:
        return await asyncio.wait_for(awaitable, timeout=effective)
    except asyncio.TimeoutError as e:
        raise DeadlineExceededError(f"Call did not finish within {effective:.2f}s") from e


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    *,
    delay: float = 0.0,
    deadline: Optional[Deadline] = None,
    attempt_timeout: Optional[float] = None,
    fatal: Tuple[Type[Exception], ...] = (),
    description: str = "operation",
) -> T:
    """
    Invoke ``operation`` up to ``max_attempts`` times.

    Returns the first successful result. Any exception counts as a failed
    attempt (including a timed-out one); after the last attempt the error of
    that attempt is re-raised. Cancellation is never retried, and once
    ``deadline`` has expired no further attempt is started.
    Errors of a ``fatal`` type are not transient and are re-raised at once.

    Args:
        operation: Zero-argument callable returning an awaitable
        max_attempts: Upper bound on invocations (>= 1)
        delay: Fixed pause between attempts in seconds
        deadline: Overall deadline shared by all attempts
        attempt_timeout: Timeout applied to each single attempt
        fatal: Exception types raised without further attempts
        description: Label used in log messages

    Returns:
        The result of the first successful attempt
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        try:
            if deadline is None and attempt_timeout is None:
                return await operation()
            return await bounded(operation(), deadline=deadline, timeout=attempt_timeout)
        except fatal:
            raise
        except Exception as e:
            logger.warning(f"{description} failed (attempt {attempt}/{max_attempts}): {e}")

            if attempt == max_attempts:
                raise
            if deadline is not None and deadline.expired:
                logger.warning(f"{description}: deadline expired, giving up after {attempt} attempt(s)")
                raise

            if delay:
                await asyncio.sleep(delay)

    raise AssertionError("unreachable")
