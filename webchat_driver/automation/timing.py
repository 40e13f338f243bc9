"""Timed polling shared by connection, diagnosis and response watching."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class PollResult(Generic[T]):
    satisfied: bool
    value: Optional[T]
    elapsed: float
    polls: int


def _monotonic() -> float:
    return asyncio.get_event_loop().time()


async def poll_until(
    probe: Callable[[], Awaitable[T]],
    condition: Callable[[T], bool] = bool,
    *,
    interval: float,
    timeout: float,
) -> PollResult[T]:
    """Call ``probe`` every ``interval`` seconds until ``condition`` holds or ``timeout`` passes.

    The last probed value is returned either way. Exceptions from ``probe``
    propagate; wrap the probe if some of them should count as a miss.
    Cancellation of the calling task interrupts the wait at once.
    """
    start = _monotonic()
    deadline = start + timeout
    value: Optional[T] = None
    polls = 0

    while True:
        value = await probe()
        polls += 1
        if condition(value):
            return PollResult(True, value, _monotonic() - start, polls)

        remaining = deadline - _monotonic()
        if remaining <= 0:
            return PollResult(False, value, _monotonic() - start, polls)
        await asyncio.sleep(min(interval, remaining))
