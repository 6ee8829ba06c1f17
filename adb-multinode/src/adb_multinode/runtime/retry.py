"""Bounded retry loops.

Two shapes are used by the handshake:

* `poll_until`: deadline-bounded, for "wait until reachable" style checks.
* `retry`: attempt-bounded, for "try N times" style operations.

Clock and sleep are injectable so tests never actually wait.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


def poll_until(
    predicate: Callable[[], object],
    *,
    timeout_s: float,
    interval_s: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Call `predicate` until it is truthy or `timeout_s` elapses.

    The predicate is always called at least once.
    """

    if timeout_s < 0:
        raise ValueError(f"timeout_s must be >= 0 (got {timeout_s})")
    if interval_s < 0:
        raise ValueError(f"interval_s must be >= 0 (got {interval_s})")

    deadline = clock() + float(timeout_s)
    while True:
        if predicate():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(float(interval_s), remaining))


def retry(
    fn: Callable[[], Optional[T]],
    *,
    attempts: int,
    interval_s: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[T]:
    """Call `fn` up to `attempts` times; return its first truthy result."""

    if attempts < 1:
        raise ValueError(f"attempts must be >= 1 (got {attempts})")

    for attempt in range(attempts):
        result = fn()
        if result:
            return result
        if attempt + 1 < attempts:
            sleep(interval_s)
    return None
