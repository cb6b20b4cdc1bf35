# src/tokensim/engine/clock.py
"""Wall-clock access for the play loop.

Only the pacing between ticks touches real time; simulated time is the
integer tick. Inject MockClock for deterministic tests.
"""

import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Real time via the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class MockClock:
    """Clock whose sleeps advance virtual time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += seconds

    def advance(self, seconds: float) -> None:
        self._now += seconds


DEFAULT_CLOCK: Clock = SystemClock()
