"""
Time sources for the collector.

Every component reads the current time through a clock so that windowed
counters, retention and the scheduler can be driven deterministically.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Anything that can report the current time in epoch seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """
    Clock that only moves when told to.

    Example:
        clock = ManualClock(start=0.0)
        clock.advance(30)
        assert clock.now() == 30.0
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward and return the new reading."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)
