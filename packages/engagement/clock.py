"""Clock sources injected into the engine."""

import asyncio
import time
from abc import ABC, abstractmethod

from engagement.config.schemas import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE, MS_PER_SECOND


class Clock(ABC):
    """Supplies the current time and a cooperative sleep for the tick loop."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time as epoch milliseconds."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Wait until the next tick."""


class SystemClock(Clock):
    """Wall-clock time."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """Virtual time that only moves when told to.

    ``sleep`` advances the virtual time by the requested interval and
    yields to the event loop, so a tick loop runs deterministically.
    """

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def set(self, now_ms: int) -> None:
        if now_ms < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = now_ms

    def advance(
        self,
        ms: int = 0,
        *,
        seconds: float = 0,
        minutes: float = 0,
        hours: float = 0,
        days: float = 0,
    ) -> int:
        """Move time forward and return the new time."""
        delta = ms + int(
            seconds * MS_PER_SECOND
            + minutes * MS_PER_MINUTE
            + hours * MS_PER_HOUR
            + days * MS_PER_DAY
        )
        if delta < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += delta
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds=seconds)
        await asyncio.sleep(0)
