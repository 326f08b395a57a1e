from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import random

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class SendPacer:
    """Randomized pause before each provider call to stay under rate limits."""

    min_seconds: float = 0.5
    max_seconds: float = 1.5
    sleep: Sleeper = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    def next_delay(self) -> float:
        if self.max_seconds <= 0:
            return 0.0
        low = max(self.min_seconds, 0.0)
        high = max(self.max_seconds, low)
        return self.rng.uniform(low, high)

    async def wait(self) -> None:
        delay = self.next_delay()
        if delay > 0:
            await self.sleep(delay)


def no_pacing() -> SendPacer:
    return SendPacer(min_seconds=0.0, max_seconds=0.0)
