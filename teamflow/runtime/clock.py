from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int:
        raise NotImplementedError


class SystemClock:
    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)


class ManualClock:
    """Deterministic clock for tests and the mock gateway; time only moves when advanced."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> None:
        self._now += max(0, int(ms))
