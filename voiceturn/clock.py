from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...

    async def sleep_ms(self, ms: int) -> None: ...


class RealClock:
    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0, int(delay_ms)) / 1000.0, callback)

    async def sleep_ms(self, ms: int) -> None:
        if ms <= 0:
            await asyncio.sleep(0)
            return
        await asyncio.sleep(ms / 1000.0)


@dataclass(order=True, slots=True)
class _Scheduled:
    due_ms: int
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """
    Deterministic clock for tests.

    - now_ms() only moves when advance() is called.
    - call_later() callbacks run inside advance(), in due-time order, with now_ms()
      set to their due time. Callbacks scheduled while advancing (including zero-delay
      ones) run in the same advance() if they fall inside the window.
    - sleep_ms() is built on call_later() so coroutines and timers share one timeline.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = int(start_ms)
        self._seq = itertools.count()
        self._queue: list[_Scheduled] = []

    def now_ms(self) -> int:
        return self._now_ms

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        item = _Scheduled(self._now_ms + max(0, int(delay_ms)), next(self._seq), callback)
        heapq.heappush(self._queue, item)
        return item

    async def sleep_ms(self, ms: int) -> None:
        if ms <= 0:
            await asyncio.sleep(0)
            return
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            if not fut.done():
                fut.set_result(None)

        handle = self.call_later(ms, _wake)
        try:
            await fut
        finally:
            handle.cancel()

    def pending(self) -> int:
        return sum(1 for s in self._queue if not s.cancelled)

    def run_due(self) -> int:
        """Run every callback already due at the current time. Returns how many ran."""
        ran = 0
        while self._queue and self._queue[0].due_ms <= self._now_ms:
            item = heapq.heappop(self._queue)
            if item.cancelled:
                continue
            item.callback()
            ran += 1
        return ran

    async def advance(self, ms: int) -> None:
        if ms < 0:
            raise ValueError("FakeClock.advance(ms): ms must be >= 0")

        # Yield once so tasks scheduled in the same tick can register against pre-advance time.
        await asyncio.sleep(0)

        target = self._now_ms + int(ms)
        while True:
            self.run_due()
            nxt = next((s for s in sorted(self._queue) if not s.cancelled), None)
            if nxt is None or nxt.due_ms > target:
                break
            self._now_ms = nxt.due_ms
            # Let coroutines woken by sleep_ms() resume before the next batch.
            await asyncio.sleep(0)
        self._now_ms = target
        self.run_due()

        await asyncio.sleep(0)
