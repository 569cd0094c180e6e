from __future__ import annotations

import itertools
import logging
from typing import Callable

from .clock import Clock, TimerHandle

logger = logging.getLogger(__name__)


class TimerService:
    """
    Keyed countdown timers on top of a Clock.

    Re-arming a key replaces its previous schedule, cancel() of an unarmed key is a
    no-op. Each arm gets a fresh token, so a callback that was already popped off the
    clock queue when its key got re-armed or cancelled still never runs.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._tokens = itertools.count(1)
        self._armed: dict[str, tuple[int, TimerHandle]] = {}

    def arm(self, key: str, delay_ms: int, callback: Callable[[], None]) -> None:
        self.cancel(key)
        token = next(self._tokens)
        handle = self._clock.call_later(int(delay_ms), lambda: self._fire(key, token, callback))
        self._armed[key] = (token, handle)
        logger.debug("timer armed key=%s delay_ms=%s", key, delay_ms)

    def cancel(self, key: str) -> None:
        entry = self._armed.pop(key, None)
        if entry is not None:
            entry[1].cancel()

    def cancel_all(self) -> None:
        for key in list(self._armed):
            self.cancel(key)

    def armed(self, key: str) -> bool:
        return key in self._armed

    def _fire(self, key: str, token: int, callback: Callable[[], None]) -> None:
        entry = self._armed.get(key)
        if entry is None or entry[0] != token:
            return
        del self._armed[key]
        logger.debug("timer fired key=%s", key)
        callback()
