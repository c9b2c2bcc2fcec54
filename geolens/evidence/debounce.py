"""Caller-owned guard against duplicate map clicks."""

from __future__ import annotations

import time
from typing import Callable

from geolens.common.config_loader import DebounceSettings


class ClickDebouncer:
    def __init__(self, cooldown_seconds: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.last_accepted: float | None = None

    @classmethod
    def from_settings(
        cls,
        settings: DebounceSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> "ClickDebouncer":
        return cls(cooldown_seconds=settings.cooldown_seconds, clock=clock)

    def accept(self, at: float | None = None) -> bool:
        """Accept the event unless it lands inside the cool-down of the last accepted one.

        `at` is the event time on the same monotonic scale; recorded events pass it, live ones use the clock.
        """
        now = self.clock() if at is None else at
        if self.last_accepted is not None and now - self.last_accepted < self.cooldown_seconds:
            return False
        self.last_accepted = now
        return True
