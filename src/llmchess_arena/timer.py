"""
Per-participant chess clocks.

- MonotonicClock: default time source (milliseconds from time.monotonic()).
- ParticipantTimer: stored state of one clock.
- TimerService: owns one ParticipantTimer per participant id and implements
  start/pause/remaining/increment/reset plus an async expiry watcher.

Stored state only changes on start/pause/increment/reset; remaining() derives the
live value from the clock so queries never mutate anything. The watcher polls every
`tick_ms` (100 ms by default, at most MAX_TICK_MS), so a running clock that crosses
zero is noticed within one tick.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from .config import SETTINGS
from .errors import TimerNotFound
from .models import TimerConfig, TimerMode

MAX_TICK_MS = 250
DEFAULT_TICK_MS = min(SETTINGS.timer_tick_ms, MAX_TICK_MS)

log = logging.getLogger("timer")


class Clock(Protocol):
    def now_ms(self) -> int: ...


class MonotonicClock:
    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)


@dataclass
class ParticipantTimer:
    participant_id: str
    config: TimerConfig
    remaining_ms: int
    running: bool = False
    last_start_ms: Optional[int] = None


ExpireCallback = Callable[[str], "Awaitable[None] | None"]
Sleep = Callable[[float], Awaitable[Any]]


class TimerService:
    def __init__(self, clock: Clock | None = None, tick_ms: int = DEFAULT_TICK_MS, sleep: Sleep = asyncio.sleep):
        if not 0 < tick_ms <= MAX_TICK_MS:
            raise ValueError(f"tick_ms must be between 1 and {MAX_TICK_MS}")
        self.clock = clock or MonotonicClock()
        self.tick_ms = tick_ms
        self._sleep = sleep
        self._timers: dict[str, ParticipantTimer] = {}

    def _get(self, participant_id: str) -> ParticipantTimer:
        timer = self._timers.get(participant_id)
        if timer is None:
            raise TimerNotFound(participant_id)
        return timer

    # ---------------- Lifecycle -----------------
    def init(self, participant_id: str, config: TimerConfig) -> None:
        self._timers[participant_id] = ParticipantTimer(
            participant_id=participant_id,
            config=config,
            remaining_ms=config.initial_ms,
        )

    def initialize_if_absent(self, participant_id: str, config: TimerConfig) -> bool:
        """Create the timer unless one exists already. Returns True when created."""
        if participant_id in self._timers:
            return False
        self.init(participant_id, config)
        return True

    def has(self, participant_id: str) -> bool:
        return participant_id in self._timers

    def clear(self) -> None:
        self._timers.clear()

    # ---------------- Running state -----------------
    def start(self, participant_id: str) -> None:
        timer = self._get(participant_id)
        if timer.running:
            return
        timer.running = True
        timer.last_start_ms = self.clock.now_ms()

    def pause(self, participant_id: str) -> int:
        """Stop the clock and return the milliseconds used since it was started."""
        timer = self._get(participant_id)
        if not timer.running or timer.last_start_ms is None:
            return 0
        elapsed = max(0, self.clock.now_ms() - timer.last_start_ms)
        timer.remaining_ms = max(0, timer.remaining_ms - elapsed)
        timer.running = False
        timer.last_start_ms = None
        return elapsed

    def is_running(self, participant_id: str) -> bool:
        return self._get(participant_id).running

    def running_ids(self) -> list[str]:
        return [pid for pid, t in self._timers.items() if t.running]

    # ---------------- Queries -----------------
    def remaining(self, participant_id: str) -> int:
        timer = self._get(participant_id)
        if timer.running and timer.last_start_ms is not None:
            elapsed = self.clock.now_ms() - timer.last_start_ms
            return max(0, timer.remaining_ms - elapsed)
        return timer.remaining_ms

    def is_expired(self, participant_id: str) -> bool:
        return self.remaining(participant_id) <= 0

    # ---------------- Adjustments -----------------
    def add_increment(self, participant_id: str, increment_ms: int, mode: TimerMode | str | None = None) -> None:
        timer = self._get(participant_id)
        mode = TimerMode(mode) if mode is not None else timer.config.mode
        if mode is TimerMode.FISCHER:
            timer.remaining_ms += increment_ms
        elif mode is TimerMode.BRONSTEIN:
            timer.remaining_ms = min(timer.remaining_ms + increment_ms, timer.config.initial_ms)
        # SIMPLE: no increment

    def reset(self, participant_id: str, time_ms: int) -> None:
        timer = self._get(participant_id)
        self.pause(participant_id)
        timer.remaining_ms = max(0, int(time_ms))

    # ---------------- Active expiry detection -----------------
    async def watch_expiry(self, participant_id: str, on_expire: ExpireCallback | None = None) -> None:
        """Return once the participant's running clock hits zero.

        On expiry the timer is paused (remaining pinned at 0) before the optional
        callback runs. A paused timer never expires, so the watcher simply keeps
        polling until it is resumed or the task is cancelled.
        """
        self._get(participant_id)
        while True:
            timer = self._get(participant_id)
            if timer.running and self.is_expired(participant_id):
                self.pause(participant_id)
                timer.remaining_ms = 0
                log.debug("Timer expired for %s", participant_id)
                if on_expire is not None:
                    res = on_expire(participant_id)
                    if inspect.isawaitable(res):
                        await res
                return
            await self._sleep(self.tick_ms / 1000)
