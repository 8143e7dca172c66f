"""
Orchestration events.

The orchestrator reports everything a presentation layer might care about
through an EventSink instead of printing. LoggingEventSink is the default;
FanOutSink lets a runner attach several consumers (logging, metrics, a UI).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Protocol

from .models import PlayerColor


class EventType(str, Enum):
    GAME_STARTED = "game_started"
    TURN_STARTED = "turn_started"
    THINKING_STARTED = "thinking_started"
    THINKING_STOPPED = "thinking_stopped"
    REQUEST_RETRY = "request_retry"
    MOVE_APPLIED = "move_applied"
    INVALID_MOVE_WARNING = "invalid_move_warning"
    DRAW_OFFERED = "draw_offered"
    DRAW_OFFER_IGNORED = "draw_offer_ignored"
    DRAW_DECLINED = "draw_declined"
    PAUSED = "paused"
    RESUMED = "resumed"
    FORFEIT = "forfeit"
    GAME_ENDED = "game_ended"


@dataclass(frozen=True)
class GameEvent:
    type: EventType
    message: str
    color: PlayerColor | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


class EventSink(Protocol):
    def emit(self, event: GameEvent) -> None: ...


_WARNING_EVENTS = {EventType.INVALID_MOVE_WARNING, EventType.REQUEST_RETRY, EventType.FORFEIT}


class LoggingEventSink:
    """Write events to a logger; warnings for recoverable trouble, info otherwise."""

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or logging.getLogger("events")

    def emit(self, event: GameEvent) -> None:
        level = logging.WARNING if event.type in _WARNING_EVENTS else logging.INFO
        prefix = f"[{event.color.value}] " if event.color else ""
        self.log.log(level, "%s%s: %s", prefix, event.type.value, event.message)


class FanOutSink:
    def __init__(self, sinks: Iterable[EventSink]):
        self.sinks = list(sinks)

    def emit(self, event: GameEvent) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception:
                logging.getLogger("events").exception("Event sink %r failed", sink)
