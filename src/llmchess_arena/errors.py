"""
Error taxonomy for the arena.

Every failure that reaches the error policy is tagged at the point where it is
raised: `kind` tells the policy how to classify it and `backoff_s` tells the
move-request loop how long to wait before asking again. Nothing downstream
looks at message text.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    ILLEGAL_MOVE = "illegal_move"
    PARSE_OR_FORMAT = "parse_or_format"
    TRANSIENT = "transient"
    OTHER = "other"


class Resolution(str, Enum):
    RETRY = "retry"
    FORFEIT = "forfeit"
    PAUSE_GAME = "pause"
    END_GAME = "end"


class ArenaError(Exception):
    """Base class for all arena errors."""

    code = "ARENA_ERROR"
    kind = ErrorKind.OTHER

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# ---------------- Contract / setup errors -----------------
class SetupError(ArenaError):
    code = "SETUP_ERROR"


class OrchestrationError(ArenaError):
    """Raised when the orchestrator is driven outside its state machine."""

    code = "ORCHESTRATION_ERROR"


class TimerNotFound(ArenaError, LookupError):
    code = "TIMER_NOT_FOUND"

    def __init__(self, participant_id: str):
        super().__init__(f"Timer not found for player: {participant_id}")
        self.participant_id = participant_id


# ---------------- In-game failures -----------------
class TimeoutFailure(ArenaError):
    code = "TIMEOUT"
    kind = ErrorKind.TIMEOUT

    def __init__(self, participant_id: str, color: str):
        super().__init__(f"Player {participant_id} ({color}) exceeded time limit")
        self.participant_id = participant_id
        self.color = color


class IllegalMoveFailure(ArenaError):
    code = "INVALID_MOVE"
    kind = ErrorKind.ILLEGAL_MOVE

    def __init__(self, reason: str, move: str):
        super().__init__(reason)
        self.reason = reason
        self.move = move


class MoveRequestFailure(ArenaError):
    """A move request to a player failed (transport error, API error, ...)."""

    code = "REQUEST_FAILED"
    kind = ErrorKind.OTHER
    backoff_s = 3.0

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BadResponseFailure(MoveRequestFailure):
    """The reply arrived but is malformed (empty, missing required fields)."""

    code = "BAD_RESPONSE"
    kind = ErrorKind.PARSE_OR_FORMAT
    backoff_s = 3.0


class UnparsableResponseFailure(MoveRequestFailure):
    """The reply contains no parseable move payload."""

    code = "UNPARSABLE_RESPONSE"
    kind = ErrorKind.PARSE_OR_FORMAT
    backoff_s = 2.0


class RateLimitFailure(MoveRequestFailure):
    code = "RATE_LIMIT"
    kind = ErrorKind.TRANSIENT
    backoff_s = 15.0


def kind_of(error: BaseException) -> ErrorKind:
    """Return the classification tag carried by an error (OTHER when untagged)."""
    kind = getattr(error, "kind", None)
    return kind if isinstance(kind, ErrorKind) else ErrorKind.OTHER
