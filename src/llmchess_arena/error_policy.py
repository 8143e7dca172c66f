"""
Failure classification.

classify() is a pure mapping from an ErrorContext to a Resolution. ErrorPolicy
wraps it with the bookkeeping the orchestrator needs: it derives the kind from
the failure's tag, updates the session ledgers, stores feedback for illegal
moves, and then asks classify() what to do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ErrorKind, IllegalMoveFailure, Resolution, kind_of
from .session import Session

MAX_RETRIES = 3

log = logging.getLogger("error_policy")


@dataclass(frozen=True)
class ErrorContext:
    kind: ErrorKind
    participant_id: str
    retry_count: int
    attempted_move: Optional[str] = None


def classify(ctx: ErrorContext, max_retries: int = MAX_RETRIES, pause_on_rate_limit: bool = False) -> Resolution:
    """Map a failure to the orchestrator's next action.

    `ctx.retry_count` is the count after the failure was recorded: for illegal
    moves, how many times in a row that exact move was rejected; otherwise the
    generic per-participant count.
    Kinds are checked in precedence order TIMEOUT > ILLEGAL_MOVE > PARSE_OR_FORMAT
    > TRANSIENT > OTHER.
    """
    kind = ctx.kind
    if kind is ErrorKind.TIMEOUT:
        return Resolution.END_GAME
    if kind is ErrorKind.ILLEGAL_MOVE:
        return Resolution.FORFEIT if ctx.retry_count >= max_retries else Resolution.RETRY
    if kind is ErrorKind.TRANSIENT and pause_on_rate_limit:
        return Resolution.PAUSE_GAME
    # PARSE_OR_FORMAT, TRANSIENT and OTHER share the generic counter
    return Resolution.RETRY if ctx.retry_count < max_retries else Resolution.FORFEIT


def illegal_move_feedback(move: str, reason: str, attempt: int, max_retries: int = MAX_RETRIES) -> str:
    reason = reason.rstrip(".")
    return (
        f"Your move {move} was invalid. {reason}. "
        f"Attempt {attempt}/{max_retries} for this move. Please choose a different legal move."
    )


class ErrorPolicy:
    def __init__(self, max_retries: int = MAX_RETRIES, pause_on_rate_limit: bool = False):
        self.max_retries = max_retries
        self.pause_on_rate_limit = pause_on_rate_limit

    def context_for(self, error: BaseException, session: Session, participant_id: str) -> ErrorContext:
        """Record the failure in the session and build its ErrorContext."""
        kind = kind_of(error)
        if kind is ErrorKind.TIMEOUT:
            return ErrorContext(kind, participant_id, retry_count=session.retry_count(participant_id))
        if kind is ErrorKind.ILLEGAL_MOVE:
            move = error.move if isinstance(error, IllegalMoveFailure) else "unknown"
            count = session.record_illegal(participant_id, move)
            return ErrorContext(kind, participant_id, retry_count=count, attempted_move=move)
        if kind is ErrorKind.TRANSIENT and self.pause_on_rate_limit:
            return ErrorContext(kind, participant_id, retry_count=session.retry_count(participant_id))
        return ErrorContext(kind, participant_id, retry_count=session.bump_retry(participant_id))

    def resolve(self, error: BaseException, session: Session, participant_id: str) -> tuple[Resolution, ErrorContext]:
        ctx = self.context_for(error, session, participant_id)
        resolution = classify(ctx, self.max_retries, self.pause_on_rate_limit)
        if ctx.kind is ErrorKind.ILLEGAL_MOVE and resolution is Resolution.RETRY:
            reason = getattr(error, "reason", None) or str(error) or "Illegal move"
            session.set_feedback(
                participant_id,
                illegal_move_feedback(ctx.attempted_move or "unknown", reason, ctx.retry_count, self.max_retries),
            )
        log.debug("Classified %s for %s as %s (count=%d)", ctx.kind.value, participant_id, resolution.value, ctx.retry_count)
        return resolution, ctx
