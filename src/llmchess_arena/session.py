"""Per-game mutable state owned by the orchestrator."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .models import GameStatus


@dataclass
class Session:
    status: GameStatus = GameStatus.NOT_STARTED
    paused: bool = False
    move_count: int = 0
    # participant id -> {normalized move -> rejected attempts}; kept for the whole game
    invalid_attempts: dict[str, dict[str, int]] = field(default_factory=dict)
    # participant id -> (move, identical rejections in a row); drives the forfeit threshold
    illegal_streaks: dict[str, tuple[str, int]] = field(default_factory=dict)
    # participant id -> feedback for the next move request
    last_feedback: dict[str, str] = field(default_factory=dict)
    # participant id -> parse/format/other failures since the last accepted move
    retry_counts: dict[str, int] = field(default_factory=dict)

    def record_illegal(self, participant_id: str, move: str) -> int:
        """Count a rejected move. Returns how many times in a row this exact move was rejected."""
        attempts = self.invalid_attempts.setdefault(participant_id, {})
        attempts[move] = attempts.get(move, 0) + 1
        prev_move, prev_count = self.illegal_streaks.get(participant_id, (None, 0))
        streak = prev_count + 1 if prev_move == move else 1
        self.illegal_streaks[participant_id] = (move, streak)
        return streak

    def illegal_count(self, participant_id: str, move: str) -> int:
        return self.invalid_attempts.get(participant_id, {}).get(move, 0)

    def illegal_streak(self, participant_id: str) -> tuple[Optional[str], int]:
        return self.illegal_streaks.get(participant_id, (None, 0))

    def illegal_summary(self, participant_id: str) -> list[str]:
        """Distinct illegal moves with counts, e.g. ['e2e5 (3x)']."""
        return [f"{mv} ({n}x)" for mv, n in self.invalid_attempts.get(participant_id, {}).items()]

    def move_accepted(self, participant_id: str) -> None:
        """Reset the per-turn counters after a legal move. The ledger itself is kept."""
        self.retry_counts[participant_id] = 0
        self.illegal_streaks.pop(participant_id, None)

    def bump_retry(self, participant_id: str) -> int:
        self.retry_counts[participant_id] = self.retry_counts.get(participant_id, 0) + 1
        return self.retry_counts[participant_id]

    def reset_retry(self, participant_id: str) -> None:
        self.retry_counts[participant_id] = 0

    def retry_count(self, participant_id: str) -> int:
        return self.retry_counts.get(participant_id, 0)

    def set_feedback(self, participant_id: str, text: str) -> None:
        self.last_feedback[participant_id] = text

    def pop_feedback(self, participant_id: str) -> str | None:
        return self.last_feedback.pop(participant_id, None)
