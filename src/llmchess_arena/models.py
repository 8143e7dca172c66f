"""
Shared value types for the arena.

- Enums: PlayerColor, GameStatus, DrawReason, TimerMode, ResultKind, OutputFormat.
- Configuration: TimerConfig (per clock), PlayerSettings and GameConfig (per game).
- Exchange types between the orchestrator and players: GameContext, MoveResponse, DrawResponse.
- MoveRecord (one entry of move history) and Result (the final outcome).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import chess

from .config import SETTINGS


class PlayerColor(str, Enum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opposite(self) -> "PlayerColor":
        return PlayerColor.BLACK if self is PlayerColor.WHITE else PlayerColor.WHITE

    @classmethod
    def from_turn(cls, turn: chess.Color) -> "PlayerColor":
        return cls.WHITE if turn == chess.WHITE else cls.BLACK


class GameStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    WIN = "win"
    DRAW = "draw"
    TIMEOUT = "timeout"
    FORFEIT = "forfeit"

    @property
    def is_terminal(self) -> bool:
        return self in (GameStatus.WIN, GameStatus.DRAW, GameStatus.TIMEOUT, GameStatus.FORFEIT)


class DrawReason(str, Enum):
    STALEMATE = "stalemate"
    INSUFFICIENT_MATERIAL = "insufficient_material"
    THREEFOLD_REPETITION = "threefold_repetition"
    FIFTY_MOVE_RULE = "fifty_move_rule"
    AGREEMENT = "agreement"


DRAW_REASON_TEXT = {
    DrawReason.STALEMATE: "Stalemate - No legal moves available",
    DrawReason.INSUFFICIENT_MATERIAL: "Insufficient Material - Neither side can checkmate",
    DrawReason.THREEFOLD_REPETITION: "Threefold Repetition - Same position occurred 3 times",
    DrawReason.FIFTY_MOVE_RULE: "Fifty-Move Rule - 50 moves without pawn move or capture",
    DrawReason.AGREEMENT: "Draw by Agreement - Both players agreed to draw",
}


class TimerMode(str, Enum):
    FISCHER = "fischer"
    BRONSTEIN = "bronstein"
    SIMPLE = "simple"


class ResultKind(str, Enum):
    WIN = "win"
    DRAW = "draw"
    TIMEOUT = "timeout"
    FORFEIT = "forfeit"


class OutputFormat(str, Enum):
    PGN = "pgn"
    JSON = "json"


# ---------------- Configuration -----------------
@dataclass(frozen=True)
class TimerConfig:
    initial_ms: int
    increment_ms: int = 0
    mode: TimerMode = TimerMode.FISCHER

    def __post_init__(self):
        if self.initial_ms <= 0:
            raise ValueError(f"initial_ms must be positive, got {self.initial_ms}")
        if self.increment_ms < 0:
            raise ValueError(f"increment_ms cannot be negative, got {self.increment_ms}")
        # accept plain strings coming from JSON/YAML configs
        object.__setattr__(self, "mode", TimerMode(self.mode))


@dataclass
class PlayerSettings:
    id: str
    model: str
    initial_time_ms: int = SETTINGS.initial_time_ms
    increment_ms: int = SETTINGS.increment_ms
    name: str | None = None

    def label(self) -> str:
        return self.name or self.model


@dataclass
class GameConfig:
    white: PlayerSettings
    black: PlayerSettings
    timer_mode: TimerMode = TimerMode(SETTINGS.timer_mode)
    output_format: OutputFormat = OutputFormat.PGN
    save_game: bool = False
    starting_fen: str | None = None
    # Pause the game (instead of counting a generic retry) when rate limiting outlasts the request retries
    pause_on_rate_limit: bool = False
    move_delay_s: float = SETTINGS.move_delay_s
    pause_poll_s: float = SETTINGS.pause_poll_s
    forfeit_reason_timeout_s: float = 30.0

    def players(self) -> dict[PlayerColor, PlayerSettings]:
        return {PlayerColor.WHITE: self.white, PlayerColor.BLACK: self.black}

    def timer_config(self, color: PlayerColor) -> TimerConfig:
        p = self.players()[color]
        return TimerConfig(initial_ms=p.initial_time_ms, increment_ms=p.increment_ms, mode=self.timer_mode)

    def to_dict(self) -> dict:
        def _player(p: PlayerSettings) -> dict:
            return {
                "id": p.id,
                "model": p.model,
                "name": p.name,
                "initial_time_ms": p.initial_time_ms,
                "increment_ms": p.increment_ms,
            }
        return {
            "white": _player(self.white),
            "black": _player(self.black),
            "timer_mode": TimerMode(self.timer_mode).value,
            "output_format": OutputFormat(self.output_format).value,
            "save_game": self.save_game,
            "starting_fen": self.starting_fen,
            "pause_on_rate_limit": self.pause_on_rate_limit,
        }


# ---------------- Move history -----------------
@dataclass
class MoveRecord:
    from_square: str
    to_square: str
    notation: str
    color: PlayerColor
    san: str | None = None
    uci: str | None = None
    fen: str | None = None
    promotion: str | None = None
    captured: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    time_used_ms: int = 0

    @property
    def is_forfeit(self) -> bool:
        return self.san == "forfeit"

    def to_dict(self) -> dict:
        return {
            "from": self.from_square,
            "to": self.to_square,
            "notation": self.notation,
            "san": self.san,
            "uci": self.uci,
            "fen": self.fen,
            "promotion": self.promotion,
            "captured": self.captured,
            "color": self.color.value,
            "timestamp": self.timestamp.isoformat(),
            "time_used_ms": self.time_used_ms,
        }


# ---------------- Player exchange types -----------------
@dataclass
class MoveResponse:
    from_square: str
    to_square: str
    promotion: str | None = None
    offer_draw: bool = False
    raw: str = ""

    @property
    def uci(self) -> str:
        """Normalized move string used to key the illegal-move ledger."""
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    @classmethod
    def from_uci(cls, uci: str, offer_draw: bool = False, raw: str = "") -> "MoveResponse":
        uci = uci.strip().lower()
        return cls(uci[0:2], uci[2:4], uci[4:5] or None, offer_draw=offer_draw, raw=raw or uci)


@dataclass
class DrawResponse:
    accept: bool
    reason: str | None = None


@dataclass
class GameContext:
    """Snapshot handed to a player for one request."""

    fen: str
    color: PlayerColor
    turn: PlayerColor
    move_history: list[MoveRecord]
    pgn: str
    legal_moves: list[str]
    time_remaining_ms: int
    opponent_time_remaining_ms: int
    last_move: Optional[MoveRecord] = None
    invalid_move_feedback: str | None = None


# ---------------- Outcome -----------------
@dataclass(frozen=True)
class Result:
    kind: ResultKind
    reason: str
    move_count: int
    winner: PlayerColor | None = None
    draw_reason: DrawReason | None = None
    final_position: str | None = None

    def __post_init__(self):
        if not self.reason:
            raise ValueError("Result requires a reason")

    @property
    def pgn_result(self) -> str:
        if self.winner is PlayerColor.WHITE:
            return "1-0"
        if self.winner is PlayerColor.BLACK:
            return "0-1"
        return "1/2-1/2"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "winner": self.winner.value if self.winner else None,
            "reason": self.reason,
            "draw_reason": self.draw_reason.value if self.draw_reason else None,
            "move_count": self.move_count,
            "final_position": self.final_position,
            "result": self.pgn_result,
        }
