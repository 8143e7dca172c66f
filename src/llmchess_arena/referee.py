"""
Referee: the rules engine behind the orchestrator.

- Owns a python-chess Board and validates/applies moves given as from/to/promotion.
- Keeps the move history (including synthetic forfeit entries) as MoveRecord objects.
- Reports terminal state: checkmate, and draws in the fixed priority
  stalemate > insufficient material > threefold repetition > fifty-move rule.
- Manages PGN headers, result overrides, and an optional termination comment.

The orchestrator only sees the summaries returned here, never board squares.
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from typing import Optional

import chess
import chess.pgn

from .models import DrawReason, MoveRecord, PlayerColor

SQUARE_RE = re.compile(r"^[a-h][1-8]$")
PROMOTION_PIECES = {"q", "r", "b", "n"}


@dataclass
class ValidationResult:
    legal: bool
    reason: str | None = None


@dataclass
class MoveOutcome:
    record: MoveRecord
    is_check: bool
    is_checkmate: bool
    is_stalemate: bool
    is_draw: bool
    draw_reason: DrawReason | None = None


@dataclass
class GameSnapshot:
    turn: PlayerColor
    fen: str
    move_history: list[MoveRecord]
    pgn: str
    legal_moves: list[str] = field(default_factory=list)
    halfmove_clock: int = 0
    fullmove_number: int = 1

    @property
    def position_id(self) -> str:
        return self.fen


class Referee:
    """Plain chess referee around python-chess Board and PGN export."""

    def __init__(self, starting_fen: str | None = None):
        self._headers: dict[str, str] = {}
        self.initialize(starting_fen)

    def initialize(self, fen: str | None = None) -> None:
        """Reset to the standard start (or the given FEN). Raises ValueError on a bad FEN."""
        self.board = chess.Board(fen=fen) if fen else chess.Board()
        self.starting_fen = self.board.fen()
        self._history: list[MoveRecord] = []
        self._result_override: Optional[str] = None
        self._termination_comment: Optional[str] = None

    # ---------------- Header / Result Management -----------------
    def set_headers(self, event: str = "LLM Chess Game", site: str = "?", date: Optional[str] = None,
                    round_: str = "?", white: str = "?", black: str = "?") -> None:
        date = date or datetime.date.today().strftime("%Y.%m.%d")
        self._headers.update({
            "Event": event,
            "Site": site,
            "Date": date,
            "Round": round_,
            "White": white,
            "Black": black,
        })

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def set_result(self, result: str, termination_reason: Optional[str] = None) -> None:
        self._result_override = result
        if termination_reason:
            self._termination_comment = f"Termination: {termination_reason}"

    # ---------------- Move Validation / Application -----------------
    def _resolve(self, from_square: str, to_square: str, promotion: str | None) -> chess.Move | None:
        try:
            mv = chess.Move.from_uci(f"{from_square}{to_square}{promotion or ''}")
        except ValueError:
            return None
        if mv in self.board.legal_moves:
            return mv
        if promotion is None:
            # a pawn reaching the last rank without a piece letter promotes to a queen
            queened = chess.Move(mv.from_square, mv.to_square, promotion=chess.QUEEN)
            if queened in self.board.legal_moves:
                return queened
        return None

    def validate_move(self, from_square: str, to_square: str, promotion: str | None = None) -> ValidationResult:
        if not SQUARE_RE.match(from_square or "") or not SQUARE_RE.match(to_square or ""):
            return ValidationResult(False, f"Invalid square notation: {from_square}{to_square}")
        if promotion is not None and promotion not in PROMOTION_PIECES:
            return ValidationResult(False, f"Invalid promotion piece: {promotion}")
        if self._resolve(from_square, to_square, promotion) is None:
            return ValidationResult(False, "Move is not legal in current position")
        return ValidationResult(True)

    def apply_move(self, from_square: str, to_square: str, promotion: str | None = None) -> MoveOutcome:
        """Apply a legal move. Raises ValueError when the move is not legal."""
        check = self.validate_move(from_square, to_square, promotion)
        if not check.legal:
            raise ValueError(check.reason)
        mv = self._resolve(from_square, to_square, promotion)
        color = PlayerColor.from_turn(self.board.turn)
        captured = None
        if self.board.is_en_passant(mv):
            captured = "p"
        else:
            piece = self.board.piece_at(mv.to_square)
            if piece is not None:
                captured = piece.symbol().lower()
        san = self.board.san(mv)
        self.board.push(mv)
        record = MoveRecord(
            from_square=chess.square_name(mv.from_square),
            to_square=chess.square_name(mv.to_square),
            notation=san,
            san=san,
            uci=mv.uci(),
            fen=self.board.fen(),
            color=color,
            promotion=chess.piece_symbol(mv.promotion) if mv.promotion else None,
            captured=captured,
        )
        self._history.append(record)
        draw_reason = self.draw_reason()
        return MoveOutcome(
            record=record,
            is_check=self.board.is_check(),
            is_checkmate=self.board.is_checkmate(),
            is_stalemate=self.board.is_stalemate(),
            is_draw=draw_reason is not None,
            draw_reason=draw_reason,
        )

    def record_forfeit(self, color: PlayerColor, reason: str) -> MoveRecord:
        record = MoveRecord(
            from_square="forfeit",
            to_square="forfeit",
            notation=f"{color.value} forfeits: {reason}",
            san="forfeit",
            fen=self.board.fen(),
            color=color,
        )
        self._history.append(record)
        return record

    # ---------------- Terminal State -----------------
    def draw_reason(self) -> DrawReason | None:
        """Return the draw condition holding in the current position, if any."""
        if self.board.is_stalemate():
            return DrawReason.STALEMATE
        if self.board.is_insufficient_material():
            return DrawReason.INSUFFICIENT_MATERIAL
        if self.board.is_repetition(3):
            return DrawReason.THREEFOLD_REPETITION
        if self.board.halfmove_clock >= 100:
            return DrawReason.FIFTY_MOVE_RULE
        return None

    def is_checkmate(self) -> bool:
        return self.board.is_checkmate()

    def is_game_over(self) -> bool:
        return self.board.is_checkmate() or self.draw_reason() is not None

    # ---------------- Snapshot -----------------
    def legal_moves(self) -> list[str]:
        return sorted(m.uci() for m in self.board.legal_moves)

    def current_state(self) -> GameSnapshot:
        return GameSnapshot(
            turn=PlayerColor.from_turn(self.board.turn),
            fen=self.board.fen(),
            move_history=list(self._history),
            pgn=self.movetext(),
            legal_moves=self.legal_moves(),
            halfmove_clock=self.board.halfmove_clock,
            fullmove_number=self.board.fullmove_number,
        )

    @property
    def move_history(self) -> list[MoveRecord]:
        return list(self._history)

    # ---------------- PGN / Status -----------------
    def _game(self) -> chess.pgn.Game:
        game = chess.pgn.Game.from_board(self.board)
        for k, v in self._headers.items():
            game.headers[k] = v
        game.headers["Result"] = self.status()
        if self._termination_comment:
            game.comment = self._termination_comment
        return game

    def movetext(self) -> str:
        """SAN move list without headers, e.g. '1. e4 e5 2. Nf3'."""
        exporter = chess.pgn.StringExporter(headers=False, variations=False, comments=False)
        text = self._game().accept(exporter)
        # drop the trailing result token
        return text.rsplit(" ", 1)[0] if " " in text else ""

    def pgn(self) -> str:
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=bool(self._termination_comment))
        return self._game().accept(exporter)

    def status(self) -> str:
        if self._result_override:
            return self._result_override
        if self.board.is_checkmate():
            return "0-1" if self.board.turn == chess.WHITE else "1-0"
        if self.draw_reason() is not None:
            return "1/2-1/2"
        return "*"
