"""
TurnOrchestrator: the game-loop state machine.

NOT_STARTED -> IN_PROGRESS <-> PAUSED -> {WIN, DRAW, TIMEOUT, FORFEIT}

One turn:
- pause the opponent clock, start the acting clock, build the GameContext (consuming feedback);
- request a move (up to 3 attempts with per-failure backoff) racing the clock's expiry watcher;
- stop the clock; an expired clock wins over whatever the request produced;
- validate and apply the move, add the increment, run the draw-offer exchange if one was made;
- check the position for checkmate or a draw.

Failures raised during a turn go through ErrorPolicy, which answers RETRY, PAUSE_GAME,
FORFEIT or END_GAME. Only SetupError, OrchestrationError, TimerNotFound (a clock that
was never set up) and task cancellation escape.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .error_policy import ErrorPolicy
from .errors import (
    ArenaError,
    ErrorKind,
    IllegalMoveFailure,
    MoveRequestFailure,
    OrchestrationError,
    Resolution,
    SetupError,
    TimeoutFailure,
    TimerNotFound,
)
from .events import EventSink, EventType, GameEvent, LoggingEventSink
from .models import (
    DRAW_REASON_TEXT,
    DrawReason,
    DrawResponse,
    GameConfig,
    GameContext,
    GameStatus,
    MoveResponse,
    PlayerColor,
    Result,
    ResultKind,
)
from .prompting import build_forfeit_prompt
from .referee import Referee
from .session import Session
from .storage import StateManager
from .timer import TimerService

REQUEST_ATTEMPTS = 3

log = logging.getLogger("orchestrator")

Sleep = Callable[[float], Awaitable[Any]]


class TurnOrchestrator:
    def __init__(self, referee: Referee, players: dict, timers: TimerService | None = None,
                 policy: ErrorPolicy | None = None, events: EventSink | None = None,
                 storage: StateManager | None = None, sleep: Sleep = asyncio.sleep,
                 request_attempts: int = REQUEST_ATTEMPTS):
        self.referee = referee
        self.players = {PlayerColor(c): p for c, p in players.items()}
        self.timers = timers or TimerService()
        self.events = events or LoggingEventSink()
        self.storage = storage
        self.request_attempts = request_attempts
        self._policy_override = policy
        self.policy = policy or ErrorPolicy()
        self._sleep = sleep
        self._session = Session()
        self._config: Optional[GameConfig] = None
        self._ids: dict[PlayerColor, str] = {}
        self._result: Optional[Result] = None
        # clock time the acting player used before a pause() that landed mid-request
        self._turn_pid: Optional[str] = None
        self._banked_ms = 0

    # ---------------- Accessors -----------------
    @property
    def status(self) -> GameStatus:
        return self._session.status

    @property
    def session(self) -> Session:
        return self._session

    @property
    def current_color(self) -> PlayerColor:
        return PlayerColor.from_turn(self.referee.board.turn)

    @property
    def result(self) -> Optional[Result]:
        return self._result

    @property
    def config(self) -> Optional[GameConfig]:
        return self._config

    def participant_id(self, color: PlayerColor) -> str:
        return self._ids[color]

    # ---------------- Lifecycle -----------------
    def start(self, config: GameConfig) -> None:
        if self._session.status is not GameStatus.NOT_STARTED:
            raise SetupError(f"Game already started (status: {self._session.status.value})")
        ids = {color: p.id for color, p in config.players().items()}
        if not ids[PlayerColor.WHITE] or ids[PlayerColor.WHITE] == ids[PlayerColor.BLACK]:
            raise SetupError("Players need distinct, non-empty ids")
        for color in PlayerColor:
            player = self.players.get(color)
            if player is None:
                raise SetupError(f"No player registered for {color.value}")
            pid = getattr(player, "id", None)
            if pid is not None and pid != ids[color]:
                raise SetupError(f"Player id {pid!r} does not match configured {color.value} id {ids[color]!r}")

        try:
            timer_cfgs = {color: config.timer_config(color) for color in PlayerColor}
            self.referee.initialize(config.starting_fen)
            for color, tc in timer_cfgs.items():
                self.timers.init(ids[color], tc)
        except (ValueError, ArenaError) as e:
            self._session = Session()
            raise SetupError(f"Failed to initialize game: {e}") from e

        self._config = config
        self._ids = ids
        self._result = None
        self.policy = self._policy_override or ErrorPolicy(pause_on_rate_limit=config.pause_on_rate_limit)
        self._session = Session(status=GameStatus.IN_PROGRESS)
        self._emit(EventType.GAME_STARTED,
                   f"{config.white.label()} (white) vs {config.black.label()} (black)",
                   white=config.white.model, black=config.black.model, fen=self.referee.board.fen())

        if config.save_game and self.storage is not None:
            try:
                self.storage.save_configuration(config)
            except Exception:
                log.warning("Could not save game configuration", exc_info=True)

    def pause(self) -> bool:
        if self._session.status is not GameStatus.IN_PROGRESS:
            return False
        self._stop_clocks()
        self._session.paused = True
        self._session.status = GameStatus.PAUSED
        self._emit(EventType.PAUSED, "Game paused")
        return True

    def resume(self) -> bool:
        if self._session.status is not GameStatus.PAUSED:
            return False
        self._session.paused = False
        self._session.status = GameStatus.IN_PROGRESS
        color = self.current_color
        self.timers.start(self._ids[color])
        self._emit(EventType.RESUMED, "Game resumed", color)
        return True

    # ---------------- Main loop -----------------
    async def run_loop(self) -> Result:
        if self._session.status not in (GameStatus.IN_PROGRESS, GameStatus.PAUSED):
            raise OrchestrationError(f"Game is not running (status: {self._session.status.value})")
        result: Optional[Result] = None
        try:
            while result is None:
                if self._session.paused:
                    await self._sleep(self._config.pause_poll_s)
                    continue
                if self.referee.is_game_over():
                    result = self._result_from_position()
                    break
                result = await self._step()
        finally:
            self._stop_clocks()
        self._finish(result)
        return result

    async def _step(self) -> Optional[Result]:
        color = self.current_color
        pid = self._ids[color]
        try:
            return await self._play_turn(color, pid)
        except (SetupError, OrchestrationError, TimerNotFound):
            raise
        except Exception as err:
            return await self._handle_failure(err, color, pid)

    async def _play_turn(self, color: PlayerColor, pid: str) -> Optional[Result]:
        player = self.players[color]
        self._emit(EventType.TURN_STARTED, f"{self._label(color)} to move", color,
                   move_number=self.referee.board.fullmove_number)
        self.timers.pause(self._ids[color.opposite])
        self._turn_pid, self._banked_ms = pid, 0
        self.timers.start(pid)
        ctx = self._context_for(color, consume_feedback=True)

        self._emit(EventType.THINKING_STARTED, f"{self._label(color)} is thinking", color)
        move: Optional[MoveResponse] = None
        failure: Optional[BaseException] = None
        try:
            move = await self._await_move_or_timeout(player, ctx, pid, color)
        except Exception as e:
            failure = e
        finally:
            elapsed = self.timers.pause(pid) + self._banked_ms
            self._turn_pid, self._banked_ms = None, 0
            self._emit(EventType.THINKING_STOPPED, f"{self._label(color)} answered after {elapsed} ms", color,
                       elapsed_ms=elapsed)
        if self.timers.is_expired(pid):
            raise TimeoutFailure(pid, color.value)
        if failure is not None:
            raise failure

        check = self.referee.validate_move(move.from_square, move.to_square, move.promotion)
        if not check.legal:
            raise IllegalMoveFailure(check.reason or "Illegal move", move.uci)
        outcome = self.referee.apply_move(move.from_square, move.to_square, move.promotion)
        outcome.record.time_used_ms = elapsed
        self.timers.add_increment(pid, self._config.timer_config(color).increment_ms)
        self._emit(EventType.MOVE_APPLIED, f"{self._label(color)} played {outcome.record.san}", color,
                   san=outcome.record.san, uci=outcome.record.uci, fen=outcome.record.fen,
                   time_used_ms=elapsed, remaining_ms=self.timers.remaining(pid), check=outcome.is_check)

        if move.offer_draw and not self.referee.is_game_over():
            agreed = await self._handle_draw_offer(color)
            if agreed is not None:
                return agreed

        self._session.move_count += 1
        self._session.move_accepted(pid)

        if self._config.move_delay_s > 0:
            await self._sleep(self._config.move_delay_s)

        if outcome.is_checkmate:
            return self._win(color, "Checkmate")
        if outcome.draw_reason is not None:
            return self._draw(outcome.draw_reason)
        return None

    async def _await_move_or_timeout(self, player, ctx: GameContext, pid: str, color: PlayerColor) -> MoveResponse:
        request = asyncio.ensure_future(self._request_move(player, ctx, color))
        watcher = asyncio.ensure_future(self.timers.watch_expiry(pid))
        try:
            await asyncio.wait({request, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (request, watcher):
                if not task.done():
                    task.cancel()
            await asyncio.gather(request, watcher, return_exceptions=True)
        if request.cancelled():
            raise TimeoutFailure(pid, color.value)
        return request.result()

    async def _request_move(self, player, ctx: GameContext, color: PlayerColor) -> MoveResponse:
        """Ask for a move, backing off between attempts as the failure type dictates."""
        last: Optional[MoveRequestFailure] = None
        for attempt in range(1, self.request_attempts + 1):
            try:
                return await player.request_move(ctx)
            except MoveRequestFailure as e:
                last = e
                if attempt >= self.request_attempts:
                    break
                self._emit(EventType.REQUEST_RETRY,
                           f"{e.message or e.code}; retrying in {e.backoff_s:g}s (attempt {attempt}/{self.request_attempts})",
                           color, code=e.code, attempt=attempt, backoff_s=e.backoff_s)
                await self._sleep(e.backoff_s)
        raise last

    # ---------------- Failure handling -----------------
    async def _handle_failure(self, err: BaseException, color: PlayerColor, pid: str) -> Optional[Result]:
        resolution, ctx = self.policy.resolve(err, self._session, pid)
        if ctx.kind is ErrorKind.ILLEGAL_MOVE:
            self._emit(EventType.INVALID_MOVE_WARNING,
                       f"Invalid move {ctx.attempted_move}: {err} (attempt {ctx.retry_count}/{self.policy.max_retries})",
                       color, move=ctx.attempted_move, attempt=ctx.retry_count)
        else:
            log.warning("%s failed (%s): %s -> %s", self._label(color), ctx.kind.value, err, resolution.value)

        if resolution is Resolution.RETRY:
            return None
        if resolution is Resolution.PAUSE_GAME:
            self.pause()
            return None
        if resolution is Resolution.FORFEIT:
            return await self._forfeit(color, pid, err)
        if ctx.kind is ErrorKind.TIMEOUT:
            return Result(ResultKind.TIMEOUT, f"{color.value} ran out of time", self._session.move_count,
                          winner=color.opposite, final_position=self.referee.board.fen())
        return Result(ResultKind.DRAW, f"Game ended due to error: {err}", self._session.move_count,
                      final_position=self.referee.board.fen())

    async def _forfeit(self, color: PlayerColor, pid: str, err: BaseException) -> Result:
        attempts = self._session.illegal_summary(pid)
        explanation = await self._forfeit_explanation(color, pid)
        if explanation and attempts:
            explanation = f"Attempted invalid moves: {', '.join(attempts)}. {explanation}"
        elif not explanation:
            if attempts:
                explanation = f"Made repeated invalid moves: {', '.join(attempts)}"
            else:
                explanation = f"Repeated failures: {err}"
        self.referee.record_forfeit(color, explanation)
        reason = f"{color.value} forfeited: {explanation}"
        self._emit(EventType.FORFEIT, reason, color, invalid_moves=attempts)
        return Result(ResultKind.FORFEIT, reason, self._session.move_count,
                      winner=color.opposite, final_position=self.referee.board.fen())

    async def _forfeit_explanation(self, color: PlayerColor, pid: str) -> str:
        ask = getattr(self.players[color], "ask", None)
        if ask is None:
            return ""
        moves = list(self._session.invalid_attempts.get(pid, {}))
        prompt = build_forfeit_prompt(self.referee.board.fen(), moves)
        try:
            reply = await asyncio.wait_for(ask(prompt), timeout=self._config.forfeit_reason_timeout_s)
        except Exception:
            log.warning("Could not get forfeit explanation from %s", self._label(color), exc_info=True)
            return ""
        return (reply or "").strip()

    async def _handle_draw_offer(self, offering: PlayerColor) -> Optional[Result]:
        responder_color = offering.opposite
        responder = self.players[responder_color]
        self._emit(EventType.DRAW_OFFERED, f"{self._label(offering)} offers a draw", offering)
        respond = getattr(responder, "respond_to_draw_offer", None)
        if respond is None:
            self._emit(EventType.DRAW_OFFER_IGNORED,
                       f"{self._label(responder_color)} cannot answer draw offers", responder_color)
            return None
        ctx = self._context_for(responder_color, consume_feedback=False)
        try:
            reply = await respond(ctx)
        except Exception:
            log.warning("Draw responder %s failed; treating as decline", self._label(responder_color), exc_info=True)
            reply = DrawResponse(accept=False, reason="no valid answer")
        if reply.accept:
            return self._draw(DrawReason.AGREEMENT)
        self._emit(EventType.DRAW_DECLINED,
                   f"{self._label(responder_color)} declined the draw" + (f": {reply.reason}" if reply.reason else ""),
                   responder_color)
        return None

    # ---------------- Helpers -----------------
    def _context_for(self, color: PlayerColor, consume_feedback: bool) -> GameContext:
        snap = self.referee.current_state()
        pid = self._ids[color]
        history = snap.move_history
        return GameContext(
            fen=snap.fen,
            color=color,
            turn=snap.turn,
            move_history=history,
            pgn=snap.pgn,
            legal_moves=snap.legal_moves,
            time_remaining_ms=self.timers.remaining(pid),
            opponent_time_remaining_ms=self.timers.remaining(self._ids[color.opposite]),
            last_move=history[-1] if history else None,
            invalid_move_feedback=self._session.pop_feedback(pid) if consume_feedback else None,
        )

    def _win(self, winner: PlayerColor, reason: str) -> Result:
        return Result(ResultKind.WIN, reason, self._session.move_count,
                      winner=winner, final_position=self.referee.board.fen())

    def _draw(self, reason: DrawReason | None) -> Result:
        reason = reason or DrawReason.STALEMATE
        return Result(ResultKind.DRAW, DRAW_REASON_TEXT[reason], self._session.move_count,
                      draw_reason=reason, final_position=self.referee.board.fen())

    def _result_from_position(self) -> Result:
        if self.referee.is_checkmate():
            return self._win(self.current_color.opposite, "Checkmate")
        return self._draw(self.referee.draw_reason())

    def _finish(self, result: Result) -> None:
        self._result = result
        self._session.paused = False
        self._session.status = GameStatus(result.kind.value)
        self.referee.set_result(result.pgn_result, result.reason)
        self._emit(EventType.GAME_ENDED, result.reason, result.winner,
                   kind=result.kind.value, result=result.pgn_result, move_count=result.move_count)
        if self._config.save_game and self.storage is not None:
            try:
                self.storage.export_game(self.referee, result, self._config.output_format)
            except Exception:
                log.warning("Could not export finished game", exc_info=True)

    def _stop_clocks(self) -> None:
        for pid in self._ids.values():
            if self.timers.has(pid):
                elapsed = self.timers.pause(pid)
                if pid == self._turn_pid:
                    self._banked_ms += elapsed

    def _label(self, color: PlayerColor) -> str:
        player = self.players.get(color)
        label = getattr(player, "label", None)
        if callable(label):
            return label()
        return getattr(player, "name", None) or color.value

    def _emit(self, type_: EventType, message: str, color: PlayerColor | None = None, **data) -> None:
        try:
            self.events.emit(GameEvent(type_, message, color, data))
        except Exception:
            log.exception("Event sink failed for %s", type_.value)
