import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

from src.llmchess_arena.error_policy import ErrorContext, ErrorPolicy
from src.llmchess_arena.errors import (
    BadResponseFailure,
    ErrorKind,
    OrchestrationError,
    RateLimitFailure,
    Resolution,
    SetupError,
    TimerNotFound,
    UnparsableResponseFailure,
)
from src.llmchess_arena.models import (
    DRAW_REASON_TEXT,
    DrawReason,
    DrawResponse,
    GameConfig,
    GameStatus,
    MoveResponse,
    PlayerColor,
    PlayerSettings,
    ResultKind,
    TimerConfig,
    TimerMode,
)
from src.llmchess_arena.orchestrator import TurnOrchestrator
from src.llmchess_arena.referee import Referee
from src.llmchess_arena.timer import TimerService
from tests.fakes import HANG, CollectingSink, DrawAwarePlayer, FakeClock, RecordingSleep, ScriptedPlayer

FOOLS_MATE_WHITE = ["f2f3", "g2g4"]
FOOLS_MATE_BLACK = ["e7e5", "d8h4"]
STALEMATE_FEN = "7k/5Q2/6K1/8/8/8/8/8 b - - 0 1"


def make_game(white_script, black_script, *, initial_ms=60_000, increment_ms=0, mode=TimerMode.FISCHER,
              white_cls=ScriptedPlayer, black_cls=ScriptedPlayer, white_kwargs=None, black_kwargs=None,
              policy=None, storage=None, **cfg_kwargs):
    clock = FakeClock()
    sleep = RecordingSleep()
    sink = CollectingSink()
    timers = TimerService(clock=clock, tick_ms=1)
    white = white_cls("w", PlayerColor.WHITE, white_script, clock=clock, **(white_kwargs or {}))
    black = black_cls("b", PlayerColor.BLACK, black_script, clock=clock, **(black_kwargs or {}))
    cfg_kwargs.setdefault("move_delay_s", 0.0)
    cfg_kwargs.setdefault("pause_poll_s", 0.25)
    config = GameConfig(
        white=PlayerSettings(id="w", model="model-w", initial_time_ms=initial_ms, increment_ms=increment_ms),
        black=PlayerSettings(id="b", model="model-b", initial_time_ms=initial_ms, increment_ms=increment_ms),
        timer_mode=mode,
        **cfg_kwargs,
    )
    orch = TurnOrchestrator(
        Referee(),
        {PlayerColor.WHITE: white, PlayerColor.BLACK: black},
        timers=timers,
        policy=policy,
        events=sink,
        storage=storage,
        sleep=sleep,
    )
    return SimpleNamespace(orch=orch, clock=clock, sleep=sleep, sink=sink, timers=timers,
                           white=white, black=black, config=config)


async def play(g):
    g.orch.start(g.config)
    return await asyncio.wait_for(g.orch.run_loop(), timeout=5)


class IllegalMoveTests(unittest.IsolatedAsyncioTestCase):
    async def test_identical_illegal_moves_forfeit_on_third(self):
        g = make_game(["e2e5", "e2e5", "e2e5"], [])
        result = await play(g)
        self.assertIs(result.kind, ResultKind.FORFEIT)
        self.assertIs(result.winner, PlayerColor.BLACK)
        self.assertEqual(result.reason, "white forfeited: Made repeated invalid moves: e2e5 (3x)")
        feedback = [c.invalid_move_feedback for c in g.white.contexts]
        self.assertIsNone(feedback[0])
        self.assertIn("e2e5", feedback[1])
        self.assertIn("1/3", feedback[1])
        self.assertIn("2/3", feedback[2])
        self.assertEqual(len(g.sink.of("invalid_move_warning")), 3)
        self.assertTrue(g.orch.referee.move_history[-1].is_forfeit)
        self.assertIs(g.orch.status, GameStatus.FORFEIT)
        self.assertEqual(g.sleep.calls, [])

    async def test_round_robin_illegal_moves_never_forfeit(self):
        black = ["e7e4", "d7d4"] * 3 + FOOLS_MATE_BLACK
        g = make_game(FOOLS_MATE_WHITE, black)
        result = await play(g)
        self.assertIs(result.kind, ResultKind.WIN)
        self.assertIs(result.winner, PlayerColor.BLACK)
        self.assertEqual(g.orch.session.invalid_attempts["b"], {"e7e4": 3, "d7d4": 3})

    async def test_third_identical_in_a_row_forfeits(self):
        g = make_game(["f2f3"], ["e7e4", "d7d4", "d7d4", "d7d4"])
        result = await play(g)
        self.assertIs(result.kind, ResultKind.FORFEIT)
        self.assertIs(result.winner, PlayerColor.WHITE)
        self.assertIn("d7d4 (3x)", result.reason)

    async def test_illegal_twice_then_legal_advances(self):
        g = make_game(["e2e5", "e2e5", "e2e4"], [HANG], black_kwargs={"think_ms": 120_000})
        result = await play(g)
        self.assertEqual(g.orch.session.move_count, 1)
        self.assertEqual(g.orch.session.illegal_count("w", "e2e5"), 2)
        self.assertEqual(g.orch.referee.move_history[0].uci, "e2e4")
        self.assertIs(result.kind, ResultKind.TIMEOUT)

    async def test_forfeit_explanation_from_player(self):
        g = make_game(["e2e5"] * 3, [], white_cls=DrawAwarePlayer,
                      white_kwargs={"ask_reply": "  I misread the board.  "})
        result = await play(g)
        self.assertEqual(result.reason,
                         "white forfeited: Attempted invalid moves: e2e5 (3x). I misread the board.")
        self.assertIn("e2e5", g.white.asked[0])
        notation = g.orch.referee.move_history[-1].notation
        self.assertIn("e2e5 (3x)", notation)
        self.assertTrue(notation.endswith("I misread the board."))

    async def test_failing_forfeit_explanation_uses_default(self):
        g = make_game(["e2e5"] * 3, [], white_cls=DrawAwarePlayer,
                      white_kwargs={"ask_reply": RuntimeError("api down")})
        result = await play(g)
        self.assertIn("e2e5 (3x)", result.reason)


class TimeControlTests(unittest.IsolatedAsyncioTestCase):
    async def test_timeout_while_move_outstanding(self):
        g = make_game([HANG], [], white_kwargs={"think_ms": 61_000})
        result = await play(g)
        self.assertIs(result.kind, ResultKind.TIMEOUT)
        self.assertIs(result.winner, PlayerColor.BLACK)
        self.assertEqual(result.reason, "white ran out of time")
        self.assertEqual(g.timers.remaining("w"), 0)
        self.assertEqual(g.sink.of("invalid_move_warning"), [])
        self.assertEqual(len(g.sink.of("turn_started")), 1)
        self.assertEqual(g.orch.session.retry_count("w"), 0)
        self.assertEqual(g.orch.referee.move_history, [])

    async def test_expired_clock_beats_returned_move(self):
        g = make_game(["e2e4"], [], white_kwargs={"think_ms": 60_500})
        result = await play(g)
        self.assertIs(result.kind, ResultKind.TIMEOUT)
        self.assertEqual(g.orch.referee.move_history, [])

    async def test_fischer_increment_accumulates(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK, increment_ms=1_000)
        await play(g)
        self.assertEqual(g.timers.remaining("w"), 60_000 + 2 * 1_000)
        self.assertEqual(g.timers.remaining("b"), 60_000 + 2 * 1_000)

    async def test_bronstein_never_exceeds_initial(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK, increment_ms=1_000, mode=TimerMode.BRONSTEIN,
                      white_kwargs={"think_ms": 400})
        await play(g)
        self.assertEqual(g.timers.remaining("w"), 60_000)
        self.assertEqual(g.orch.referee.move_history[0].time_used_ms, 400)

    async def test_only_acting_clock_runs(self):
        seen = []
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)
        probe = lambda ctx: seen.append(list(g.timers.running_ids()))
        g.white.on_request = probe
        g.black.on_request = probe
        await play(g)
        self.assertEqual(seen, [["w"], ["b"], ["w"], ["b"]])
        self.assertEqual(g.timers.running_ids(), [])


class PauseResumeTests(unittest.IsolatedAsyncioTestCase):
    async def test_pause_freezes_and_resume_restarts_acting_clock(self):
        g = make_game([], [])
        self.assertFalse(g.orch.pause())
        g.orch.start(g.config)
        g.timers.start("w")
        g.clock.advance(1_000)
        self.assertTrue(g.orch.pause())
        self.assertIs(g.orch.status, GameStatus.PAUSED)
        self.assertEqual(g.timers.running_ids(), [])
        frozen = g.timers.remaining("w")
        g.clock.advance(10_000)
        self.assertEqual(g.timers.remaining("w"), frozen)
        self.assertFalse(g.orch.pause())
        self.assertTrue(g.orch.resume())
        self.assertEqual(g.timers.running_ids(), ["w"])
        self.assertEqual(g.sink.types()[-2:], ["paused", "resumed"])

    async def test_pause_during_request_keeps_time_used(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)

        def think_then_pause(ctx):
            if len(g.white.contexts) == 1:
                g.clock.advance(300)
                g.orch.pause()

        g.white.on_request = think_then_pause
        g.sleep.on_sleep = lambda seconds: g.orch.resume()
        result = await play(g)
        self.assertIs(result.kind, ResultKind.WIN)
        self.assertEqual(g.orch.referee.move_history[0].time_used_ms, 300)
        self.assertEqual(g.orch.referee.move_history[2].time_used_ms, 0)
        self.assertEqual(g.timers.remaining("w"), 60_000 - 300)
        self.assertIn("paused", g.sink.types())

    async def test_paused_loop_polls_without_requesting(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)
        g.orch.start(g.config)
        g.orch.pause()

        def on_sleep(seconds):
            if len(g.sleep.calls) == 3:
                self.assertEqual(g.white.contexts, [])
                g.orch.resume()

        g.sleep.on_sleep = on_sleep
        result = await asyncio.wait_for(g.orch.run_loop(), timeout=5)
        self.assertEqual(g.sleep.calls, [0.25, 0.25, 0.25])
        self.assertIs(result.kind, ResultKind.WIN)

    async def test_cancel_while_paused(self):
        g = make_game([], [])
        g.orch.start(g.config)
        g.orch.pause()
        task = asyncio.ensure_future(g.orch.run_loop())
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertTrue(g.sleep.calls)
        self.assertEqual(g.timers.running_ids(), [])

    async def test_cancel_during_move_request_stops_clocks(self):
        g = make_game([HANG], [])
        g.orch.start(g.config)
        task = asyncio.ensure_future(g.orch.run_loop())
        await asyncio.sleep(0.02)
        self.assertEqual(g.timers.running_ids(), ["w"])
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(g.timers.running_ids(), [])

    async def test_rate_limit_pause_mode(self):
        white = [RateLimitFailure("429")] * 3 + FOOLS_MATE_WHITE
        g = make_game(white, FOOLS_MATE_BLACK, pause_on_rate_limit=True)

        def on_sleep(seconds):
            if seconds == 0.25:
                g.orch.resume()

        g.sleep.on_sleep = on_sleep
        result = await play(g)
        self.assertEqual(g.sleep.calls, [15.0, 15.0, 0.25])
        self.assertIn("paused", g.sink.types())
        self.assertIn("resumed", g.sink.types())
        self.assertIs(result.kind, ResultKind.WIN)


class RequestRetryTests(unittest.IsolatedAsyncioTestCase):
    async def test_two_rate_limits_then_success(self):
        white = [RateLimitFailure("429"), RateLimitFailure("429")] + FOOLS_MATE_WHITE
        g = make_game(white, FOOLS_MATE_BLACK)
        result = await play(g)
        self.assertEqual(g.sleep.calls, [15.0, 15.0])
        self.assertEqual(len(g.sink.of("request_retry")), 2)
        self.assertEqual(g.orch.session.invalid_attempts, {})
        self.assertIs(result.kind, ResultKind.WIN)

    async def test_backoff_follows_failure_type(self):
        white = [UnparsableResponseFailure("no json"), BadResponseFailure("empty")] + FOOLS_MATE_WHITE
        g = make_game(white, FOOLS_MATE_BLACK)
        await play(g)
        self.assertEqual(g.sleep.calls, [2.0, 3.0])

    async def test_persistent_bad_responses_forfeit(self):
        g = make_game([BadResponseFailure("empty")] * 9, [])
        result = await play(g)
        self.assertIs(result.kind, ResultKind.FORFEIT)
        self.assertIs(result.winner, PlayerColor.BLACK)
        self.assertEqual(g.sleep.calls, [3.0] * 6)
        self.assertTrue(result.reason.startswith("white forfeited: Repeated failures:"))

    async def test_end_game_resolution_is_error_draw(self):
        class EndingPolicy(ErrorPolicy):
            def resolve(self, error, session, participant_id):
                return Resolution.END_GAME, ErrorContext(ErrorKind.OTHER, participant_id, 1)

        g = make_game([ValueError("engine exploded")], [], policy=EndingPolicy())
        result = await play(g)
        self.assertIs(result.kind, ResultKind.DRAW)
        self.assertEqual(result.reason, "Game ended due to error: engine exploded")


class OutcomeTests(unittest.IsolatedAsyncioTestCase):
    async def test_checkmate(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)
        result = await play(g)
        self.assertIs(result.kind, ResultKind.WIN)
        self.assertIs(result.winner, PlayerColor.BLACK)
        self.assertEqual(result.reason, "Checkmate")
        self.assertEqual(result.move_count, 4)
        self.assertIs(g.orch.status, GameStatus.WIN)
        self.assertEqual(g.orch.referee.status(), "0-1")
        self.assertEqual(g.sink.types()[0], "game_started")
        self.assertEqual(g.sink.types()[-1], "game_ended")

    async def test_position_already_over(self):
        g = make_game([], [], starting_fen=STALEMATE_FEN)
        result = await play(g)
        self.assertIs(result.kind, ResultKind.DRAW)
        self.assertIs(result.draw_reason, DrawReason.STALEMATE)
        self.assertEqual(result.reason, DRAW_REASON_TEXT[DrawReason.STALEMATE])
        self.assertEqual(g.black.contexts, [])

    async def test_draw_offer_without_responder_is_ignored(self):
        white = [MoveResponse("f2", "f3", offer_draw=True), "g2g4"]
        g = make_game(white, FOOLS_MATE_BLACK)
        result = await play(g)
        self.assertIn("draw_offer_ignored", g.sink.types())
        self.assertIs(result.kind, ResultKind.WIN)

    async def test_draw_offer_accepted(self):
        white = [MoveResponse("e2", "e4", offer_draw=True)]
        g = make_game(white, [], black_cls=DrawAwarePlayer,
                      black_kwargs={"draw_replies": [DrawResponse(True, "equal")]})
        result = await play(g)
        self.assertIs(result.kind, ResultKind.DRAW)
        self.assertIs(result.draw_reason, DrawReason.AGREEMENT)
        self.assertEqual(g.orch.referee.status(), "1/2-1/2")

    async def test_draw_offer_declined_or_failing_responder(self):
        white = [MoveResponse("f2", "f3", offer_draw=True), MoveResponse("g2", "g4", offer_draw=True)]
        g = make_game(white, FOOLS_MATE_BLACK, black_cls=DrawAwarePlayer,
                      black_kwargs={"draw_replies": [DrawResponse(False, "no"), RuntimeError("boom")]})
        result = await play(g)
        self.assertEqual(len(g.sink.of("draw_declined")), 2)
        self.assertIs(result.kind, ResultKind.WIN)


class ContractTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_before_start(self):
        g = make_game([], [])
        with self.assertRaises(OrchestrationError):
            await g.orch.run_loop()

    async def test_start_twice(self):
        g = make_game([], [])
        g.orch.start(g.config)
        with self.assertRaises(SetupError):
            g.orch.start(g.config)

    async def test_bad_fen_reverts_to_not_started(self):
        g = make_game([], [], starting_fen="garbage")
        with self.assertRaises(SetupError):
            g.orch.start(g.config)
        self.assertIs(g.orch.status, GameStatus.NOT_STARTED)

    async def test_duplicate_ids_rejected(self):
        g = make_game([], [])
        g.config.black.id = "w"
        with self.assertRaises(SetupError):
            g.orch.start(g.config)

    async def test_missing_timer_escapes_run_loop(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)
        g.orch.start(g.config)
        g.timers.clear()
        with self.assertRaises(TimerNotFound):
            await asyncio.wait_for(g.orch.run_loop(), timeout=5)
        self.assertIsNone(g.orch.result)
        self.assertEqual(g.sink.of("forfeit"), [])
        self.assertEqual(len(g.sink.of("turn_started")), 1)
        self.assertEqual(g.orch.session.retry_count("w"), 0)


class IsolationAndPersistenceTests(unittest.IsolatedAsyncioTestCase):
    async def test_two_orchestrators_share_nothing(self):
        g1 = make_game(["e2e5", "e2e5", "e2e5"], [])
        g2 = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)
        r1, r2 = await asyncio.gather(play(g1), play(g2))
        self.assertIs(r1.kind, ResultKind.FORFEIT)
        self.assertIs(r2.kind, ResultKind.WIN)
        self.assertEqual(g2.orch.session.invalid_attempts, {})
        self.assertIsNot(g1.orch.session, g2.orch.session)

    async def test_persistence_failures_do_not_abort(self):
        storage = MagicMock()
        storage.save_configuration.side_effect = OSError("disk full")
        storage.export_game.side_effect = OSError("disk full")
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK, storage=storage, save_game=True)
        result = await play(g)
        self.assertIs(result.kind, ResultKind.WIN)
        storage.save_configuration.assert_called_once()
        storage.export_game.assert_called_once()

    async def test_each_orchestrator_starts_its_own_session(self):
        g = make_game(["e2e5"], [])
        g.orch.start(g.config)
        first = g.orch.session
        other = TurnOrchestrator(Referee(), {PlayerColor.WHITE: g.white, PlayerColor.BLACK: g.black},
                                 timers=TimerService(clock=FakeClock(), tick_ms=1))
        other.start(g.config)
        self.assertIsNot(first, other.session)
        self.assertEqual(other.session.invalid_attempts, {})

    async def test_start_leaves_other_clocks_on_shared_timers(self):
        g = make_game(FOOLS_MATE_WHITE, FOOLS_MATE_BLACK)
        g.timers.init("other", TimerConfig(initial_ms=5_000))
        g.timers.start("other")
        g.clock.advance(1_000)
        result = await play(g)
        self.assertIs(result.kind, ResultKind.WIN)
        self.assertTrue(g.timers.is_running("other"))
        self.assertEqual(g.timers.remaining("other"), 4_000)


if __name__ == "__main__":
    unittest.main()
