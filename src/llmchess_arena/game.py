"""
Single-game runner.

- GameRunner: wires Referee, TimerService, ErrorPolicy, StateManager and the event sinks
  around a TurnOrchestrator for one game between two players (LLM or random).
  - play() starts and runs the game; run() is the blocking wrapper; cancel() stops a running game.
  - A recorder sink keeps one record per ply (and per rejected attempt) for metrics/summary.
- build_llm_players(): convenience factory for LLM vs LLM games.
"""
from __future__ import annotations

import asyncio
import logging
import statistics
import time
from typing import Iterable, Optional

from .events import EventSink, EventType, FanOutSink, GameEvent, LoggingEventSink
from .llm_client import LLMClient
from .llm_player import LLMPlayer
from .models import GameConfig, PlayerColor, Result
from .orchestrator import TurnOrchestrator
from .prompting import PromptConfig
from .referee import Referee
from .storage import StateManager
from .timer import Clock, TimerService


class _PlyRecorder:
    """Event sink that turns orchestration events into per-ply records."""

    def __init__(self):
        self.records: list[dict] = []
        self.request_retries = 0
        self.draw_offers = 0

    def emit(self, event: GameEvent) -> None:
        color = event.color.value if event.color else None
        if event.type is EventType.MOVE_APPLIED:
            self.records.append({
                "color": color,
                "ok": True,
                "san": event.data.get("san"),
                "uci": event.data.get("uci"),
                "fen": event.data.get("fen"),
                "ms": event.data.get("time_used_ms"),
            })
        elif event.type is EventType.INVALID_MOVE_WARNING:
            self.records.append({
                "color": color,
                "ok": False,
                "uci": event.data.get("move"),
                "attempt": event.data.get("attempt"),
            })
        elif event.type is EventType.REQUEST_RETRY:
            self.request_retries += 1
        elif event.type is EventType.DRAW_OFFERED:
            self.draw_offers += 1


class GameRunner:
    def __init__(self, config: GameConfig, white, black, clock: Clock | None = None,
                 timers: TimerService | None = None, sinks: Iterable[EventSink] | None = None,
                 storage: StateManager | None = None, sleep=asyncio.sleep):
        self.log = logging.getLogger("GameRunner")
        self.cfg = config
        self.players = {PlayerColor.WHITE: white, PlayerColor.BLACK: black}
        self.ref = Referee()
        self.ref.set_headers(white=config.white.label(), black=config.black.label())
        self.recorder = _PlyRecorder()
        sink_list = list(sinks) if sinks is not None else [LoggingEventSink()]
        self.orchestrator = TurnOrchestrator(
            referee=self.ref,
            players=self.players,
            timers=timers or TimerService(clock=clock),
            events=FanOutSink(sink_list + [self.recorder]),
            storage=storage or (StateManager() if config.save_game else None),
            sleep=sleep,
        )
        self._task: Optional[asyncio.Task] = None
        self.start_ts = time.time()
        self.end_ts: Optional[float] = None

    @property
    def records(self) -> list[dict]:
        return self.recorder.records

    @property
    def result(self) -> Optional[Result]:
        return self.orchestrator.result

    async def play(self) -> Result:
        """Start the game and drive it to completion. Returns the final Result."""
        self.start_ts = time.time()
        self.orchestrator.start(self.cfg)
        self._task = asyncio.ensure_future(self.orchestrator.run_loop())
        try:
            result = await self._task
        finally:
            self.end_ts = time.time()
            self._task = None
        self.log.info("Game over: %s (%s)", result.pgn_result, result.reason)
        return result

    def run(self) -> Result:
        return asyncio.run(self.play())

    def cancel(self) -> bool:
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        return True

    def pause(self) -> bool:
        return self.orchestrator.pause()

    def resume(self) -> bool:
        return self.orchestrator.resume()

    async def close(self):
        for p in self.players.values():
            close = getattr(p, "close", None)
            if close is not None:
                await close()

    def metrics(self) -> dict:
        moves = [r for r in self.records if r["ok"]]
        illegal = [r for r in self.records if not r["ok"]]
        latencies = [r["ms"] for r in moves if r.get("ms") is not None]
        result = self.result
        end = self.end_ts or time.time()
        return {
            "plies_total": len(moves),
            "plies_white": sum(1 for r in moves if r["color"] == PlayerColor.WHITE.value),
            "plies_black": sum(1 for r in moves if r["color"] == PlayerColor.BLACK.value),
            "illegal_attempts": len(illegal),
            "request_retries": self.recorder.request_retries,
            "draw_offers": self.recorder.draw_offers,
            "latency_ms_avg": statistics.mean(latencies) if latencies else 0,
            "latency_ms_p95": statistics.quantiles(latencies, n=100)[94] if len(latencies) >= 20 else (max(latencies) if latencies else 0),
            "result": self.ref.status(),
            "result_kind": result.kind.value if result else None,
            "winner": result.winner.value if result and result.winner else None,
            "termination_reason": result.reason if result else None,
            "duration_s": round(end - self.start_ts, 2),
            "white": self.cfg.white.label(),
            "black": self.cfg.black.label(),
        }

    def summary(self) -> dict:
        m = self.metrics()
        m["pgn"] = self.ref.pgn()
        m["final_fen"] = self.ref.board.fen()
        return m


def build_llm_players(config: GameConfig, client: LLMClient | None = None,
                      prompt_cfg: PromptConfig | None = None) -> tuple[LLMPlayer, LLMPlayer]:
    """Create white and black LLMPlayers sharing one client."""
    client = client or LLMClient()
    players = []
    for color, ps in config.players().items():
        players.append(LLMPlayer(
            id=ps.id,
            color=color,
            model=ps.model,
            client=client,
            prompt_cfg=prompt_cfg or PromptConfig(),
            name=ps.name,
        ))
    return players[0], players[1]
