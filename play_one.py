import argparse
import json
import logging

from src.llmchess_arena.config import SETTINGS
from src.llmchess_arena.game import GameRunner, build_llm_players
from src.llmchess_arena.llm_client import LLMClient
from src.llmchess_arena.llm_player import LLMPlayer
from src.llmchess_arena.models import GameConfig, OutputFormat, PlayerColor, PlayerSettings, TimerMode
from src.llmchess_arena.random_player import RandomPlayer


def load_json_config(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logging.getLogger("play_one").error("Failed to read config %s: %s", path, e)
        return {}


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="Optional JSON config file to load defaults from.")
    ap.add_argument("--white-model", default=None, help="Model playing white (overrides config)")
    ap.add_argument("--black-model", default=None, help="Model playing black (overrides config)")
    ap.add_argument("--black-random", action="store_true", help="Black plays uniformly random legal moves instead of an LLM")
    ap.add_argument("--time-ms", type=int, default=None, help="Initial clock per side in milliseconds")
    ap.add_argument("--increment-ms", type=int, default=None, help="Increment per move in milliseconds")
    ap.add_argument("--timer-mode", choices=[m.value for m in TimerMode], default=None)
    ap.add_argument("--fen", default=None, help="Optional starting position")
    ap.add_argument("--pause-on-rate-limit", action="store_true", help="Pause instead of counting a failure when rate limiting persists")
    ap.add_argument("--save", action="store_true", help="Save config snapshot and export the finished game")
    ap.add_argument("--format", choices=[f.value for f in OutputFormat], default=None, help="Export format when --save is set")
    # Misc
    ap.add_argument("--pgn-out", default=None, help="Optional path to write PGN at end")
    ap.add_argument("--log-level", default=None, help="Python logging level (e.g., INFO, DEBUG)")

    args = ap.parse_args()

    cfg_dict = load_json_config(args.config) if args.config else {}

    # Resolve values with precedence: CLI arg if provided -> config -> default
    def pick(*keys, default=None):
        for k in keys:
            v = getattr(args, k, None)
            if v is not None and v is not False:
                return v
            if k in cfg_dict and cfg_dict[k] is not None:
                return cfg_dict[k]
        return default

    log_level = pick("log_level", default=SETTINGS.log_level).upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    log = logging.getLogger("play_one")

    white_model = pick("white_model", default=SETTINGS.white_model)
    black_model = pick("black_model", default=SETTINGS.black_model)
    black_random = bool(pick("black_random", default=False))
    time_ms = int(pick("time_ms", default=SETTINGS.initial_time_ms))
    increment_ms = int(pick("increment_ms", default=SETTINGS.increment_ms))

    gcfg = GameConfig(
        white=PlayerSettings(id="white", model=white_model, initial_time_ms=time_ms, increment_ms=increment_ms),
        black=PlayerSettings(id="black", model="random" if black_random else black_model,
                             initial_time_ms=time_ms, increment_ms=increment_ms,
                             name="Random" if black_random else None),
        timer_mode=TimerMode(pick("timer_mode", default=SETTINGS.timer_mode)),
        output_format=OutputFormat(pick("format", default="pgn")),
        save_game=bool(pick("save", default=False)),
        starting_fen=pick("fen", default=None),
        pause_on_rate_limit=bool(pick("pause_on_rate_limit", default=False)),
    )

    if black_random:
        white = LLMPlayer(id="white", color=PlayerColor.WHITE, model=white_model, client=LLMClient())
        black = RandomPlayer(id="black", color=PlayerColor.BLACK)
    else:
        white, black = build_llm_players(gcfg)

    runner = GameRunner(gcfg, white, black)
    log.info("Starting game: %s vs %s clock=%dms+%dms mode=%s", gcfg.white.label(), gcfg.black.label(),
             time_ms, increment_ms, gcfg.timer_mode.value)
    result = runner.run()
    metrics = runner.metrics()

    print("Result:", result.pgn_result)
    print("Termination:", result.reason)
    print("Metrics:", metrics)
    print("PGN:\n", runner.ref.pgn())

    if args.pgn_out:
        with open(args.pgn_out, "w", encoding="utf-8") as f:
            f.write(runner.ref.pgn())
        log.info("Wrote PGN to %s", args.pgn_out)
