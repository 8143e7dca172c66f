"""
StateManager: file-backed persistence for game configs and finished games.

- save_configuration / load_configuration keep a last-game-config.json snapshot (no API keys).
- export_game renders a finished game as PGN (headers, result, termination comment) or
  structured JSON (headers, initial FEN, moves, result) and writes game-<id>.<ext>.
- list_saved_games returns the ids of exported games.

Callers treat every method as best-effort; errors are raised (OSError) and it is up
to the orchestrator to log and carry on.
"""
from __future__ import annotations

import json
import logging
import os
import re
import uuid
from datetime import datetime
from typing import Optional

from .config import SETTINGS
from .models import GameConfig, OutputFormat, Result
from .referee import Referee

log = logging.getLogger("storage")

CONFIG_FILE = "last-game-config.json"
GAME_FILE_RE = re.compile(r"^game-(.+)\.(pgn|json)$")
_SECRET_KEYS = {"api_key", "llm_api_key", "apiKey"}


def _strip_secrets(d):
    if isinstance(d, dict):
        return {k: _strip_secrets(v) for k, v in d.items() if k not in _SECRET_KEYS}
    if isinstance(d, list):
        return [_strip_secrets(v) for v in d]
    return d


class StateManager:
    def __init__(self, save_dir: str | None = None):
        self.save_dir = save_dir or SETTINGS.save_dir

    def _path(self, name: str) -> str:
        os.makedirs(self.save_dir, exist_ok=True)
        return os.path.join(self.save_dir, name)

    # ---------------- Configuration snapshot -----------------
    def save_configuration(self, config: GameConfig | dict) -> str:
        data = config.to_dict() if isinstance(config, GameConfig) else dict(config)
        path = self._path(CONFIG_FILE)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(_strip_secrets(data), f, ensure_ascii=False, indent=2)
        log.debug("Saved configuration to %s", path)
        return path

    def load_configuration(self) -> Optional[dict]:
        path = os.path.join(self.save_dir, CONFIG_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError):
            return None

    # ---------------- Game export -----------------
    def render_game(self, referee: Referee, result: Result, fmt: OutputFormat | str = OutputFormat.PGN) -> str:
        fmt = OutputFormat(fmt)
        if referee.status() == "*":
            referee.set_result(result.pgn_result, result.reason)
        if fmt is OutputFormat.PGN:
            return referee.pgn()
        data = {
            "headers": referee.headers,
            "initial_fen": referee.starting_fen,
            "final_fen": referee.board.fen(),
            "pgn": referee.movetext(),
            "moves": [m.to_dict() for m in referee.move_history],
            "result": result.to_dict(),
            "exported_at": datetime.now().isoformat(),
        }
        return json.dumps(data, ensure_ascii=False, indent=2)

    def export_game(self, referee: Referee, result: Result, fmt: OutputFormat | str = OutputFormat.PGN,
                    game_id: str | None = None) -> str:
        """Render the game, write it to game-<id>.<ext> and return the rendered text."""
        fmt = OutputFormat(fmt)
        text = self.render_game(referee, result, fmt)
        game_id = game_id or datetime.now().strftime("%Y%m%d-%H%M%S-") + uuid.uuid4().hex[:6]
        path = self._path(f"game-{game_id}.{fmt.value}")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        log.info("Exported game to %s", path)
        return text

    def list_saved_games(self) -> list[str]:
        if not os.path.isdir(self.save_dir):
            return []
        ids = []
        for name in sorted(os.listdir(self.save_dir)):
            m = GAME_FILE_RE.match(name)
            if m:
                ids.append(m.group(1))
        return ids
