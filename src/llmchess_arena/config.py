"""
Configuration and environment loading for the LLM chess arena.

- Loads settings.yml (YAML) from repo root if present; falls back to environment variables.
- A local .env file is loaded first so secrets can live outside settings.yml.
- Exposes SETTINGS with keys used across the project (API endpoint, default models, clocks, loop tuning).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("config")


def _repo_root() -> str:
    # this file: src/llmchess_arena/config.py -> repo root is two levels up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        log.warning("Ignoring unreadable settings file %s", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        log.warning("Ignoring settings file %s: top level must be a mapping", path)
        return {}
    return data


_cfg = _load_yaml(os.environ.get("LLMARENA_SETTINGS_FILE") or os.path.join(_repo_root(), "settings.yml"))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


def _as_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    # Auth / endpoint (OpenRouter by default, OpenAI-compatible wire format)
    llm_api_key: str
    api_base: str

    # Default players and clocks
    white_model: str
    black_model: str
    initial_time_ms: int
    increment_ms: int
    timer_mode: str

    # Tuning knobs
    responses_timeout_s: float
    move_delay_s: float
    pause_poll_s: float
    timer_tick_ms: int
    use_guard_agent: bool

    # Output
    save_dir: str
    log_level: str


SETTINGS = Settings(
    llm_api_key=_get("LLMARENA_LLM_API_KEY", _get("OPENROUTER_API_KEY", "")),
    api_base=_get("LLMARENA_LLM_BASE_URL", "https://openrouter.ai/api/v1"),
    white_model=_get("LLMARENA_WHITE_MODEL", "openai/gpt-4o-mini"),
    black_model=_get("LLMARENA_BLACK_MODEL", "anthropic/claude-3-haiku"),
    initial_time_ms=int(_get("LLMARENA_INITIAL_TIME_MS", 600_000, cast=int)),
    increment_ms=int(_get("LLMARENA_INCREMENT_MS", 5_000, cast=int)),
    timer_mode=str(_get("LLMARENA_TIMER_MODE", "fischer")).lower(),
    responses_timeout_s=float(_get("LLMARENA_RESPONSES_TIMEOUT_S", 60.0, cast=float)),
    move_delay_s=float(_get("LLMARENA_MOVE_DELAY_S", 0.0, cast=float)),
    pause_poll_s=float(_get("LLMARENA_PAUSE_POLL_S", 0.25, cast=float)),
    timer_tick_ms=int(_get("LLMARENA_TIMER_TICK_MS", 100, cast=int)),
    use_guard_agent=_get("LLMARENA_USE_GUARD_AGENT", False, cast=_as_bool),
    save_dir=_get("LLMARENA_SAVE_DIR", "game-saves"),
    log_level=str(_get("LLMARENA_LOG_LEVEL", "INFO")).upper(),
)
