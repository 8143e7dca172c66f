"""
Salvage a move from a reply that carried no JSON payload.

Flow:
1) Quick regex to extract a UCI move from free-form text.
2) If not found and use_guard_agent is enabled, ask a tiny guard Agent (Agents SDK) to return UCI or NONE.
3) Otherwise give up and return an empty string.

Returns lowercase UCI (with promotion letter) or "".
"""
from __future__ import annotations

import logging
import re

from agents import Agent, ModelSettings, Runner

from .config import SETTINGS

log = logging.getLogger("agent_normalizer")

INSTRUCTIONS = (
    "You receive a raw reply from a chess player.\n"
    "Find the chess move it intends to play.\n"
    "Output ONLY the move in UCI (lowercase, include promotion letter if any). If no move is present, output the single word NONE."
)

move_guard = Agent(
    name="MoveGuard",
    instructions=INSTRUCTIONS,
    model_settings=ModelSettings(temperature=0.0),
)

UCI_RE = re.compile(r"\b([a-h][1-8][a-h][1-8][qrbnQRBN]?)\b")
STRICT_UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")


async def _agent_suggest(raw_reply: str) -> str:
    user = f"RAW REPLY: {raw_reply}\nReturn only the move in UCI or NONE:"
    result = await Runner.run(move_guard, user)
    return (result.final_output or "").strip()


def _quick_regex(raw: str) -> str | None:
    m = UCI_RE.search(raw or "")
    if m:
        return m.group(1).lower()
    return None


async def normalize_with_agent(raw_reply: str, use_guard_agent: bool | None = None) -> str:
    cand = _quick_regex(raw_reply)
    if cand:
        return cand

    if use_guard_agent is None:
        use_guard_agent = SETTINGS.use_guard_agent
    if not use_guard_agent:
        return ""

    try:
        agent_uci = await _agent_suggest(raw_reply)
    except Exception:
        log.exception("Guard agent failed")
        return ""
    tokens = (agent_uci or "").split()
    agent_uci = tokens[0].strip().lower() if tokens else ""
    return agent_uci if STRICT_UCI_RE.match(agent_uci) else ""
