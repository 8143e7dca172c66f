"""
Parsing helpers for LLM replies.

Players are asked to answer with a JSON object:
- moves: {"from": "e2", "to": "e4", "promotion": "q", "offerDraw": false}
- draw offers: {"accept": true, "reason": "..."}

Failures are raised as tagged errors so the orchestrator can classify them:
no JSON payload -> UnparsableResponseFailure, JSON with missing or malformed
fields -> BadResponseFailure. Legality is not checked here; that is the
referee's job.
"""
from __future__ import annotations

import json
import re

from .errors import BadResponseFailure, UnparsableResponseFailure
from .models import DrawResponse, MoveResponse

UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$", re.I)
SQUARE_RE = re.compile(r"^[a-h][1-8]$")
JSON_RE = re.compile(r"\{[^{}]*\}", re.S)


def _strip_code_fence(text: str) -> str:
    """Remove simple ``` fences if present."""
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        inner = text.split("\n", 1)
        if len(inner) == 2:
            return inner[1].rsplit("\n", 1)[0].strip()
    return text


def is_uci(token: str) -> bool:
    return bool(UCI_RE.match(token or ""))


def _load_json_object(raw: str) -> dict:
    text = _strip_code_fence(raw or "")
    match = JSON_RE.search(text)
    if not match:
        raise UnparsableResponseFailure(f"No JSON found in response: {raw!r}")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise UnparsableResponseFailure(f"Failed to parse JSON from response: {raw!r} ({e})") from e
    if not isinstance(data, dict):
        raise UnparsableResponseFailure(f"Expected a JSON object in response: {raw!r}")
    return data


def _as_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def parse_move_reply(raw: str) -> MoveResponse:
    """Extract a move from an LLM reply. Square syntax is checked, legality is not."""
    data = _load_json_object(raw)
    src = str(data.get("from") or "").strip().lower()
    dst = str(data.get("to") or "").strip().lower()
    promotion = str(data.get("promotion") or "").strip().lower() or None
    offer_draw = _as_flag(data.get("offerDraw", data.get("offer_draw", False)))

    # Some models put the whole move in "from" (e.g. {"from": "e2e4"})
    if src and not dst and is_uci(src):
        move = MoveResponse.from_uci(src, offer_draw=offer_draw, raw=raw)
        if promotion and not move.promotion:
            move.promotion = promotion
        return move

    if not src or not dst:
        raise BadResponseFailure(f"Invalid move format: missing from or to in {raw!r}")
    if not SQUARE_RE.match(src) or not SQUARE_RE.match(dst):
        raise BadResponseFailure(f"Invalid move format: bad square in {raw!r}")
    if promotion is not None and promotion not in {"q", "r", "b", "n"}:
        raise BadResponseFailure(f"Invalid promotion piece {promotion!r}")
    return MoveResponse(src, dst, promotion, offer_draw=offer_draw, raw=raw)


def parse_draw_reply(raw: str) -> DrawResponse:
    data = _load_json_object(raw)
    if "accept" not in data and "acceptDraw" not in data:
        raise BadResponseFailure(f"Draw reply missing 'accept': {raw!r}")
    accept = _as_flag(data.get("accept", data.get("acceptDraw")))
    reason = data.get("reason")
    return DrawResponse(accept=accept, reason=str(reason) if reason else None)


__all__ = [
    "parse_move_reply",
    "parse_draw_reply",
    "is_uci",
    "UCI_RE",
]
