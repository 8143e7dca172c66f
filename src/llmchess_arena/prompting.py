"""
Prompt builders and config for LLM move requests using a modular template.

Callers supply system instructions and a template string with placeholders
that are substituted per turn. Draw-offer and forfeit prompts are built here
too so every piece of wording lives in one place.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from .models import GameContext, MoveRecord

DEFAULT_MOVE_SYSTEM = """You are a chess engine playing as {COLOR}. You MUST respond with ONLY a JSON object containing your move.

RULES:
1. Response must be ONLY valid JSON
2. No text before or after the JSON
3. Format: {"from": "e2", "to": "e4"}
4. For pawn promotion add: "promotion": "q"
5. To offer a draw together with your move add: "offerDraw": true

EXAMPLES OF VALID RESPONSES:
{"from": "e2", "to": "e4"}
{"from": "g1", "to": "f3"}
{"from": "e7", "to": "e8", "promotion": "q"}

DO NOT include explanations, just the JSON move."""

DEFAULT_MOVE_TEMPLATE = """{FEEDBACK}Current game state:
FEN: {FEN}
Your color: {COLOR}
Current turn: {SIDE_TO_MOVE}

Move history: {SAN_HISTORY}

Your time remaining: {TIME_REMAINING} seconds
Opponent time remaining: {OPPONENT_TIME_REMAINING} seconds
Legal moves available: {LEGAL_MOVES}

Please analyze the position and provide your next move. Consider:
1. Tactical opportunities (checks, captures, threats)
2. Positional advantages (center control, piece development)
3. Time management (you have {TIME_REMAINING} seconds remaining)

Respond only with a valid JSON object containing your move."""

DRAW_OFFER_SYSTEM = """You are a chess player playing as {COLOR}. Your opponent has offered a draw.
Respond with ONLY a JSON object: {"accept": true, "reason": "..."} or {"accept": false, "reason": "..."}"""

DRAW_OFFER_TEMPLATE = """Your opponent offers a draw.
FEN: {FEN}
Your color: {COLOR}
Move history: {SAN_HISTORY}
Your time remaining: {TIME_REMAINING} seconds
Opponent time remaining: {OPPONENT_TIME_REMAINING} seconds

Do you accept the draw?"""

FORFEIT_TEMPLATE = """You attempted to make invalid moves in the chess game and must now forfeit.

Current board position (FEN): {FEN}
{INVALID_MOVES_LINE}

Please explain in 2-3 sentences:
1. Why you think your moves ({INVALID_MOVES}) were invalid
2. What you were trying to accomplish with those moves
3. What mistake you made in evaluating the position

Respond with only your explanation, no additional formatting."""


@dataclass
class PromptConfig:
    """Configuration for shaping move prompts using a custom template."""

    system_instructions: str = DEFAULT_MOVE_SYSTEM
    template: str = DEFAULT_MOVE_TEMPLATE
    draw_system_instructions: str = DRAW_OFFER_SYSTEM
    draw_template: str = DRAW_OFFER_TEMPLATE
    include_legal_moves: bool = True
    temperature: float = 0.3
    max_tokens: int = 50


def render_custom_prompt(template: str, values: Dict[str, str]) -> str:
    """Replace known placeholders in the template. Unknown tokens are left intact."""
    rendered = template or ""
    for key, val in values.items():
        rendered = rendered.replace(f"{{{key}}}", val)
    return rendered


def san_history(moves: list[MoveRecord]) -> str:
    """Numbered SAN move list ('1. e4 e5 2. Nf3'), skipping synthetic entries."""
    parts: list[str] = []
    played = [m for m in moves if not m.is_forfeit]
    for idx, mv in enumerate(played):
        if idx % 2 == 0:
            parts.append(f"{idx // 2 + 1}. {mv.notation}")
        else:
            parts.append(mv.notation)
    return " ".join(parts)


def context_values(ctx: GameContext, include_legal_moves: bool = True) -> Dict[str, str]:
    feedback = f"IMPORTANT: {ctx.invalid_move_feedback}\n\n" if ctx.invalid_move_feedback else ""
    legal = ", ".join(ctx.legal_moves) if include_legal_moves and ctx.legal_moves else "(not provided)"
    return {
        "COLOR": ctx.color.value,
        "SIDE_TO_MOVE": ctx.turn.value,
        "FEN": ctx.fen,
        "SAN_HISTORY": san_history(ctx.move_history) or "Game just started",
        "TIME_REMAINING": str(ctx.time_remaining_ms // 1000),
        "OPPONENT_TIME_REMAINING": str(ctx.opponent_time_remaining_ms // 1000),
        "LEGAL_MOVES": legal,
        "FEEDBACK": feedback,
    }


def build_move_messages(ctx: GameContext, cfg: PromptConfig) -> list[dict]:
    values = context_values(ctx, cfg.include_legal_moves)
    return [
        {"role": "system", "content": render_custom_prompt(cfg.system_instructions, values)},
        {"role": "user", "content": render_custom_prompt(cfg.template, values)},
    ]


def build_draw_offer_messages(ctx: GameContext, cfg: PromptConfig) -> list[dict]:
    values = context_values(ctx, cfg.include_legal_moves)
    return [
        {"role": "system", "content": render_custom_prompt(cfg.draw_system_instructions, values)},
        {"role": "user", "content": render_custom_prompt(cfg.draw_template, values)},
    ]


def build_forfeit_prompt(fen: str, invalid_moves: list[str]) -> str:
    line = (
        f"Your attempted invalid moves: {', '.join(invalid_moves)}"
        if invalid_moves else "You attempted invalid moves"
    )
    return render_custom_prompt(FORFEIT_TEMPLATE, {
        "FEN": fen,
        "INVALID_MOVES_LINE": line,
        "INVALID_MOVES": ", ".join(invalid_moves) or "none recorded",
    })
