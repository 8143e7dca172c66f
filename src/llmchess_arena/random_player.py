"""
RandomPlayer: picks a uniformly random legal move.

- Useful as a fast, low-difficulty baseline and for exercising the orchestrator without an API.
- Never offers or answers draws and has nothing to explain, so it implements request_move only.
"""
from __future__ import annotations

import random
from typing import Optional

from .models import GameContext, MoveResponse, PlayerColor


class RandomPlayer:
    """Simple player that picks a uniformly random legal move."""

    def __init__(self, id: str, color: PlayerColor, name: str = "Random", rng: Optional[random.Random] = None):
        self.id = id
        self.color = color
        self.name = name
        self._rng = rng or random.Random()

    def label(self) -> str:
        return self.name

    async def request_move(self, ctx: GameContext) -> MoveResponse:
        if not ctx.legal_moves:
            raise ValueError("No legal moves available")
        return MoveResponse.from_uci(self._rng.choice(ctx.legal_moves))

    async def close(self):
        # No resources to release
        pass
