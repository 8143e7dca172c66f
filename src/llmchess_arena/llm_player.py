from __future__ import annotations
"""LLM-backed player for model-vs-model games."""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .agent_normalizer import normalize_with_agent
from .errors import UnparsableResponseFailure
from .llm_client import LLMClient
from .models import DrawResponse, GameContext, MoveResponse, PlayerColor
from .move_validator import parse_draw_reply, parse_move_reply
from .prompting import PromptConfig, build_draw_offer_messages, build_move_messages

log = logging.getLogger("llm_player")


@dataclass
class LLMPlayer:
    id: str
    color: PlayerColor
    model: str
    client: LLMClient
    prompt_cfg: PromptConfig = field(default_factory=PromptConfig)
    name: Optional[str] = None
    use_guard_agent: Optional[bool] = None
    last_latency_ms: int = 0

    def label(self) -> str:
        return self.name or self.model

    async def request_move(self, ctx: GameContext) -> MoveResponse:
        """Ask the model for a move. Raises the client's tagged failures unchanged."""
        cfg = self.prompt_cfg
        messages = build_move_messages(ctx, cfg)
        t0 = time.perf_counter()
        raw = await self.client.complete(self.model, messages, temperature=cfg.temperature, max_tokens=cfg.max_tokens)
        self.last_latency_ms = int((time.perf_counter() - t0) * 1000)
        log.debug("%s raw reply (%d ms): %r", self.label(), self.last_latency_ms, raw)
        try:
            return parse_move_reply(raw)
        except UnparsableResponseFailure:
            uci = await normalize_with_agent(raw, use_guard_agent=self.use_guard_agent)
            if not uci:
                raise
            log.info("%s: salvaged move %s from non-JSON reply", self.label(), uci)
            return MoveResponse.from_uci(uci, raw=raw)

    async def respond_to_draw_offer(self, ctx: GameContext) -> DrawResponse:
        cfg = self.prompt_cfg
        messages = build_draw_offer_messages(ctx, cfg)
        raw = await self.client.complete(self.model, messages, temperature=cfg.temperature, max_tokens=100)
        return parse_draw_reply(raw)

    async def ask(self, prompt: str) -> str:
        """Free-text question (used to collect a forfeit explanation)."""
        messages = [{"role": "user", "content": prompt}]
        return await self.client.complete(self.model, messages, temperature=0.7, max_tokens=200)

    async def close(self):
        await self.client.close()
