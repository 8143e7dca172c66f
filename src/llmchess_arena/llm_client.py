"""
LLM client facade over an OpenAI-compatible chat completions endpoint (OpenRouter by default).

The rest of the code should not care which SDK is in use. This module talks to
the endpoint with `model` + `messages`, returns raw text, and turns transport
problems into tagged failures:

- openai.RateLimitError            -> RateLimitFailure
- no choices / empty content       -> BadResponseFailure
- any other openai.OpenAIError     -> MoveRequestFailure

Retrying is the orchestrator's job, so the SDK's own retries are disabled.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .config import SETTINGS
from .errors import BadResponseFailure, MoveRequestFailure, RateLimitFailure

log = logging.getLogger("llm_client")


class LLMClient:
    def __init__(self, api_key: str | None = None, base_url: str | None = None,
                 timeout_s: float | None = None, client: AsyncOpenAI | None = None):
        self.timeout_s = timeout_s or SETTINGS.responses_timeout_s
        self._client = client or AsyncOpenAI(
            api_key=api_key or SETTINGS.llm_api_key or None,
            base_url=base_url or SETTINGS.api_base or None,
            max_retries=0,
            default_headers={"X-Title": "LLM Chess Arena"},
        )

    async def complete(self, model: str, messages: List[Dict[str, str]], temperature: float = 0.7,
                       max_tokens: Optional[int] = 150) -> str:
        if not model:
            raise ValueError("Model is required; set it in your config (key 'model') or CLI.")
        try:
            rsp = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self.timeout_s,
            )
        except openai.RateLimitError as e:
            raise RateLimitFailure(f"Rate limit exceeded for {model}", status_code=429) from e
        except openai.APIStatusError as e:
            raise MoveRequestFailure(f"API request failed for {model}: {e.message}", status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise MoveRequestFailure(f"API request failed for {model}: {e}") from e

        text = _extract_text(rsp)
        if not text.strip():
            log.debug("Empty content received from %s", model)
            raise BadResponseFailure(f"Model {model} returned empty response")
        return text.strip()

    async def close(self) -> None:
        await self._client.close()


def _extract_text(rsp) -> str:
    choices = getattr(rsp, "choices", None)
    if not choices:
        return ""
    msg = choices[0].message
    content = getattr(msg, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for c in content:
            if isinstance(c, dict):
                if c.get("type") == "text" and isinstance(c.get("text"), str):
                    parts.append(c["text"])
                continue
            t = getattr(c, "text", None)
            if isinstance(t, str):
                parts.append(t)
        return "\n".join(parts)
    return ""
