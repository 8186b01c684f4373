"""Shared helpers for the LLM-backed pipeline steps."""

from __future__ import annotations

import json
import re
from typing import Any, Protocol

from qascan.shared.ai_provider import AiProviderConfig

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


class TextModel(Protocol):
    """What the pipeline needs from an LLM client (``LLMClient`` or ``DryRunClient``)."""

    async def generate_text(
        self,
        ctx: AiProviderConfig,
        prompt: str,
        *,
        system: str = ...,
        temperature: float = ...,
        max_tokens: int = ...,
        json_mode: bool = ...,
    ) -> str: ...

    async def generate_vision(
        self,
        ctx: AiProviderConfig,
        prompt: str,
        image_b64: str,
        *,
        system: str = ...,
        temperature: float = ...,
        max_tokens: int = ...,
        json_mode: bool = ...,
    ) -> str: ...


def extract_json(text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model reply.

    Models asked for "JSON only" still wrap it in fences or prose now and
    then. Tries, in order: the whole reply, a fenced block, then the first
    ``{`` onwards. Raises ``ValueError`` when nothing parses.
    """
    text = text.strip()
    decoder = json.JSONDecoder()

    if text.startswith("{"):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # trailing commentary after a complete object
            try:
                return decoder.raw_decode(text)[0]
            except json.JSONDecodeError:
                pass

    fenced = _FENCE_RE.search(text)
    if fenced:
        return json.loads(fenced.group(1).strip())

    start = text.find("{")
    if start != -1:
        try:
            return decoder.raw_decode(text, idx=start)[0]
        except json.JSONDecodeError:
            pass

    raise ValueError(
        f"Could not extract JSON from model response (length={len(text)}). "
        f"First 300 chars: {text[:300]!r}"
    )
