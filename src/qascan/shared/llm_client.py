"""Async multi-provider LLM wrapper: text and vision completions.

Dispatches on the resolved provider to the OpenAI, Anthropic or Gemini
SDK. SDK clients are cached per (provider, api_key) so a scan's fan-out
shares one connection pool per provider.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import random
import re
from typing import Any

from anthropic import AsyncAnthropic
from google import genai
from google.genai import types as genai_types
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError

from qascan.shared.ai_provider import AiProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_TOKENS = 1024

# Retry settings for OpenAI rate-limit (429) and transient connection errors
_RATE_LIMIT_MAX_RETRIES = 3
_RATE_LIMIT_BASE_DELAY = 2  # seconds, minimum floor for exponential backoff


def _parse_retry_after(exc: RateLimitError) -> float | None:
    """Extract the suggested retry delay from an OpenAI rate limit error.

    Checks the ``Retry-After`` header first, then falls back to parsing
    the "Please try again in Xs / Xms" substring from the error message.
    Returns seconds as a float, or None if not found.
    """
    try:
        headers = exc.response.headers  # type: ignore[union-attr]
        if retry_after := headers.get("retry-after"):
            return float(retry_after)
    except (AttributeError, TypeError, ValueError):
        pass

    m = re.search(r"try again in (\d+(?:\.\d+)?)\s*(ms|s)\b", str(exc), re.IGNORECASE)
    if m:
        value = float(m.group(1))
        return value / 1000 if m.group(2).lower() == "ms" else value

    return None


def _join_text_parts(content: Any) -> str:
    """Flatten an SDK content payload (string or list of parts) into text."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    texts = []
    for part in content:
        if isinstance(part, str):
            texts.append(part)
        elif getattr(part, "type", "text") == "text":
            texts.append(getattr(part, "text", "") or "")
        elif isinstance(part, dict):
            texts.append(part.get("text", ""))
    return "\n".join(t for t in texts if t)


class LLMClient:
    """Thin async wrapper over the three vendor SDKs.

    Provides two methods:
    - ``generate_text``: single prompt, optional system prompt
    - ``generate_vision``: prompt plus one base64 JPEG image
    """

    def __init__(self) -> None:
        self._clients: dict[tuple[str, str], Any] = {}

    def _sdk(self, ctx: AiProviderConfig) -> Any:
        key = (ctx.provider, ctx.api_key)
        if key not in self._clients:
            if ctx.provider == "openai":
                self._clients[key] = AsyncOpenAI(api_key=ctx.api_key)
            elif ctx.provider == "anthropic":
                self._clients[key] = AsyncAnthropic(api_key=ctx.api_key)
            elif ctx.provider == "gemini":
                self._clients[key] = genai.Client(api_key=ctx.api_key)
            else:
                raise ValueError(f"Unsupported AI provider: {ctx.provider}")
        return self._clients[key]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_text(
        self,
        ctx: AiProviderConfig,
        prompt: str,
        *,
        system: str = "",
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        json_mode: bool = False,
    ) -> str:
        """Single request/response. Returns "" when the model sends no text."""
        if ctx.provider == "openai":
            messages: list[dict[str, Any]] = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            return await self._openai_completion(ctx, messages, temperature, max_tokens, json_mode)
        if ctx.provider == "anthropic":
            return await self._anthropic_completion(
                ctx, [{"type": "text", "text": prompt}], system, temperature, max_tokens,
            )
        if ctx.provider == "gemini":
            return await self._gemini_completion(
                ctx, [prompt], system, temperature, max_tokens, json_mode,
            )
        raise ValueError(f"Unsupported AI provider: {ctx.provider}")

    async def generate_vision(
        self,
        ctx: AiProviderConfig,
        prompt: str,
        image_b64: str,
        *,
        system: str = "",
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = 2048,
        json_mode: bool = True,
    ) -> str:
        """Prompt plus one JPEG screenshot (base64)."""
        if ctx.provider == "openai":
            messages: list[dict[str, Any]] = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                ],
            })
            return await self._openai_completion(ctx, messages, temperature, max_tokens, json_mode)
        if ctx.provider == "anthropic":
            content = [
                {"type": "text", "text": prompt},
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": "image/jpeg", "data": image_b64},
                },
            ]
            return await self._anthropic_completion(ctx, content, system, temperature, max_tokens)
        if ctx.provider == "gemini":
            image_part = genai_types.Part.from_bytes(
                data=base64.b64decode(image_b64), mime_type="image/jpeg",
            )
            return await self._gemini_completion(
                ctx, [prompt, image_part], system, temperature, max_tokens, json_mode,
            )
        raise ValueError(f"Unsupported AI provider: {ctx.provider}")

    # ------------------------------------------------------------------
    # OpenAI
    # ------------------------------------------------------------------

    async def _openai_completion(
        self,
        ctx: AiProviderConfig,
        messages: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": ctx.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self._call_with_retry(self._sdk(ctx), **kwargs)
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return _join_text_parts(choices[0].message.content)

    async def _call_with_retry(self, sdk: AsyncOpenAI, **kwargs: Any) -> Any:
        """Call chat.completions.create with exponential backoff on 429 errors.

        Waits at least as long as OpenAI's suggested retry-after time, uses
        exponential backoff as a floor, and adds ±25% jitter so the
        explanation fan-out doesn't retry in lockstep.

        Fails immediately if the request itself exceeds the token limit.
        """
        for attempt in range(_RATE_LIMIT_MAX_RETRIES):
            try:
                return await sdk.chat.completions.create(**kwargs)
            except RateLimitError as exc:
                msg = str(exc).lower()
                if "request too large" in msg or "context_length_exceeded" in msg:
                    logger.error("Request exceeds token limit (not retryable): %s", exc)
                    raise
                if attempt == _RATE_LIMIT_MAX_RETRIES - 1:
                    raise

                backoff = _RATE_LIMIT_BASE_DELAY * (2 ** attempt)
                suggested = _parse_retry_after(exc)
                base_delay = max(suggested or 0.0, backoff)
                jitter = random.uniform(-0.25 * base_delay, 0.25 * base_delay)
                delay = max(1.0, base_delay + jitter)

                logger.warning(
                    "Rate limited (429), retrying in %.1fs (attempt %d/%d): %s",
                    delay, attempt + 1, _RATE_LIMIT_MAX_RETRIES, exc,
                )
                await asyncio.sleep(delay)
            except (APIConnectionError, APITimeoutError) as exc:
                if attempt == _RATE_LIMIT_MAX_RETRIES - 1:
                    raise
                backoff = _RATE_LIMIT_BASE_DELAY * (2 ** min(attempt, 3))
                jitter = random.uniform(-0.25 * backoff, 0.25 * backoff)
                delay = max(1.0, backoff + jitter)
                logger.warning(
                    "Connection error, retrying in %.1fs (attempt %d/%d): %s",
                    delay, attempt + 1, _RATE_LIMIT_MAX_RETRIES, exc,
                )
                await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Anthropic
    # ------------------------------------------------------------------

    async def _anthropic_completion(
        self,
        ctx: AiProviderConfig,
        content: list[dict[str, Any]],
        system: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": ctx.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if system:
            kwargs["system"] = system
        response = await self._sdk(ctx).messages.create(**kwargs)
        return _join_text_parts(response.content)

    # ------------------------------------------------------------------
    # Gemini
    # ------------------------------------------------------------------

    async def _gemini_completion(
        self,
        ctx: AiProviderConfig,
        contents: list[Any],
        system: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system or None,
            response_mime_type="application/json" if json_mode else None,
        )
        response = await self._sdk(ctx).aio.models.generate_content(
            model=ctx.model, contents=contents, config=config,
        )
        return response.text or ""


# ======================================================================
# Dry-run mock client, zero API calls
# ======================================================================

_DRY_RUN_VISION = json.dumps({
    "introduction": "The page has a clear layout with a few friction points.",
    "suggestions": [
        {
            "suggestion": "Increase contrast of the primary call-to-action button.",
            "reasoning": "The button blends into the hero background at a glance.",
        },
        {
            "suggestion": "Shorten the navigation to five top-level items.",
            "reasoning": "Eight items wrap on narrower desktop widths.",
        },
    ],
})

_DRY_RUN_EXPLANATION = (
    "This check flags a real issue for visitors. Fix it at the template level "
    "so every page benefits, then re-run the audit to confirm."
)

_DRY_RUN_SUMMARY = (
    "Overall the site is in reasonable shape. The audit found a handful of "
    "accessibility and performance items worth addressing first."
)


class DryRunClient:
    """Drop-in replacement for ``LLMClient`` that makes zero API calls."""

    async def generate_text(
        self,
        ctx: AiProviderConfig,
        prompt: str,
        *,
        system: str = "",
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        json_mode: bool = False,
    ) -> str:
        logger.info("[dry-run] text completion (%d chars)", len(prompt))
        if "summariz" in system.lower():
            return _DRY_RUN_SUMMARY
        return _DRY_RUN_EXPLANATION

    async def generate_vision(
        self,
        ctx: AiProviderConfig,
        prompt: str,
        image_b64: str,
        *,
        system: str = "",
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = 2048,
        json_mode: bool = True,
    ) -> str:
        logger.info("[dry-run] vision completion (%d bytes of image)", len(image_b64))
        return _DRY_RUN_VISION
