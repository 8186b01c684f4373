"""AI provider resolution: picks provider, model and credential for a scan.

Resolution never raises: a missing credential comes back as an
``AiProviderResolution`` with ``reason="missing_api_key"`` so the pipeline
can keep running with the AI sections skipped.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from qascan.schemas.config import RuntimeConfig

SupportedProvider = Literal["gemini", "openai", "anthropic"]

SUPPORTED_PROVIDERS: tuple[str, ...] = ("gemini", "openai", "anthropic")

PROVIDER_LABELS: dict[str, str] = {
    "gemini": "Google Gemini",
    "openai": "OpenAI",
    "anthropic": "Anthropic Claude",
}

DEFAULT_MODEL_FALLBACK: dict[str, str] = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-5",
}

_DEFAULT_PROVIDER = "gemini"


class AiProviderConfig(BaseModel):
    provider: str
    model: str
    api_key: str

    def __repr__(self) -> str:  # keep keys out of logs
        return f"AiProviderConfig(provider={self.provider!r}, model={self.model!r})"

    __str__ = __repr__


class AiProviderResolution(BaseModel):
    config: AiProviderConfig | None = None
    provider: str | None = None
    error: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.config is not None


def normalize_provider(value: str | None) -> str | None:
    """Trim and lower-case; anything outside the supported set is ``None``."""
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized if normalized in SUPPORTED_PROVIDERS else None


def supported_providers() -> list[str]:
    return list(SUPPORTED_PROVIDERS)


def provider_label(value: str | None) -> str | None:
    normalized = normalize_provider(value)
    return PROVIDER_LABELS[normalized] if normalized else None


def _api_key_for(provider: str, config: RuntimeConfig) -> str:
    return getattr(config.secrets, f"{provider}_api_key", "").strip()


def resolve_ai_provider(
    requested_provider: str | None,
    requested_model: str | None,
    config: RuntimeConfig,
) -> AiProviderResolution:
    """Resolve ``{provider, model, api_key}``.

    Provider: requested > configured default > gemini.
    Model: requested > configured model for the provider > hardcoded fallback.
    Model names are not validated against any catalog.
    """
    provider = (
        normalize_provider(requested_provider)
        or normalize_provider(config.ai_defaults.provider)
        or _DEFAULT_PROVIDER
    )

    api_key = _api_key_for(provider, config)
    if not api_key:
        return AiProviderResolution(
            provider=provider,
            error=f"Missing API key for provider {provider}",
            reason="missing_api_key",
        )

    model = (requested_model or "").strip()
    if not model:
        model = (config.ai_defaults.models.get(provider) or "").strip() or DEFAULT_MODEL_FALLBACK[provider]

    return AiProviderResolution(
        provider=provider,
        config=AiProviderConfig(provider=provider, model=model, api_key=api_key),
    )
