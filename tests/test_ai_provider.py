"""Tests for AI provider resolution."""

from __future__ import annotations

from qascan.schemas.config import RuntimeConfig
from qascan.shared.ai_provider import (
    DEFAULT_MODEL_FALLBACK,
    normalize_provider,
    provider_label,
    resolve_ai_provider,
    supported_providers,
)


def _config(**secrets: str) -> RuntimeConfig:
    return RuntimeConfig(secrets=secrets)


class TestNormalize:
    def test_trims_and_lowercases(self) -> None:
        assert normalize_provider("  OpenAI ") == "openai"

    def test_unknown_is_none(self) -> None:
        assert normalize_provider("mistral") is None
        assert normalize_provider("") is None
        assert normalize_provider(None) is None

    def test_labels(self) -> None:
        assert provider_label("gemini") == "Google Gemini"
        assert provider_label("ANTHROPIC") == "Anthropic Claude"
        assert provider_label("nope") is None

    def test_supported_set(self) -> None:
        assert supported_providers() == ["gemini", "openai", "anthropic"]


class TestResolve:
    def test_requested_provider_wins(self) -> None:
        cfg = RuntimeConfig(
            secrets={"gemini_api_key": "g", "anthropic_api_key": "a"},
            ai_defaults={"provider": "gemini"},
        )
        res = resolve_ai_provider("anthropic", None, cfg)
        assert res.ok
        assert res.config.provider == "anthropic"
        assert res.config.api_key == "a"
        assert res.config.model == DEFAULT_MODEL_FALLBACK["anthropic"]

    def test_configured_default_provider(self) -> None:
        cfg = RuntimeConfig(secrets={"openai_api_key": "o"}, ai_defaults={"provider": "openai"})
        res = resolve_ai_provider(None, None, cfg)
        assert res.config.provider == "openai"

    def test_falls_back_to_gemini(self) -> None:
        res = resolve_ai_provider(None, None, _config(gemini_api_key="g"))
        assert res.config.provider == "gemini"
        assert res.config.model == "gemini-2.5-flash"

    def test_unknown_requested_provider_treated_as_absent(self) -> None:
        res = resolve_ai_provider("mistral", None, _config(gemini_api_key="g"))
        assert res.config.provider == "gemini"

    def test_model_precedence(self) -> None:
        cfg = RuntimeConfig(
            secrets={"openai_api_key": "o"},
            ai_defaults={"models": {"openai": "gpt-configured"}},
        )
        assert resolve_ai_provider("openai", "  gpt-explicit ", cfg).config.model == "gpt-explicit"
        assert resolve_ai_provider("openai", None, cfg).config.model == "gpt-configured"
        assert resolve_ai_provider("openai", "   ", cfg).config.model == "gpt-configured"

    def test_missing_api_key(self) -> None:
        res = resolve_ai_provider(None, None, _config())
        assert not res.ok
        assert res.config is None
        assert res.reason == "missing_api_key"
        assert res.provider == "gemini"
        assert res.error == "Missing API key for provider gemini"

    def test_missing_key_for_requested_provider_does_not_fall_back(self) -> None:
        res = resolve_ai_provider("openai", None, _config(gemini_api_key="g"))
        assert res.reason == "missing_api_key"
        assert res.provider == "openai"

    def test_repr_hides_key(self) -> None:
        res = resolve_ai_provider("openai", None, _config(openai_api_key="sk-secret"))
        assert "sk-secret" not in repr(res.config)
        assert "sk-secret" not in str(res.config)
