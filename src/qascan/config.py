"""Config loader: reads an optional qascan.yml and overlays environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

import yaml

from qascan.schemas.config import RuntimeConfig

# environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "GEMINI_API_KEY": ("secrets", "gemini_api_key"),
    "OPENAI_API_KEY": ("secrets", "openai_api_key"),
    "ANTHROPIC_API_KEY": ("secrets", "anthropic_api_key"),
    "PAGESPEED_API_KEY": ("secrets", "pagespeed_api_key"),
    "WHATCMS_API_KEY": ("secrets", "whatcms_api_key"),
    "AI_DEFAULT_PROVIDER": ("ai_defaults", "provider"),
    "GEMINI_MODEL": ("ai_defaults", "models", "gemini"),
    "OPENAI_MODEL": ("ai_defaults", "models", "openai"),
    "ANTHROPIC_MODEL": ("ai_defaults", "models", "anthropic"),
    "QASCAN_DATA_DIR": ("storage", "data_dir"),
    "QASCAN_API_TOKEN": ("api", "api_token"),
    "CELERY_BROKER_URL": ("queue", "broker_url"),
    "CELERY_RESULT_BACKEND": ("queue", "result_backend"),
    "QASCAN_TASK_ALWAYS_EAGER": ("queue", "always_eager"),
}

# Config file used when no explicit path is given (worker processes).
CONFIG_PATH_ENV = "QASCAN_CONFIG"


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """Build the runtime config.

    File values come first; non-empty environment variables win over them.
    Without ``path``, the file named by ``QASCAN_CONFIG`` is read, if set.
    Raises ``FileNotFoundError`` if an explicit path doesn't exist and
    ``pydantic.ValidationError`` if the merged content is invalid.
    """
    env = os.environ if env is None else env
    if path is None:
        path = (env.get(CONFIG_PATH_ENV) or "").strip() or None

    raw: dict = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        loaded = yaml.safe_load(path.read_text())
        # An empty file loads as None; treat it as "no overrides".
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got {type(loaded).__name__}")
        raw = loaded

    for var, keys in _ENV_OVERRIDES.items():
        value = (env.get(var) or "").strip()
        if not value:
            continue
        target = raw
        for key in keys[:-1]:
            if not isinstance(target.get(key), dict):
                target[key] = {}
            target = target[key]
        target[keys[-1]] = value

    return RuntimeConfig(**raw)
