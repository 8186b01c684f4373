"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Rich's module-level Console in qascan.cli sizes itself from COLUMNS at import;
# pin a wide width so CLI output assertions don't depend on the runner's terminal.
os.environ["COLUMNS"] = "200"

from qascan.schemas.config import RuntimeConfig
from qascan.shared.ai_provider import AiProviderConfig
from qascan.shared.report_store import MemoryReportStore
from qascan.shared.screenshot_storage import ScreenshotStorage

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def pagespeed_body() -> dict:
    """A trimmed PageSpeed v5 response with a mix of passing and failing audits."""
    return json.loads((FIXTURES_DIR / "pagespeed_response.json").read_text())


@pytest.fixture
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    """Config with every credential set and storage under tmp_path."""
    return RuntimeConfig(
        secrets={
            "openai_api_key": "sk-test",
            "pagespeed_api_key": "ps-test",
            "whatcms_api_key": "wc-test",
        },
        ai_defaults={"provider": "openai"},
        storage={"data_dir": str(tmp_path)},
    )


@pytest.fixture
def ai_config() -> AiProviderConfig:
    return AiProviderConfig(provider="openai", model="gpt-4o", api_key="sk-test")


@pytest.fixture
def store() -> MemoryReportStore:
    return MemoryReportStore()


@pytest.fixture
def storage(tmp_path: Path) -> ScreenshotStorage:
    return ScreenshotStorage(tmp_path)


@pytest.fixture
def mock_llm() -> AsyncMock:
    """A text/vision model double; set ``generate_text`` / ``generate_vision`` behaviour per test."""
    client = AsyncMock()
    client.generate_text = AsyncMock(return_value="An explanation.")
    client.generate_vision = AsyncMock(
        return_value='{"introduction": "Looks fine.", "suggestions": []}'
    )
    return client
