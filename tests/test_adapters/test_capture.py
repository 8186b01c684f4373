"""Tests for the screenshot capture adapter, with a fake browser."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from qascan.adapters.capture import CaptureAdapter
from qascan.shared.browser import ViewportCaptures
from qascan.shared.screenshot_storage import ScreenshotStorage


class _FakeBrowser:
    """Stands in for BrowserManager; records whether it was closed."""

    instances: list["_FakeBrowser"] = []

    def __init__(self, captures: ViewportCaptures | Exception) -> None:
        self._captures = captures
        self.closed = False
        _FakeBrowser.instances.append(self)

    async def __aenter__(self) -> "_FakeBrowser":
        return self

    async def __aexit__(self, *exc) -> None:
        self.closed = True

    async def capture_viewports(self, url, viewports, *, navigation_timeout_ms=120_000):
        if isinstance(self._captures, Exception):
            raise self._captures
        return self._captures


def _factory(captures):
    return lambda: _FakeBrowser(captures)


@pytest.fixture(autouse=True)
def _reset_instances():
    _FakeBrowser.instances = []
    yield


class TestCaptureAdapter:
    @pytest.mark.asyncio
    async def test_all_viewports(self, storage: ScreenshotStorage, tmp_path: Path) -> None:
        captures = ViewportCaptures(
            page_title="Example",
            images={"desktop": b"d", "tablet": b"t", "mobile": b"m"},
        )
        adapter = CaptureAdapter(storage, browser_factory=_factory(captures))
        result = await adapter.run("https://example.com", report_id="r1")

        assert result.success
        assert result.page_title == "Example"
        assert set(result.screenshot_urls) == {"desktop", "tablet", "mobile"}
        saved = tmp_path / "screenshots" / "r1" / "screenshot_desktop.jpg"
        assert saved.read_bytes() == b"d"
        assert result.screenshot_urls["desktop"] == saved.resolve().as_uri()
        assert _FakeBrowser.instances[0].closed

    @pytest.mark.asyncio
    async def test_partial_capture_is_success(self, storage: ScreenshotStorage) -> None:
        captures = ViewportCaptures(
            page_title="Example",
            images={"mobile": b"m"},
            errors={"desktop": "crash", "tablet": "crash"},
        )
        result = await CaptureAdapter(storage, browser_factory=_factory(captures)).run(
            "https://example.com", report_id="r1",
        )
        assert result.success
        assert list(result.screenshot_urls) == ["mobile"]

    @pytest.mark.asyncio
    async def test_no_viewports_is_failure(self, storage: ScreenshotStorage) -> None:
        captures = ViewportCaptures(page_title=None, images={}, errors={"desktop": "x"})
        result = await CaptureAdapter(storage, browser_factory=_factory(captures)).run(
            "https://example.com", report_id="r1",
        )
        assert not result.success
        assert result.screenshot_urls == {}
        assert "All screenshot captures failed." in result.error

    @pytest.mark.asyncio
    async def test_all_saves_failing_is_failure(self) -> None:
        storage = AsyncMock()
        storage.save = AsyncMock(side_effect=OSError("disk full"))
        captures = ViewportCaptures(page_title="T", images={"desktop": b"d"})
        result = await CaptureAdapter(storage, browser_factory=_factory(captures)).run(
            "https://example.com", report_id="r1",
        )
        assert not result.success
        assert "uploads failed" in result.error

    @pytest.mark.asyncio
    async def test_one_save_failing_keeps_the_rest(self) -> None:
        async def save(report_id, viewport, data):
            if viewport == "tablet":
                raise OSError("disk full")
            return f"file:///{viewport}.jpg"

        storage = AsyncMock()
        storage.save = AsyncMock(side_effect=save)
        captures = ViewportCaptures(page_title="T", images={"desktop": b"d", "tablet": b"t"})
        result = await CaptureAdapter(storage, browser_factory=_factory(captures)).run(
            "https://example.com", report_id="r1",
        )
        assert result.success
        assert result.screenshot_urls == {"desktop": "file:///desktop.jpg"}

    @pytest.mark.asyncio
    async def test_navigation_error_releases_browser(self, storage: ScreenshotStorage) -> None:
        adapter = CaptureAdapter(storage, browser_factory=_factory(RuntimeError("net::ERR_NAME_NOT_RESOLVED")))
        result = await adapter.run("https://nope.invalid", report_id="r1")
        assert not result.success
        assert "ERR_NAME_NOT_RESOLVED" in result.error
        assert _FakeBrowser.instances[0].closed
