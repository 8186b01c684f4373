"""Screenshot capture: desktop, tablet and mobile images of the target page."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from qascan.adapters.base import CapabilityAdapter
from qascan.schemas.report import CaptureResult
from qascan.shared.browser import VIEWPORTS, BrowserManager, Viewport
from qascan.shared.screenshot_storage import ScreenshotStorage

logger = logging.getLogger(__name__)


class CaptureAdapter(CapabilityAdapter[CaptureResult]):
    """Captures every viewport and stores the images.

    Partial success is success: the result is ``success=True`` as long as
    one viewport was captured and stored. Viewports that failed are left
    out of ``screenshot_urls``.
    """

    def __init__(
        self,
        storage: ScreenshotStorage,
        *,
        browser_factory: Callable[[], Any] = BrowserManager,
        viewports: tuple[Viewport, ...] = VIEWPORTS,
        timeout: float = 180.0,
        navigation_timeout: float = 120.0,
    ) -> None:
        self._storage = storage
        self._browser_factory = browser_factory
        self._viewports = viewports
        self.timeout = timeout
        self._navigation_timeout_ms = int(navigation_timeout * 1000)

    @property
    def name(self) -> str:
        return "Screenshot capture"

    def failure(self, message: str) -> CaptureResult:
        return CaptureResult(success=False, error=f"Screenshot capture failed: {message}")

    async def perform(self, url: str, *, report_id: str = "") -> CaptureResult:
        logger.info("Starting screenshot capture for report %s: %s", report_id, url)

        # Browser session is scoped to this block and closed on every exit path.
        async with self._browser_factory() as browser:
            captures = await browser.capture_viewports(
                url, self._viewports, navigation_timeout_ms=self._navigation_timeout_ms,
            )

        names = list(captures.images)
        saved = await asyncio.gather(
            *(self._storage.save(report_id, name, captures.images[name]) for name in names),
            return_exceptions=True,
        )

        screenshot_urls: dict[str, str] = {}
        for name, outcome in zip(names, saved):
            if isinstance(outcome, Exception):
                logger.warning("Screenshot save failed for %s (report %s): %s", name, report_id, outcome)
                continue
            screenshot_urls[name] = outcome

        if not screenshot_urls:
            error = (
                "All screenshot captures failed."
                if not captures.images
                else "All screenshot uploads failed or no screenshots were captured."
            )
            return CaptureResult(
                success=False, page_title=captures.page_title, error=f"Screenshot capture failed: {error}",
            )

        logger.info(
            "Screenshot capture finished for report %s: %s",
            report_id, ", ".join(sorted(screenshot_urls)),
        )
        return CaptureResult(
            success=True, page_title=captures.page_title, screenshot_urls=screenshot_urls,
        )
