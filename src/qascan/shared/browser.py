"""Playwright browser manager: one Chromium session per scan."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import TracebackType

from playwright.async_api import Browser, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Viewport:
    name: str
    width: int
    height: int


VIEWPORTS: tuple[Viewport, ...] = (
    Viewport("desktop", 1280, 720),
    Viewport("tablet", 768, 1024),
    Viewport("mobile", 375, 667),
)


@dataclass
class ViewportCaptures:
    """Raw JPEG bytes per viewport plus the failures that were skipped."""

    page_title: str | None = None
    images: dict[str, bytes] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class BrowserManager:
    """Manages a headless Chromium instance.

    Usage::

        async with BrowserManager() as bm:
            captures = await bm.capture_viewports("https://example.com", VIEWPORTS)

    The browser is closed on every exit path, including errors raised
    inside the ``async with`` block.
    """

    def __init__(self) -> None:
        self._pw: Playwright | None = None
        self._browser: Browser | None = None

    async def __aenter__(self) -> "BrowserManager":
        self._pw = await async_playwright().start()
        try:
            self._browser = await self._pw.chromium.launch(headless=True)
        except BaseException:
            await self._pw.stop()
            self._pw = None
            raise
        logger.info("Browser launched")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self._browser:
                await self._browser.close()
        finally:
            if self._pw:
                await self._pw.stop()
            self._browser = None
            self._pw = None
            logger.info("Browser closed")

    async def _new_page(self) -> Page:
        assert self._browser is not None, "BrowserManager not entered"
        context = await self._browser.new_context(device_scale_factor=1)
        return await context.new_page()

    async def capture_viewports(
        self,
        url: str,
        viewports: tuple[Viewport, ...] = VIEWPORTS,
        *,
        navigation_timeout_ms: int = 120_000,
        reflow_wait_ms: int = 1000,
    ) -> ViewportCaptures:
        """Navigate once, then resize and screenshot each viewport in turn.

        A navigation failure raises; a single viewport failure is recorded
        in ``errors`` and the remaining viewports are still attempted.
        """
        page = await self._new_page()
        try:
            await page.goto(url, wait_until="load", timeout=navigation_timeout_ms)
            captures = ViewportCaptures(page_title=await page.title())

            for vp in viewports:
                try:
                    await page.set_viewport_size({"width": vp.width, "height": vp.height})
                    await page.wait_for_timeout(reflow_wait_ms)
                    captures.images[vp.name] = await page.screenshot(type="jpeg", quality=80)
                    logger.info("Screenshot captured for %s (%dx%d)", vp.name, vp.width, vp.height)
                except Exception as exc:
                    logger.error("Failed to capture screenshot for viewport %s: %s", vp.name, exc)
                    captures.errors[vp.name] = str(exc)
            return captures
        finally:
            await page.context.close()
