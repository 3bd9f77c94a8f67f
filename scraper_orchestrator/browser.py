"""Playwright browser lifecycle shared by the CLI and site scrapers."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, async_playwright

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
]


@asynccontextmanager
async def playwright_browser(headless: bool = True, slow_mo: Optional[float] = None) -> AsyncIterator[Browser]:
    playwright = await async_playwright().start()
    browser = await playwright.chromium.launch(headless=headless, slow_mo=slow_mo, args=CHROMIUM_ARGS)
    logger.debug("Launched Chromium", extra={"headless": headless})
    try:
        yield browser
    finally:
        await browser.close()
        await playwright.stop()


__all__ = ["playwright_browser"]
