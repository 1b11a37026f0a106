"""Choose a concrete browser session for a runner name."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from .base import BrowserSession
from .playwright_driver import PlaywrightSession
from .selenium_driver import SeleniumSession

SessionFactory = Callable[[], Awaitable[BrowserSession]]

RUNNERS = ("playwright", "selenium")


async def open_session(
    runner: str = "playwright",
    browser: str = "chromium",
    headless: bool = True,
    remote_url: Optional[str] = None,
) -> BrowserSession:
    """Launch a browser session for ``runner``."""
    if runner == "playwright":
        return await PlaywrightSession.launch(browser=browser, headless=headless)
    if runner == "selenium":
        selenium_browser = "chrome" if browser in ("chromium", "chrome") else browser
        return await SeleniumSession.launch(
            browser=selenium_browser, headless=headless, remote_url=remote_url,
        )
    raise ValueError(f"Unknown runner '{runner}' (expected one of {', '.join(RUNNERS)})")


def session_factory(
    runner: str = "playwright",
    browser: str = "chromium",
    headless: bool = True,
    remote_url: Optional[str] = None,
) -> SessionFactory:
    """Bind launch options into a zero-argument factory."""
    async def factory() -> BrowserSession:
        return await open_session(runner, browser, headless, remote_url)
    return factory
