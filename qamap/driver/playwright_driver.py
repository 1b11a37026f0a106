"""Playwright implementation of the page-driver interface."""

from __future__ import annotations

import logging
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .base import BrowserSession, LocatedElement, PageDriver

logger = logging.getLogger(__name__)

_ELEMENT_FACTS_JS = """(e) => {
    const attrs = {};
    for (const attr of Array.from(e.attributes)) {
        attrs[attr.name] = attr.value;
    }
    return { tag: e.tagName.toLowerCase(), attrs: attrs };
}"""


class PlaywrightPageDriver(PageDriver):
    name = "playwright"

    def __init__(self, page: Page):
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    async def navigate(
        self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30000,
    ) -> Optional[int]:
        response = await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        return response.status if response is not None else None

    async def wait_for_load_state(self, state: str = "networkidle", timeout_ms: int = 10000) -> None:
        await self.page.wait_for_load_state(state, timeout=timeout_ms)

    async def locate_by_role(self, role: str, limit: int = 20) -> list[LocatedElement]:
        locator = self.page.get_by_role(role)
        count = await locator.count()
        found: list[LocatedElement] = []
        for i in range(min(count, limit)):
            el = locator.nth(i)
            try:
                text = await el.text_content(timeout=2000) or ""
                facts = await el.evaluate(_ELEMENT_FACTS_JS)
            except Exception as e:
                logger.debug("Skipping %s #%d: %s", role, i, e)
                continue
            found.append(LocatedElement(
                role=role,
                tag=facts.get("tag", ""),
                text=text.strip(),
                attributes=facts.get("attrs", {}),
            ))
        return found

    async def locate_by_selector(self, selector: str, timeout_ms: int = 5000) -> bool:
        try:
            el = await self.page.wait_for_selector(selector, timeout=timeout_ms, state="attached")
            return el is not None
        except Exception:
            return False

    async def click(self, selector: str, timeout_ms: int = 30000) -> None:
        await self.page.click(selector, timeout=timeout_ms)

    async def fill(self, selector: str, value: str, timeout_ms: int = 30000) -> None:
        await self.page.fill(selector, value, timeout=timeout_ms)

    async def select_option(self, selector: str, value: str, timeout_ms: int = 30000) -> None:
        await self.page.select_option(selector, value, timeout=timeout_ms)

    async def check(self, selector: str, timeout_ms: int = 30000) -> None:
        await self.page.check(selector, timeout=timeout_ms)

    async def hover(self, selector: str, timeout_ms: int = 30000) -> None:
        await self.page.hover(selector, timeout=timeout_ms)

    async def is_visible(self, selector: str, timeout_ms: int = 5000) -> bool:
        try:
            el = await self.page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
            return el is not None
        except Exception:
            return False

    async def text_content(self, selector: str, timeout_ms: int = 5000) -> str:
        return await self.page.text_content(selector, timeout=timeout_ms) or ""

    async def input_value(self, selector: str, timeout_ms: int = 5000) -> str:
        return await self.page.input_value(selector, timeout=timeout_ms)

    async def get_attribute(self, selector: str, name: str, timeout_ms: int = 5000) -> Optional[str]:
        return await self.page.get_attribute(selector, name, timeout=timeout_ms)

    async def count(self, selector: str) -> int:
        return await self.page.locator(selector).count()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def screenshot(self, path: str) -> None:
        await self.page.screenshot(path=path, full_page=False)

    async def reload(self, timeout_ms: int = 30000) -> None:
        await self.page.reload(wait_until="domcontentloaded", timeout=timeout_ms)

    async def title(self) -> str:
        return await self.page.title()

    async def wait(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def close(self) -> None:
        await self.page.close()


class PlaywrightSession(BrowserSession):
    """A Playwright browser plus one context."""

    name = "playwright"

    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext):
        self._playwright = playwright
        self.browser = browser
        self.context = context

    @classmethod
    async def launch(
        cls, browser: str = "chromium", headless: bool = True,
        viewport: Optional[dict] = None,
    ) -> "PlaywrightSession":
        pw = await async_playwright().start()
        browser_type = getattr(pw, browser, None) or pw.chromium
        logger.debug("Launching %s (headless=%s)", browser_type.name, headless)
        launched = None
        try:
            launched = await browser_type.launch(headless=headless)
            context = await launched.new_context(
                viewport=viewport or {"width": 1280, "height": 720},
            )
        except Exception:
            if launched is not None:
                await launched.close()
            await pw.stop()
            raise
        return cls(pw, launched, context)

    async def new_page(self) -> PageDriver:
        return PlaywrightPageDriver(await self.context.new_page())

    async def add_cookies(self, cookies: list[dict]) -> None:
        await self.context.add_cookies(cookies)

    async def close(self) -> None:
        try:
            await self.context.close()
            await self.browser.close()
        finally:
            await self._playwright.stop()
