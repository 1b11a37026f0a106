"""Selenium implementation of the page-driver interface.

Selenium is synchronous, so every WebDriver call runs in a worker thread
via ``asyncio.to_thread``. Waiting is done by polling with ``WebDriverWait``
and ``expected_conditions`` instead of Playwright's auto-waiting.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Optional

from selenium import webdriver
from selenium.common.exceptions import NoSuchElementException, TimeoutException
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import Select, WebDriverWait

from .base import BrowserSession, LocatedElement, PageDriver

logger = logging.getLogger(__name__)

_HAS_TEXT_RE = re.compile(r"^\s*([\w-]*)\s*:has-text\(\s*['\"](.+?)['\"]\s*\)\s*$")

# CSS equivalents of the ARIA roles the crawler asks for
_ROLE_CSS = {
    "button": 'button, [role="button"], input[type="submit"], input[type="button"]',
    "link": 'a[href], [role="link"]',
    "textbox": (
        'input:not([type]), input[type="text"], input[type="email"], input[type="password"], '
        'input[type="search"], input[type="tel"], input[type="url"], textarea, [role="textbox"]'
    ),
    "heading": 'h1, h2, h3, h4, h5, h6, [role="heading"]',
    "img": 'img, [role="img"]',
}

_ELEMENT_FACTS_JS = """
const e = arguments[0];
const attrs = {};
for (const attr of Array.from(e.attributes)) { attrs[attr.name] = attr.value; }
return { tag: e.tagName.toLowerCase(), text: (e.textContent || '').trim(), attrs: attrs };
"""


def _xpath_literal(text: str) -> str:
    if '"' not in text:
        return f'"{text}"'
    if "'" not in text:
        return f"'{text}'"
    parts = text.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


def _has_text_xpath(tag: str, text: str) -> str:
    return f"//{tag or '*'}[contains(normalize-space(.), {_xpath_literal(text)})]"


def to_locator(selector: str) -> tuple[str, str]:
    """Translate a selector string into a Selenium ``(By, value)`` pair.

    Supports plain CSS, XPath (``//...`` or ``xpath=...``), ``text=...`` and
    Playwright-style ``tag:has-text("...")`` including comma-separated lists.
    """
    selector = selector.strip()
    if selector.startswith("xpath="):
        return By.XPATH, selector[len("xpath="):]
    if selector.startswith("//") or selector.startswith("(//"):
        return By.XPATH, selector
    if selector.startswith("text="):
        return By.XPATH, _has_text_xpath("", selector[len("text="):].strip("'\""))
    if ":has-text(" in selector:
        parts = []
        for part in selector.split(","):
            match = _HAS_TEXT_RE.match(part)
            if not match:
                break
            parts.append(_has_text_xpath(match.group(1), match.group(2)))
        else:
            return By.XPATH, " | ".join(parts)
    return By.CSS_SELECTOR, selector


class SeleniumPageDriver(PageDriver):
    name = "selenium"

    def __init__(self, driver: WebDriver, handle: str):
        self.driver = driver
        self.handle = handle

    def _activate(self) -> None:
        if self.driver.current_window_handle != self.handle:
            self.driver.switch_to.window(self.handle)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        def call() -> Any:
            self._activate()
            return fn(*args)
        return await asyncio.to_thread(call)

    def _wait(self, timeout_ms: int) -> WebDriverWait:
        return WebDriverWait(self.driver, max(timeout_ms, 1) / 1000)

    def _present(self, selector: str, timeout_ms: int):
        return self._wait(timeout_ms).until(EC.presence_of_element_located(to_locator(selector)))

    @property
    def url(self) -> str:
        return self.driver.current_url

    async def navigate(
        self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30000,
    ) -> Optional[int]:
        def go() -> None:
            self.driver.set_page_load_timeout(timeout_ms / 1000)
            self.driver.get(url)
        await self._run(go)
        return None

    async def wait_for_load_state(self, state: str = "networkidle", timeout_ms: int = 10000) -> None:
        # No network-idle signal in WebDriver; document readiness is the closest.
        def ready() -> None:
            self._wait(timeout_ms).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        await self._run(ready)

    async def locate_by_role(self, role: str, limit: int = 20) -> list[LocatedElement]:
        css = _ROLE_CSS.get(role, f'[role="{role}"]')

        def locate() -> list[LocatedElement]:
            found = []
            for el in self.driver.find_elements(By.CSS_SELECTOR, css)[:limit]:
                try:
                    facts = self.driver.execute_script(_ELEMENT_FACTS_JS, el)
                except Exception as e:
                    logger.debug("Skipping %s element: %s", role, e)
                    continue
                found.append(LocatedElement(
                    role=role,
                    tag=facts.get("tag", ""),
                    text=facts.get("text", ""),
                    attributes=facts.get("attrs", {}),
                ))
            return found
        return await self._run(locate)

    async def locate_by_selector(self, selector: str, timeout_ms: int = 5000) -> bool:
        try:
            await self._run(self._present, selector, timeout_ms)
            return True
        except (TimeoutException, NoSuchElementException):
            return False

    async def click(self, selector: str, timeout_ms: int = 30000) -> None:
        def do() -> None:
            el = self._wait(timeout_ms).until(EC.element_to_be_clickable(to_locator(selector)))
            el.click()
        await self._run(do)

    async def fill(self, selector: str, value: str, timeout_ms: int = 30000) -> None:
        def do() -> None:
            el = self._present(selector, timeout_ms)
            el.clear()
            el.send_keys(value)
        await self._run(do)

    async def select_option(self, selector: str, value: str, timeout_ms: int = 30000) -> None:
        def do() -> None:
            select = Select(self._present(selector, timeout_ms))
            try:
                select.select_by_value(value)
            except NoSuchElementException:
                select.select_by_visible_text(value)
        await self._run(do)

    async def check(self, selector: str, timeout_ms: int = 30000) -> None:
        def do() -> None:
            el = self._present(selector, timeout_ms)
            if not el.is_selected():
                el.click()
        await self._run(do)

    async def hover(self, selector: str, timeout_ms: int = 30000) -> None:
        def do() -> None:
            el = self._present(selector, timeout_ms)
            ActionChains(self.driver).move_to_element(el).perform()
        await self._run(do)

    async def is_visible(self, selector: str, timeout_ms: int = 5000) -> bool:
        def do() -> bool:
            self._wait(timeout_ms).until(EC.visibility_of_element_located(to_locator(selector)))
            return True
        try:
            return await self._run(do)
        except TimeoutException:
            return False

    async def text_content(self, selector: str, timeout_ms: int = 5000) -> str:
        def do() -> str:
            el = self._present(selector, timeout_ms)
            return el.get_attribute("textContent") or el.text or ""
        return await self._run(do)

    async def input_value(self, selector: str, timeout_ms: int = 5000) -> str:
        def do() -> str:
            return self._present(selector, timeout_ms).get_attribute("value") or ""
        return await self._run(do)

    async def get_attribute(self, selector: str, name: str, timeout_ms: int = 5000) -> Optional[str]:
        def do() -> Optional[str]:
            return self._present(selector, timeout_ms).get_attribute(name)
        return await self._run(do)

    async def count(self, selector: str) -> int:
        return await self._run(lambda: len(self.driver.find_elements(*to_locator(selector))))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        # Accepts the same "(arg) => {...}" function source as the Playwright driver
        return await self._run(self.driver.execute_script, f"return ({script})(arguments[0]);", arg)

    async def screenshot(self, path: str) -> None:
        await self._run(self.driver.save_screenshot, path)

    async def reload(self, timeout_ms: int = 30000) -> None:
        await self._run(self.driver.refresh)

    async def title(self) -> str:
        return await self._run(lambda: self.driver.title)

    async def wait(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000)

    async def close(self) -> None:
        def do() -> None:
            handles = self.driver.window_handles
            if self.handle in handles and len(handles) > 1:
                self.driver.switch_to.window(self.handle)
                self.driver.close()
                self.driver.switch_to.window(next(h for h in handles if h != self.handle))
        await asyncio.to_thread(do)


class SeleniumSession(BrowserSession):
    """One WebDriver instance; each page is a window handle within it."""

    name = "selenium"

    def __init__(self, driver: WebDriver):
        self.driver = driver
        self._handed_out: set[str] = set()

    @classmethod
    async def launch(
        cls, browser: str = "chrome", headless: bool = True,
        remote_url: Optional[str] = None,
    ) -> "SeleniumSession":
        def create() -> WebDriver:
            if browser == "firefox":
                options = webdriver.FirefoxOptions()
                if headless:
                    options.add_argument("-headless")
            else:
                options = webdriver.ChromeOptions()
                if headless:
                    options.add_argument("--headless=new")
                options.add_argument("--window-size=1280,720")
            if remote_url:
                return webdriver.Remote(command_executor=remote_url, options=options)
            if browser == "firefox":
                return webdriver.Firefox(options=options)
            return webdriver.Chrome(options=options)

        logger.debug("Starting Selenium %s (headless=%s, remote=%s)", browser, headless, remote_url)
        return cls(await asyncio.to_thread(create))

    async def new_page(self) -> PageDriver:
        def open_window() -> str:
            current = self.driver.current_window_handle
            if current not in self._handed_out:
                return current
            self.driver.switch_to.new_window("tab")
            return self.driver.current_window_handle

        handle = await asyncio.to_thread(open_window)
        self._handed_out.add(handle)
        return SeleniumPageDriver(self.driver, handle)

    async def add_cookies(self, cookies: list[dict]) -> None:
        # WebDriver only accepts cookies for the domain currently loaded
        def add() -> None:
            for cookie in cookies:
                self.driver.add_cookie({
                    k: v for k, v in cookie.items()
                    if k in ("name", "value", "domain", "path", "secure", "httpOnly", "expiry")
                })
        await asyncio.to_thread(add)

    async def close(self) -> None:
        await asyncio.to_thread(self.driver.quit)
