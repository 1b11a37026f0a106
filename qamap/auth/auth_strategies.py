"""Pluggable authentication run once before crawling or executing.

Each strategy acts on a throwaway page of the browsing session so that
every page opened afterwards inherits the authenticated state.
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from qamap.driver.base import BrowserSession, PageDriver
from qamap.models.config import AuthConfig

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when an auth strategy cannot complete."""


class AuthStrategy(ABC):
    name = "abstract"

    @abstractmethod
    async def setup(
        self, page: PageDriver, session: BrowserSession, auth: AuthConfig, base_url: str,
    ) -> None: ...


class CookieAuthStrategy(AuthStrategy):
    name = "cookie"

    async def setup(self, page, session, auth, base_url):
        logger.info("Setting up cookie-based auth (%d cookies)", len(auth.cookies))
        # Some drivers only accept cookies for the currently loaded origin
        await page.navigate(base_url, timeout_ms=auth.wait_timeout_ms)
        await session.add_cookies(auth.cookies)


class LocalStorageAuthStrategy(AuthStrategy):
    name = "local_storage"

    async def setup(self, page, session, auth, base_url):
        logger.info("Setting up localStorage auth (key=%s)", auth.storage_key)
        if not auth.token:
            raise AuthError("local_storage auth requires a token")
        await page.navigate(base_url, timeout_ms=auth.wait_timeout_ms)
        await page.evaluate(
            "(item) => { localStorage.setItem(item.key, item.value); }",
            {"key": auth.storage_key, "value": auth.token},
        )


class LoginFormAuthStrategy(AuthStrategy):
    name = "login_form"

    async def setup(self, page, session, auth, base_url):
        login_url = auth.login_url or base_url
        logger.info("Logging in via form at %s", login_url)
        await page.navigate(login_url, timeout_ms=auth.wait_timeout_ms * 3)
        await page.fill(auth.username_selector, auth.username, timeout_ms=auth.wait_timeout_ms)
        await page.fill(auth.password_selector, auth.password, timeout_ms=auth.wait_timeout_ms)
        await page.click(auth.submit_selector, timeout_ms=auth.wait_timeout_ms)
        try:
            await page.wait_for_load_state("networkidle", timeout_ms=auth.wait_timeout_ms)
        except Exception:
            logger.debug("Network idle wait after login timed out, continuing")
        logger.info("Login complete (now at %s)", page.url)


class CustomAuthStrategy(AuthStrategy):
    """Runs ``setup(page)`` from a user-provided Python file."""

    name = "custom"

    async def setup(self, page, session, auth, base_url):
        path = Path(auth.script_path)
        if not path.exists():
            raise AuthError(f"Custom auth script not found: {path}")
        logger.info("Running custom auth script: %s", path)
        spec = importlib.util.spec_from_file_location("qamap_custom_auth", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        setup_fn = getattr(module, "setup", None)
        if setup_fn is None:
            raise AuthError(f"{path} does not define setup(page)")
        result = setup_fn(page)
        if inspect.isawaitable(result):
            await result
        logger.info("Custom auth complete")


_STRATEGIES: dict[str, type[AuthStrategy]] = {
    cls.name: cls
    for cls in (CookieAuthStrategy, LocalStorageAuthStrategy, LoginFormAuthStrategy, CustomAuthStrategy)
}


def get_auth_strategy(name: str) -> Optional[AuthStrategy]:
    cls = _STRATEGIES.get(name)
    return cls() if cls else None


async def authenticate(session: BrowserSession, auth: AuthConfig, base_url: str) -> None:
    """Run the configured strategy on a throwaway page of ``session``."""
    strategy = get_auth_strategy(auth.strategy)
    if strategy is None:
        raise AuthError(f"Unknown auth strategy: {auth.strategy}")
    page = await session.new_page()
    try:
        await strategy.setup(page, session, auth, base_url)
    finally:
        await page.close()
