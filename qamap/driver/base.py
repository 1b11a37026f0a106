"""Page-driver capability interface consumed by the crawler and execution adapter.

The core never talks to a browser-automation library directly. A
``BrowserSession`` is one browsing context (shared cookies and storage);
each ``PageDriver`` it hands out is a single tab in that context.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

# Roles extracted by the crawler, in extraction order
ROLE_VOCABULARY = ("button", "link", "textbox", "heading", "img")


class LocatedElement(BaseModel):
    """Raw facts about one element matched by role."""
    role: str
    tag: str = ""
    text: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)


class PageDriver(ABC):
    """A single page/tab the core can drive."""

    name = "abstract"

    @property
    @abstractmethod
    def url(self) -> str: ...

    @abstractmethod
    async def navigate(
        self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30000,
    ) -> Optional[int]:
        """Load ``url``; returns the HTTP status when the driver knows it."""

    @abstractmethod
    async def wait_for_load_state(self, state: str = "networkidle", timeout_ms: int = 10000) -> None: ...

    @abstractmethod
    async def locate_by_role(self, role: str, limit: int = 20) -> list[LocatedElement]: ...

    @abstractmethod
    async def locate_by_selector(self, selector: str, timeout_ms: int = 5000) -> bool:
        """Wait until ``selector`` is attached. True if found before the timeout."""

    @abstractmethod
    async def click(self, selector: str, timeout_ms: int = 30000) -> None: ...

    @abstractmethod
    async def fill(self, selector: str, value: str, timeout_ms: int = 30000) -> None: ...

    @abstractmethod
    async def select_option(self, selector: str, value: str, timeout_ms: int = 30000) -> None: ...

    @abstractmethod
    async def check(self, selector: str, timeout_ms: int = 30000) -> None: ...

    @abstractmethod
    async def hover(self, selector: str, timeout_ms: int = 30000) -> None: ...

    @abstractmethod
    async def is_visible(self, selector: str, timeout_ms: int = 5000) -> bool: ...

    @abstractmethod
    async def text_content(self, selector: str, timeout_ms: int = 5000) -> str: ...

    @abstractmethod
    async def input_value(self, selector: str, timeout_ms: int = 5000) -> str: ...

    @abstractmethod
    async def get_attribute(self, selector: str, name: str, timeout_ms: int = 5000) -> Optional[str]: ...

    @abstractmethod
    async def count(self, selector: str) -> int: ...

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a batch DOM extraction function in the page."""

    @abstractmethod
    async def screenshot(self, path: str) -> None: ...

    @abstractmethod
    async def reload(self, timeout_ms: int = 30000) -> None: ...

    @abstractmethod
    async def title(self) -> str: ...

    @abstractmethod
    async def wait(self, ms: int) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class BrowserSession(ABC):
    """One browsing context; pages created from it share auth state."""

    name = "abstract"

    @abstractmethod
    async def new_page(self) -> PageDriver: ...

    @abstractmethod
    async def add_cookies(self, cookies: list[dict]) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
