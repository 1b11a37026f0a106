"""Structural crawler: breadth-first traversal of an app into graph nodes and edges."""

from __future__ import annotations

import logging
import time
from collections import deque
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from qamap.auth.auth_strategies import authenticate
from qamap.driver.base import BrowserSession, PageDriver
from qamap.driver.factory import SessionFactory
from qamap.models.config import AuthConfig
from qamap.models.graph import AppEdge, AppNode, ElementDescriptor, NodeMetadata, SelectorStrategy
from qamap.url_utils import (
    extract_route,
    is_same_origin,
    is_valid_page_url,
    node_id_from_url,
    resolve_url,
)
from qamap.utils.hashing import hash_string, stable_id

from .element_extractor import extract_elements, quote_value
from .form_analyzer import analyze_forms

logger = logging.getLogger(__name__)

_LINKS_JS = """() => {
    return Array.from(document.querySelectorAll('a[href]')).map(a => ({
        href: a.getAttribute('href') || '',
        text: (a.textContent || '').trim().replace(/\\s+/g, ' ').substring(0, 80),
        testId: a.getAttribute('data-testid') || '',
        ariaLabel: a.getAttribute('aria-label') || '',
    }));
}"""

_SKIP_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


class CrawlResult(BaseModel):
    nodes: list[AppNode] = Field(default_factory=list)
    edges: list[AppEdge] = Field(default_factory=list)
    screenshots: dict[str, str] = Field(default_factory=dict)  # node id -> path
    duration_ms: float = 0.0


def _link_trigger(href: str, text: str, test_id: str, aria_label: str, route: str) -> ElementDescriptor:
    if test_id:
        selector = SelectorStrategy(
            primary=f'[data-testid="{test_id}"]', fallbacks=[f'a[href="{href}"]'],
            stability=0.95, type="data-testid",
        )
    elif aria_label:
        selector = SelectorStrategy(
            primary=f'a[aria-label="{aria_label}"]', fallbacks=[f'a[href="{href}"]'],
            stability=0.8, type="label",
        )
    elif text:
        selector = SelectorStrategy(
            primary=f'a:has-text("{quote_value(text)}")', fallbacks=[f'a[href="{href}"]'],
            stability=0.6, type="role",
        )
    else:
        selector = SelectorStrategy(primary=f'a[href="{href}"]', stability=0.5, type="css")

    attributes = {"href": href}
    if test_id:
        attributes["data-testid"] = test_id
    if aria_label:
        attributes["aria-label"] = aria_label
    return ElementDescriptor(
        id=stable_id("link", route, href, text),
        role="link",
        name=text or aria_label or None,
        type="link",
        selector=selector,
        attributes=attributes,
        text=text or None,
        confidence=0.7,
    )


async def extract_links(page: PageDriver, base_url: str, route: str = "/") -> list[tuple[str, ElementDescriptor]]:
    """Same-origin page links as ``(absolute_url, trigger)`` pairs, first occurrence wins."""
    try:
        raw_links = await page.evaluate(_LINKS_JS)
    except Exception as e:
        logger.error("Link extraction failed: %s", e)
        return []

    links: list[tuple[str, ElementDescriptor]] = []
    seen: set[str] = set()
    for raw in raw_links or []:
        href = (raw.get("href") or "").strip()
        if not href or href.lower().startswith(_SKIP_HREF_PREFIXES):
            continue
        url = resolve_url(href, page.url or base_url).split("#")[0]
        if not is_same_origin(base_url, url) or not is_valid_page_url(url):
            continue
        key = node_id_from_url(url)
        if key in seen:
            continue
        seen.add(key)
        links.append((url, _link_trigger(
            href, raw.get("text", ""), raw.get("testId", ""), raw.get("ariaLabel", ""), route,
        )))
    return links


class Crawler:
    """Crawls a web app through a page driver and emits graph nodes and edges.

    Traversal is breadth-first over a FIFO queue of ``(url, depth)``. Pages
    are visited one at a time in queue order within a single browsing
    session, so crawl order is deterministic for a given app.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        screenshots_dir: Optional[Path] = None,
        wait_until: str = "networkidle",
    ):
        self._session_factory = session_factory
        self.screenshots_dir = screenshots_dir
        self.wait_until = wait_until
        self._reset()

    def _reset(self) -> None:
        # visited and queued hold node ids, so http/https or reordered queries collapse
        self._visited: set[str] = set()
        self._queued: set[str] = set()
        self._nodes: list[AppNode] = []
        self._node_ids: set[str] = set()
        self._edges: list[AppEdge] = []
        self._edge_keys: set[str] = set()
        self._screenshots: dict[str, str] = {}

    async def crawl(
        self,
        base_url: str,
        max_depth: int = 3,
        max_pages: int = 50,
        timeout_ms: int = 30000,
        auth: Optional[AuthConfig] = None,
        deep_form_extraction: bool = False,
    ) -> CrawlResult:
        """Execute the crawl and return the discovered nodes and edges."""
        start_time = time.time()
        logger.info("Starting crawl of %s (max_depth=%d, max_pages=%d)", base_url, max_depth, max_pages)

        self._reset()
        queue: deque[tuple[str, int]] = deque([(base_url, 0)])
        self._queued.add(node_id_from_url(base_url))

        session = await self._session_factory()
        async with session:
            if auth:
                try:
                    await authenticate(session, auth, base_url)
                except Exception as e:
                    logger.error("Authentication failed: %s", e)

            while queue and len(self._nodes) < max_pages:
                url, depth = queue.popleft()
                key = node_id_from_url(url)
                if key in self._visited or depth > max_depth:
                    continue
                self._visited.add(key)
                for link_url in await self._crawl_page(
                    session, url, depth, base_url, timeout_ms, deep_form_extraction,
                ):
                    link_key = node_id_from_url(link_url)
                    if link_key not in self._visited and link_key not in self._queued:
                        self._queued.add(link_key)
                        queue.append((link_url, depth + 1))

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Crawl complete: %d pages, %d edges in %.1fs",
            len(self._nodes), len(self._edges), duration_ms / 1000,
        )
        return CrawlResult(
            nodes=self._nodes,
            edges=self._edges,
            screenshots=self._screenshots,
            duration_ms=round(duration_ms, 1),
        )

    async def _crawl_page(
        self,
        session: BrowserSession,
        url: str,
        depth: int,
        base_url: str,
        timeout_ms: int,
        deep_form_extraction: bool,
    ) -> list[str]:
        """Visit one page; returns the link URLs found on it."""
        node_id = node_id_from_url(url)
        if node_id in self._node_ids:
            return []
        logger.debug("Crawling %s (depth %d)", url, depth)
        page = await session.new_page()
        try:
            visit_start = time.time()
            status = await page.navigate(url, wait_until="domcontentloaded", timeout_ms=timeout_ms)
            await self._wait_for_stability(page, timeout_ms)
            response_time_ms = round((time.time() - visit_start) * 1000, 1)

            route = extract_route(url, base_url)
            elements = await extract_elements(page, route)
            forms = await analyze_forms(page, route, deep=deep_form_extraction)
            now = time.strftime("%Y-%m-%dT%H:%M:%SZ")
            node = AppNode(
                id=node_id,
                type="route",
                url=url,
                route=route,
                name=await self._page_name(page, elements),
                elements=elements,
                forms=forms,
                metadata=NodeMetadata(
                    first_seen=now,
                    last_seen=now,
                    visit_count=1,
                    response_time_ms=response_time_ms,
                    status_code=status,
                ),
            )
            self._nodes.append(node)
            self._node_ids.add(node.id)

            links = await extract_links(page, base_url, route)
            for link_url, trigger in links:
                to_id = node_id_from_url(link_url)
                if to_id == node.id:
                    continue
                edge = AppEdge(from_id=node.id, to_id=to_id, type="navigate", trigger=trigger)
                if edge.key not in self._edge_keys:
                    self._edge_keys.add(edge.key)
                    self._edges.append(edge)

            await self._capture_screenshot(page, node.id, url)
            logger.info(
                "Crawled %s: %d elements, %d forms, %d links",
                route, len(elements), len(forms), len(links),
            )
            return [link_url for link_url, _ in links]

        except Exception as e:
            logger.warning("Failed to crawl %s: %s", url, e)
            return []
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Closing page for %s failed: %s", url, e)

    async def _wait_for_stability(self, page: PageDriver, timeout_ms: int) -> None:
        if self.wait_until == "domcontentloaded":
            return
        try:
            await page.wait_for_load_state(self.wait_until, timeout_ms=min(timeout_ms, 10000))
        except Exception:
            logger.debug("Stability wait (%s) timed out, extracting anyway", self.wait_until)

    @staticmethod
    async def _page_name(page: PageDriver, elements: list[ElementDescriptor]) -> str:
        for el in elements:
            if el.role == "heading" and el.text:
                return el.text
        try:
            title = await page.title()
        except Exception:
            title = ""
        return title or "Untitled Page"

    async def _capture_screenshot(self, page: PageDriver, node_id: str, url: str) -> None:
        if self.screenshots_dir is None or node_id in self._screenshots:
            return
        path = self.screenshots_dir / f"{hash_string(url)}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(str(path))
            self._screenshots[node_id] = str(path)
        except Exception as e:
            logger.debug("Screenshot for %s failed: %s", url, e)
