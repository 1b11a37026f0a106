"""DOM element extraction: catalogs interactive and semantic elements on a page."""

from __future__ import annotations

import logging
import re
from typing import Optional

from qamap.driver.base import ROLE_VOCABULARY, LocatedElement, PageDriver
from qamap.models.graph import ElementDescriptor, SelectorStrategy
from qamap.utils.hashing import stable_id

logger = logging.getLogger(__name__)

MAX_PER_ROLE = 20

_ROLE_TO_TYPE = {
    "button": "button",
    "link": "link",
    "textbox": "input",
    "heading": "heading",
    "img": "image",
}

_TEXT_TEMPLATES = {
    "button": 'button:has-text("{text}")',
    "link": 'a:has-text("{text}")',
    "heading": 'h1:has-text("{text}"), h2:has-text("{text}"), h3:has-text("{text}")',
}


def _clean_text(text: Optional[str], limit: int = 80) -> str:
    return re.sub(r"\s+", " ", text or "").strip()[:limit]


def quote_value(value: str) -> str:
    """Escape a value for use inside a double-quoted selector string."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def derive_selector(role: str, text: str, attributes: dict[str, str]) -> SelectorStrategy:
    """Apply the selector-derivation policy.

    Priority: explicit test id, then aria-label, then role+text heuristics,
    then a generic role selector. Stability falls in the same order.
    """
    candidates: list[tuple[str, str, float]] = []
    if attributes.get("data-testid"):
        candidates.append((f'[data-testid="{quote_value(attributes["data-testid"])}"]', "data-testid", 0.95))
    if attributes.get("aria-label"):
        candidates.append((f'[aria-label="{quote_value(attributes["aria-label"])}"]', "label", 0.8))
    if text and role in _TEXT_TEMPLATES:
        candidates.append((_TEXT_TEMPLATES[role].format(text=quote_value(text)), "role", 0.6))
    candidates.append((f'[role="{role}"]', "css", 0.3))

    primary, kind, stability = candidates[0]
    fallbacks = [sel for sel, _, _ in candidates[1:-1]]
    if attributes.get("id"):
        fallbacks.append(f'#{attributes["id"]}')
    if attributes.get("name"):
        fallbacks.append(f'[name="{quote_value(attributes["name"])}"]')
    return SelectorStrategy(
        primary=primary,
        fallbacks=[f for f in dict.fromkeys(fallbacks) if f != primary],
        stability=stability,
        type=kind,
    )


def build_descriptor(located: LocatedElement, route: str) -> ElementDescriptor:
    text = _clean_text(located.text)
    attrs = located.attributes
    selector = derive_selector(located.role, text, attrs)
    return ElementDescriptor(
        id=stable_id("el", route, located.role, selector.primary, text),
        role=located.role,
        name=text or attrs.get("aria-label") or attrs.get("name") or attrs.get("alt") or None,
        type=_ROLE_TO_TYPE.get(located.role, "other"),
        selector=selector,
        attributes=attrs,
        text=text or None,
        placeholder=attrs.get("placeholder"),
        confidence=0.9 if selector.type == "data-testid" else 0.8,
    )


async def extract_elements(page: PageDriver, route: str = "/") -> list[ElementDescriptor]:
    """Extract elements for each role in the fixed role vocabulary."""
    elements: list[ElementDescriptor] = []
    seen_ids: set[str] = set()
    for role in ROLE_VOCABULARY:
        try:
            located = await page.locate_by_role(role, limit=MAX_PER_ROLE)
        except Exception as e:
            logger.error("Element extraction for role %s failed: %s", role, e)
            continue
        for index, item in enumerate(located):
            descriptor = build_descriptor(item, route)
            if descriptor.id in seen_ids:
                descriptor.id = stable_id("el", route, role, descriptor.selector.primary, index)
            seen_ids.add(descriptor.id)
            elements.append(descriptor)
    logger.debug("Extracted %d elements", len(elements))
    return elements
