"""Selector healing: retry a failed element through ranked alternative selectors."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from qamap.crawler.element_extractor import quote_value
from qamap.models.graph import ElementDescriptor
from qamap.models.knowledge import ElementSignature

from .knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

TEXT_SELECTOR_MAX_CHARS = 30
_NAME_TAGS = {"button": "button", "select": "select", "link": "a"}

SelectorCheck = Callable[[str], Awaitable[bool]]


class HealingResult:
    def __init__(self, success: bool, attempts: int, selector: Optional[str] = None):
        self.success = success
        self.attempts = attempts
        self.selector = selector

    def __repr__(self) -> str:
        return f"HealingResult(success={self.success}, attempts={self.attempts}, selector={self.selector!r})"


def generate_alternative_selectors(element: ElementDescriptor) -> list[str]:
    """Candidate selectors derivable from the element's own metadata."""
    attrs = element.attributes
    candidates = []
    if attrs.get("aria-label"):
        candidates.append(f'[aria-label="{quote_value(attrs["aria-label"])}"]')
    if element.role and element.name:
        candidates.append(f'[role="{quote_value(element.role)}"][name="{quote_value(element.name)}"]')
    if element.text and element.type in ("button", "link"):
        tag = "a" if element.type == "link" else "button"
        candidates.append(f'{tag}:has-text("{quote_value(element.text.strip()[:TEXT_SELECTOR_MAX_CHARS])}")')
    if attrs.get("data-testid"):
        candidates.append(f'[data-testid="{quote_value(attrs["data-testid"])}"]')
    if attrs.get("data-test"):
        candidates.append(f'[data-test="{quote_value(attrs["data-test"])}"]')
    if attrs.get("id"):
        candidates.append(f"#{attrs['id']}")
    if element.placeholder:
        candidates.append(f'[placeholder="{quote_value(element.placeholder)}"]')
    if attrs.get("name"):
        tag = _NAME_TAGS.get(element.type, "input")
        candidates.append(f'{tag}[name="{quote_value(attrs["name"])}"]')

    seen = {element.selector.primary}
    unique = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            unique.append(candidate)
    return unique


def _selector_score(selector: str) -> int:
    if "data-test" in selector:
        return 100
    if selector.startswith("#"):
        return 90
    if "aria-label" in selector:
        return 80
    if "[role=" in selector:
        return 70
    if ":has-text" in selector:
        return 60
    return 40


def rank_alternative_selectors(selectors: list[str]) -> list[str]:
    """Most stable first; equal scores in lexicographic order."""
    return sorted(selectors, key=lambda s: (-_selector_score(s), s))


def _new_signature(element: ElementDescriptor, alternatives: list[str]) -> ElementSignature:
    return ElementSignature(
        id=element.id,
        element_id=element.id,
        role=element.role,
        text=element.text or "",
        attributes=element.attributes,
        primary_selector=element.selector.primary,
        alternative_selectors=alternatives,
        stability=element.selector.stability,
    )


async def attempt_selector_healing(
    element: ElementDescriptor,
    kb: KnowledgeBase,
    try_selector: SelectorCheck,
    test_id: Optional[str] = None,
) -> HealingResult:
    """Try each ranked alternative until ``try_selector`` accepts one.

    Stored alternatives for the element are reused when present; otherwise a
    fresh list is derived and saved as a new signature. Every candidate tried is logged
    to the knowledge base.
    """
    signature = kb.get_signature(element.id)
    if signature is not None:
        alternatives = [s for s in signature.alternative_selectors if s != element.selector.primary]
    else:
        alternatives = generate_alternative_selectors(element)
        kb.upsert_signature(_new_signature(element, alternatives))

    attempts = 0
    for selector in rank_alternative_selectors(alternatives):
        attempts += 1
        success = await try_selector(selector)
        kb.record_attempt(element.id, selector, success, test_id=test_id)
        if success:
            kb.increment_success(element.id)
            logger.info("Healed %s: %s -> %s", element.id, element.selector.primary, selector)
            return HealingResult(success=True, attempts=attempts, selector=selector)

    kb.increment_fail(element.id)
    logger.debug("Healing exhausted for %s after %d attempts", element.id, attempts)
    return HealingResult(success=False, attempts=attempts)
