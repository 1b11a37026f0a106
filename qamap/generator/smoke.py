"""Smoke generator: one quick check per route plus its primary button and forms."""

from __future__ import annotations

import logging
from typing import Optional

from qamap.models.graph import AppGraph, AppNode, ElementDescriptor
from qamap.models.test_plan import TestCase
from qamap.utils.hashing import stable_id

from .base import (
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    GenerationOptions,
    TestGenerator,
    element_step,
    navigate_step,
    url_assertion,
    visible_assertion,
    wait_step,
)

logger = logging.getLogger(__name__)

# Ordered; the first keyword that matches wins
PRIMARY_BUTTON_KEYWORDS = ("submit", "save", "continue", "login", "sign", "next", "confirm")


def find_primary_button(buttons: list[ElementDescriptor]) -> Optional[ElementDescriptor]:
    """Pick the button most likely to be the page's main action."""
    if not buttons:
        return None
    for keyword in PRIMARY_BUTTON_KEYWORDS:
        for button in buttons:
            text = (button.text or "").lower()
            name = (button.name or "").lower()
            if keyword in text or keyword in name:
                return button
    return buttons[0]


class SmokeGenerator(TestGenerator):
    kind = "smoke"
    dimension = "routes"
    category = "smoke"

    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]:
        tests: list[TestCase] = []
        for node in graph.route_nodes():
            tests.append(self._route_test(node))
            button = find_primary_button(node.elements_by_role("button"))
            if button is not None:
                tests.append(self._button_test(node, button))
            if node.forms:
                tests.append(self._form_test(node))
        logger.info("Smoke generator produced %d tests", len(tests))
        return tests

    def _route_test(self, node: AppNode) -> TestCase:
        test_id = stable_id("smoke", node.id, "route")
        headings = node.elements_by_role("heading")
        heading_target = headings[0] if headings else "h1, h2, h3"
        return TestCase(
            id=test_id,
            name=f"Page loads: {node.name or node.route}",
            description=f"Navigate to {node.route} and check it renders",
            steps=[navigate_step(test_id, 0, node), wait_step(test_id, 1)],
            assertions=[
                visible_assertion(heading_target, "Heading is visible"),
                url_assertion(node.route or "/"),
            ],
            tags=["smoke", "navigation"],
            priority=PRIORITY_CRITICAL,
        )

    def _button_test(self, node: AppNode, button: ElementDescriptor) -> TestCase:
        test_id = stable_id("smoke", node.id, "button", button.id)
        label = button.text or button.name or "button"
        return TestCase(
            id=test_id,
            name=f"Primary button clickable: {label} on {node.route}",
            steps=[
                navigate_step(test_id, 0, node),
                element_step(test_id, 1, "click", button, description=f"Click {label}"),
            ],
            assertions=[visible_assertion("body", "Page still renders after click")],
            tags=["smoke", "interaction"],
            priority=PRIORITY_HIGH,
        )

    def _form_test(self, node: AppNode) -> TestCase:
        test_id = stable_id("smoke", node.id, "form")
        return TestCase(
            id=test_id,
            name=f"Form visible on {node.route}",
            steps=[navigate_step(test_id, 0, node)],
            assertions=[
                visible_assertion(form.selector.primary, f"Form {form.selector.primary} is visible")
                for form in node.forms
            ],
            tags=["smoke", "form"],
            priority=PRIORITY_HIGH,
        )
