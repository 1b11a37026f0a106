"""Accessibility generator: heading, label, alt-text and accessible-name checks.

The label, alt and name checks only navigate; their findings are carried by
priority and description so triage can sort on them without a hard failure.
"""

from __future__ import annotations

import logging
from typing import Optional

from qamap.models.graph import AppGraph, AppNode, ElementDescriptor
from qamap.models.test_plan import TestCase
from qamap.utils.hashing import stable_id

from .base import (
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    GenerationOptions,
    TestGenerator,
    navigate_step,
    url_assertion,
    visible_assertion,
)

logger = logging.getLogger(__name__)


def _missing_alt(image: ElementDescriptor) -> bool:
    return not (image.attributes.get("alt") or "").strip()


def _unnamed(element: ElementDescriptor) -> bool:
    return not (element.name or element.text or element.attributes.get("aria-label"))


class A11yGenerator(TestGenerator):
    kind = "a11y"
    dimension = "assertions"
    category = "a11y"

    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]:
        tests: list[TestCase] = []
        for node in graph.route_nodes():
            tests.append(self._heading_test(node))
            if node.forms:
                tests.append(self._form_label_test(node))
            images = node.elements_by_role("img")
            if images:
                tests.append(self._image_alt_test(node, images))
            interactives = [e for e in node.elements if e.type in ("button", "link")]
            if interactives:
                tests.append(self._interactive_name_test(node, interactives))
        logger.info("A11y generator produced %d tests", len(tests))
        return tests

    def _test(self, node: AppNode, check: str, **kwargs) -> TestCase:
        test_id = stable_id("a11y", node.id, check)
        tags = kwargs.pop("tags")
        return TestCase(
            id=test_id,
            steps=[navigate_step(test_id, 0, node)],
            tags=["a11y", *tags, node.route or "root"],
            **kwargs,
        )

    def _heading_test(self, node: AppNode) -> TestCase:
        assertions = [url_assertion(node.route or "/")]
        headings = node.elements_by_role("heading")
        if headings:
            assertions.append(visible_assertion(headings[0], "Page has a heading"))
        return self._test(
            node, "heading",
            name=f"[A11y] {node.name} - Heading structure",
            description=f"Verify {node.name} has a visible heading",
            assertions=assertions,
            tags=["heading"],
            priority=PRIORITY_MEDIUM if headings else PRIORITY_HIGH,
        )

    def _form_label_test(self, node: AppNode) -> TestCase:
        form = node.forms[0]
        unlabeled = [f for f in form.fields if not f.label and not f.placeholder]
        if any(f.required for f in unlabeled):
            priority = PRIORITY_HIGH
        elif unlabeled:
            priority = PRIORITY_MEDIUM
        else:
            priority = PRIORITY_LOW
        return self._test(
            node, "form-labels",
            name=f"[A11y] {node.name} - Form labels",
            description=(
                f"Verify form fields have accessible labels. "
                f"Found {len(unlabeled)} unlabeled fields."
            ),
            assertions=[visible_assertion(form.selector.primary, "Form is visible")],
            tags=["form", "labels"],
            priority=priority,
        )

    def _image_alt_test(self, node: AppNode, images: list[ElementDescriptor]) -> TestCase:
        missing = [img for img in images if _missing_alt(img)]
        return self._test(
            node, "image-alt",
            name=f"[A11y] {node.name} - Image alt text",
            description=(
                f"Verify images have alt text. "
                f"Found {len(images)} images, {len(missing)} missing alt."
            ),
            tags=["images"],
            priority=PRIORITY_HIGH if missing else PRIORITY_LOW,
        )

    def _interactive_name_test(self, node: AppNode, interactives: list[ElementDescriptor]) -> TestCase:
        unnamed = [e for e in interactives if _unnamed(e)]
        return self._test(
            node, "interactive-names",
            name=f"[A11y] {node.name} - Interactive element names",
            description=(
                f"Verify buttons/links have accessible names. "
                f"Found {len(interactives)} elements, {len(unnamed)} unnamed."
            ),
            tags=["interactive"],
            priority=PRIORITY_MEDIUM if unnamed else PRIORITY_LOW,
        )
