"""CRUD generator: detects create/read/update/delete screens by keywords."""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel

from qamap.models.graph import AppGraph, AppNode, ElementDescriptor, FormField
from qamap.models.test_plan import TestCase
from qamap.utils.hashing import stable_id

from .base import (
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    GenerationOptions,
    TestGenerator,
    element_step,
    navigate_step,
    raw_step,
    url_assertion,
    visible_assertion,
    wait_step,
)

logger = logging.getLogger(__name__)

CREATE_KEYWORDS = ("create", "add", "new")
UPDATE_KEYWORDS = ("edit", "update")
DELETE_KEYWORDS = ("delete", "remove")
LIST_ROLES = ("list", "table")

_CRUD_VALUES = {
    "email": "test@example.com",
    "password": "Test-Password-1!",
    "number": "42",
    "tel": "+15555550100",
    "url": "https://example.com",
    "date": "2026-01-01",
    "checkbox": "true",
}


class CrudScreen(BaseModel):
    node: AppNode
    entity: str
    create_button: Optional[ElementDescriptor] = None
    edit_button: Optional[ElementDescriptor] = None
    delete_button: Optional[ElementDescriptor] = None
    has_create: bool = False
    has_list: bool = False


def _find_button(node: AppNode, keywords: tuple[str, ...]) -> Optional[ElementDescriptor]:
    for element in node.elements:
        if element.type != "button":
            continue
        text = (element.text or element.name or "").lower()
        if any(k in text for k in keywords):
            return element
    return None


def entity_name(route: str, node_name: str) -> str:
    """First route segment, dashes to spaces; else the first word of the page name."""
    match = re.search(r"/([\w-]+)", route)
    if match:
        return match.group(1).replace("-", " ")
    return (node_name.split(" ")[0] if node_name else "") or "Item"


def detect_crud_screens(graph: AppGraph) -> list[CrudScreen]:
    screens = []
    for node in graph.route_nodes():
        route = node.route or ""
        create_button = _find_button(node, CREATE_KEYWORDS)
        edit_button = _find_button(node, UPDATE_KEYWORDS)
        delete_button = _find_button(node, DELETE_KEYWORDS)
        has_create = create_button is not None or bool(node.forms)
        path = route.split("?")[0].rstrip("/")
        has_list = (
            any(e.role in LIST_ROLES for e in node.elements)
            or "list" in path
            or path.endswith("s")
        )
        if has_create or edit_button or delete_button or has_list:
            screens.append(CrudScreen(
                node=node,
                entity=entity_name(route, node.name),
                create_button=create_button,
                edit_button=edit_button,
                delete_button=delete_button,
                has_create=has_create,
                has_list=has_list,
            ))
    return screens


class CrudGenerator(TestGenerator):
    kind = "crud"
    dimension = "elements"
    category = "regression"

    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]:
        seed = (options or GenerationOptions()).seed
        tests: list[TestCase] = []
        for screen in detect_crud_screens(graph):
            if screen.has_create:
                tests.append(self._create_test(screen, seed))
            if screen.has_list:
                tests.append(self._read_test(screen, seed))
            if screen.edit_button is not None:
                tests.append(self._button_test(screen, seed, "update", screen.edit_button))
            if screen.delete_button is not None:
                tests.append(self._button_test(screen, seed, "delete", screen.delete_button))
        logger.info("CRUD generator produced %d tests", len(tests))
        return tests

    @staticmethod
    def _value(field: FormField) -> str:
        if field.type in ("select", "radio"):
            return field.label or field.name
        return _CRUD_VALUES.get(field.type, "Test Item")

    def _create_test(self, screen: CrudScreen, seed: int) -> TestCase:
        node = screen.node
        test_id = stable_id("crud", seed, node.id, "create")
        steps = [navigate_step(test_id, 0, node)]
        if screen.create_button is not None:
            label = screen.create_button.text or screen.create_button.name
            steps.append(element_step(test_id, 1, "click", screen.create_button, description=f'Click "{label}"'))
        if node.forms:
            form = node.forms[0]
            for field in form.fields:
                action = "select" if field.type == "select" else "fill"
                steps.append(raw_step(
                    test_id, len(steps), action, field.selector.primary,
                    value=self._value(field), description=f'Fill "{field.name}"',
                ))
            if form.submit_button is not None:
                steps.append(element_step(test_id, len(steps), "click", form.submit_button, description="Submit form"))
        return TestCase(
            id=test_id,
            name=f"[CRUD] Create {screen.entity}",
            description=f"Test create operation for {screen.entity}",
            steps=steps,
            tags=["crud", "create", node.route or "root"],
            priority=PRIORITY_HIGH,
        )

    def _read_test(self, screen: CrudScreen, seed: int) -> TestCase:
        node = screen.node
        test_id = stable_id("crud", seed, node.id, "read")
        return TestCase(
            id=test_id,
            name=f"[CRUD] Read/List {screen.entity}",
            description=f"Test list/read operation for {screen.entity}",
            steps=[navigate_step(test_id, 0, node), wait_step(test_id, 1)],
            assertions=[url_assertion(node.route or "/")],
            tags=["crud", "read", node.route or "root"],
            priority=PRIORITY_MEDIUM,
        )

    def _button_test(self, screen: CrudScreen, seed: int, operation: str, button: ElementDescriptor) -> TestCase:
        node = screen.node
        test_id = stable_id("crud", seed, node.id, operation)
        label = button.text or button.name
        return TestCase(
            id=test_id,
            name=f"[CRUD] {operation.capitalize()} {screen.entity}",
            description=f"Test {operation} operation for {screen.entity}",
            steps=[
                navigate_step(test_id, 0, node),
                element_step(test_id, 1, "click", button, description=f'Click "{label}"'),
            ],
            assertions=[visible_assertion("body", f"Page still renders after {operation}")],
            tags=["crud", operation, node.route or "root"],
            priority=PRIORITY_MEDIUM,
        )
