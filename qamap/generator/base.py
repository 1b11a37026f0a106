"""Shared generator interface and step/assertion builders."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from qamap.models.graph import AppGraph, AppNode, ElementDescriptor
from qamap.models.test_plan import Assertion, StepOptions, TestCase, TestStep
from qamap.utils.hashing import stable_id

# Priorities on the 1 (critical) to 4 (low) scale
PRIORITY_CRITICAL = 1
PRIORITY_HIGH = 2
PRIORITY_MEDIUM = 3
PRIORITY_LOW = 4


class GenerationOptions(BaseModel):
    seed: int = 42
    max_steps: int = 5
    max_journeys: int = 25
    include_invalid: bool = True
    include_boundary: bool = True


class TestGenerator(ABC):
    """A deterministic strategy turning a graph into test cases."""

    kind = "abstract"
    dimension = "routes"  # coverage dimension this generator primarily moves
    category = "regression"
    repeatable = False  # may the orchestrator invoke it more than once per run

    @abstractmethod
    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]: ...


def node_target_url(node: AppNode) -> str:
    return node.url or node.route or "/"


def navigate_step(test_id: str, index: int, node: AppNode) -> TestStep:
    return TestStep(
        id=stable_id("step", test_id, index),
        action_type="navigate",
        value=node_target_url(node),
        description=f"Navigate to {node.route or node.url}",
        options=StepOptions(wait_for="networkidle"),
    )


def wait_step(test_id: str, index: int, wait_for: str = "networkidle") -> TestStep:
    return TestStep(
        id=stable_id("step", test_id, index),
        action_type="wait",
        description=f"Wait for {wait_for}",
        options=StepOptions(wait_for=wait_for),
    )


def element_step(
    test_id: str, index: int, action_type: str, element: ElementDescriptor,
    value: Optional[str] = None, description: str = "",
) -> TestStep:
    return TestStep(
        id=stable_id("step", test_id, index),
        action_type=action_type,
        target=element,
        value=value,
        description=description or f"{action_type.capitalize()} {element.name or element.role}",
    )


def raw_step(
    test_id: str, index: int, action_type: str, selector: str,
    value: Optional[str] = None, description: str = "",
) -> TestStep:
    return TestStep(
        id=stable_id("step", test_id, index),
        action_type=action_type,
        target=selector,
        value=value,
        description=description or f"{action_type.capitalize()} {selector}",
    )


def url_assertion(route: str) -> Assertion:
    return Assertion(
        assertion_type="url_contains",
        expected_value=route,
        description=f"URL contains {route}",
    )


def visible_assertion(target, description: str) -> Assertion:
    return Assertion(assertion_type="element_visible", target=target, description=description)
