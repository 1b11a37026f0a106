"""Form generator: positive, empty, invalid and boundary tests per form.

Field values come from a seeded linear-congruential sequence, so the same
seed always yields the same values and the same test ids.
"""

from __future__ import annotations

import logging
from typing import Optional

from qamap.models.graph import AppGraph, AppNode, FormDescriptor, FormField
from qamap.models.test_plan import TestCase, TestStep
from qamap.utils.hashing import stable_id

from .base import (
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    GenerationOptions,
    TestGenerator,
    element_step,
    navigate_step,
    raw_step,
    visible_assertion,
)

logger = logging.getLogger(__name__)

DEFAULT_SEED = 42
DEFAULT_SUBMIT_SELECTOR = 'button[type="submit"]'
INVALID_EMAIL = "invalid-email-format"


class FormGenerator(TestGenerator):
    kind = "form"
    dimension = "forms"
    category = "regression"
    repeatable = True

    def __init__(self, seed: int = DEFAULT_SEED):
        self.seed = seed
        self._sequence = 0

    def next_number(self, low: int, high: int) -> int:
        """Deterministic integer in ``[low, high]``."""
        self._sequence += 1
        span = max(high - low + 1, 1)
        return low + ((self.seed * 9301 + self._sequence * 49297) % 233280) % span

    def value_for(self, field: FormField) -> str:
        """Type-keyed deterministic value for a field."""
        constraints = field.constraints
        match field.type:
            case "email":
                return f"user{self.next_number(10, 99)}@example.com"
            case "password":
                return f"Secure-{self.next_number(1000, 9999)}!"
            case "tel":
                return f"+90555{self.next_number(1000000, 9999999)}"
            case "number":
                low = int(constraints.min) if constraints.min is not None else 1
                high = int(constraints.max) if constraints.max is not None else max(low, 99)
                return str(self.next_number(low, max(low, high)))
            case "url":
                return "https://example.com/path"
            case "date":
                return "2026-02-15"
            case "select" | "radio":
                return field.label or field.name
            case "checkbox":
                return "true"
            case _:
                value = f"user-{self.next_number(1000, 9999)}"
                if constraints.min_length and len(value) < constraints.min_length:
                    value = value.ljust(int(constraints.min_length), "x")
                if constraints.max_length:
                    value = value[: int(constraints.max_length)]
                return value

    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]:
        options = options or GenerationOptions(seed=self.seed)
        self.seed = options.seed
        self._sequence = 0

        tests: list[TestCase] = []
        for node in graph.route_nodes():
            for form in node.forms:
                if not form.fields:
                    continue
                tests.append(self._positive_test(node, form))
                tests.append(self._empty_test(node, form))
                if options.include_invalid:
                    tests.extend(self._invalid_email_tests(node, form))
                if options.include_boundary:
                    tests.extend(self._boundary_tests(node, form))
        logger.info("Form generator produced %d tests (seed=%d)", len(tests), self.seed)
        return tests

    def _test_id(self, node: AppNode, form: FormDescriptor, key: str) -> str:
        return stable_id("test", self.seed, node.id, form.id, key)

    def _fill_step(self, test_id: str, index: int, field: FormField, value: str) -> TestStep:
        if field.type == "select":
            action = "select"
        elif field.type in ("checkbox", "radio"):
            action = "check"
        else:
            action = "fill"
        return raw_step(
            test_id, index, action, field.selector.primary, value=value,
            description=f"{action.capitalize()} {field.label or field.name}",
        )

    def _submit_step(self, test_id: str, index: int, form: FormDescriptor) -> TestStep:
        if form.submit_button is not None:
            return element_step(test_id, index, "click", form.submit_button, description="Submit form")
        return raw_step(test_id, index, "click", DEFAULT_SUBMIT_SELECTOR, description="Submit form")

    def _build(
        self, test_id: str, node: AppNode, form: FormDescriptor,
        values: list[tuple[FormField, str]], name: str, tags: list[str], priority: int,
        assertion_description: str,
    ) -> TestCase:
        steps = [navigate_step(test_id, 0, node)]
        for field, value in values:
            steps.append(self._fill_step(test_id, len(steps), field, value))
        steps.append(self._submit_step(test_id, len(steps), form))
        target = "body" if "positive" in tags else form.selector.primary
        return TestCase(
            id=test_id,
            name=name,
            steps=steps,
            assertions=[visible_assertion(target, assertion_description)],
            tags=tags,
            priority=priority,
        )

    def _positive_test(self, node: AppNode, form: FormDescriptor) -> TestCase:
        values = [(field, self.value_for(field)) for field in form.fields]
        return self._build(
            self._test_id(node, form, "positive"), node, form, values,
            name=f"Submit form with valid data on {node.route}",
            tags=["form", "positive"], priority=PRIORITY_HIGH,
            assertion_description="Page responds after valid submission",
        )

    def _empty_test(self, node: AppNode, form: FormDescriptor) -> TestCase:
        return self._build(
            self._test_id(node, form, "empty"), node, form, [],
            name=f"Submit empty form on {node.route}",
            tags=["form", "negative", "empty"], priority=PRIORITY_MEDIUM,
            assertion_description="Form is still shown after empty submission",
        )

    def _invalid_email_tests(self, node: AppNode, form: FormDescriptor) -> list[TestCase]:
        tests = []
        for target in (f for f in form.fields if f.type == "email"):
            values = [
                (field, INVALID_EMAIL if field is target else self.value_for(field))
                for field in form.fields
            ]
            tests.append(self._build(
                self._test_id(node, form, f"invalid-{target.name}"), node, form, values,
                name=f"Reject invalid email in {target.label or target.name} on {node.route}",
                tags=["form", "negative", "invalid"], priority=PRIORITY_MEDIUM,
                assertion_description="Form is still shown after invalid email",
            ))
        return tests

    def _boundary_tests(self, node: AppNode, form: FormDescriptor) -> list[TestCase]:
        tests = []
        for target in (f for f in form.fields if f.constraints.max_length):
            overflow = "x" * (int(target.constraints.max_length) + 1)
            values = [
                (field, overflow if field is target else self.value_for(field))
                for field in form.fields
            ]
            tests.append(self._build(
                self._test_id(node, form, f"boundary-{target.name}"), node, form, values,
                name=f"Max length + 1 in {target.label or target.name} on {node.route}",
                tags=["form", "edge", "boundary"], priority=PRIORITY_MEDIUM,
                assertion_description="Form handles over-long input",
            ))
        return tests
