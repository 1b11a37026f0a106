"""Coverage engine: maps generated test steps back onto graph entities."""

from __future__ import annotations

import logging
from typing import Optional, Union

from qamap.models.coverage import CoverageGoals, CoverageSnapshot, DimensionCoverage
from qamap.models.graph import AppGraph, AppNode
from qamap.models.test_plan import Assertion, DescriptorTarget, TestCase, TestPlan, TestStep

logger = logging.getLogger(__name__)

INTERACTION_ACTIONS = ("click", "fill", "select", "check", "hover")


def _percent(covered: int, total: int) -> int:
    if total == 0:
        return 0
    return int(covered * 100 / total + 0.5)


def _dimension(covered: int, total: int) -> DimensionCoverage:
    return DimensionCoverage(total=total, covered=covered, percentage=_percent(covered, total))


def _target_identifiers(item: Union[TestStep, Assertion]) -> set[str]:
    """Every identifier a step or assertion target can be matched by."""
    target = item.target
    if target is None:
        return set()
    ids = {target.key, target.selector}
    if isinstance(target, DescriptorTarget) and target.element.name:
        ids.add(target.element.name)
    return ids


class CoverageEngine:
    """Computes a fresh CoverageSnapshot from a graph and a set of tests."""

    def compute(self, graph: AppGraph, plan: Union[TestPlan, list[TestCase]]) -> CoverageSnapshot:
        tests = plan.all_tests() if isinstance(plan, TestPlan) else list(plan)
        route_nodes = graph.route_nodes()
        base_url = graph.base_url.rstrip("/")

        covered_nodes: set[str] = set()
        covered_elements: set[str] = set()
        covered_forms: set[str] = set()
        assertion_count = 0
        flow_count = 0

        for test in tests:
            if len(test.steps) >= 2:
                flow_count += 1

            for step in test.steps:
                if step.action_type == "navigate" and step.value:
                    node_id = self._match_node(step.value, base_url, route_nodes)
                    if node_id:
                        covered_nodes.add(node_id)
                elif step.action_type in INTERACTION_ACTIONS and step.target is not None:
                    identifiers = _target_identifiers(step)
                    covered_elements.add(step.target.key)
                    if step.action_type == "fill":
                        covered_forms.update(self._forms_with_field(route_nodes, identifiers))

            for assertion in test.assertions:
                assertion_count += 1
                if isinstance(assertion.target, DescriptorTarget):
                    covered_elements.add(assertion.target.key)

        # Looser second pass: any field identifier seen marks its form covered
        for node in route_nodes:
            for form in node.forms:
                if form.id in covered_forms:
                    continue
                if any(
                    f.selector.primary in covered_elements or f.name in covered_elements
                    for f in form.fields
                ):
                    covered_forms.add(form.id)

        all_elements = [e for node in route_nodes for e in node.elements]
        elements_covered = {
            e.id for e in all_elements
            if e.id in covered_elements or e.selector.primary in covered_elements
        }
        all_forms = {f.id for node in route_nodes for f in node.forms}
        route_ids = {n.id for n in route_nodes}

        snapshot = CoverageSnapshot(
            routes=_dimension(len(covered_nodes & route_ids), len(route_ids)),
            elements=_dimension(len(elements_covered), len(all_elements)),
            forms=_dimension(len(covered_forms & all_forms), len(all_forms)),
            assertions=assertion_count,
            flows=flow_count,
            covered_node_ids=sorted(covered_nodes & route_ids),
            covered_element_ids=sorted(elements_covered),
            covered_form_ids=sorted(covered_forms & all_forms),
        )
        logger.debug(
            "Coverage: routes %d%%, elements %d%%, forms %d%%, %d assertions, %d flows",
            snapshot.routes.percentage, snapshot.elements.percentage,
            snapshot.forms.percentage, snapshot.assertions, snapshot.flows,
        )
        return snapshot

    @staticmethod
    def meets_target(snapshot: CoverageSnapshot, goals: CoverageGoals) -> bool:
        """False on the first requested dimension that falls short."""
        for dimension, target in goals.requested().items():
            if snapshot.value(dimension) < target:
                return False
        return True

    @staticmethod
    def _match_node(url: str, base_url: str, nodes: list[AppNode]) -> Optional[str]:
        """Map a navigate URL to a node id: exact route first, then URL prefix."""
        path = url[len(base_url):] if base_url and url.startswith(base_url) else url
        path = path.split("?")[0].split("#")[0] or "/"
        if len(path) > 1:
            path = path.rstrip("/")

        for node in nodes:
            route = (node.route or "").split("?")[0]
            if len(route) > 1:
                route = route.rstrip("/")
            if route == path or (not route and path == "/"):
                return node.id
        for node in nodes:
            if node.url and node.url == url:
                return node.id
        prefixed = [n for n in nodes if n.url and url.startswith(n.url)]
        if prefixed:
            return max(prefixed, key=lambda n: len(n.url or "")).id
        return None

    @staticmethod
    def _forms_with_field(nodes: list[AppNode], identifiers: set[str]) -> set[str]:
        found = set()
        for node in nodes:
            for form in node.forms:
                if any(f.selector.primary in identifiers or f.name in identifiers for f in form.fields):
                    found.add(form.id)
        return found
