"""Journey generator: multi-step tests that follow paths through the edge graph."""

from __future__ import annotations

import logging
from typing import Optional

from qamap.models.graph import AppEdge, AppGraph, AppNode
from qamap.models.test_plan import TestCase
from qamap.utils.hashing import stable_id

from .base import (
    PRIORITY_HIGH,
    GenerationOptions,
    TestGenerator,
    element_step,
    navigate_step,
    url_assertion,
    wait_step,
)

logger = logging.getLogger(__name__)

FALLBACK_START_COUNT = 3


class _Walk:
    """State of one generate() call: the graph indexes plus what was emitted."""

    def __init__(self, graph: AppGraph, options: GenerationOptions):
        self.options = options
        self.nodes = graph.node_map()
        self.out_edges = graph.adjacency()
        self.seen_paths: set[str] = set()
        self.tests: list[TestCase] = []

    @property
    def done(self) -> bool:
        return len(self.tests) >= self.options.max_journeys

    def emit(self, path: list[str]) -> None:
        key = "->".join(path)
        if self.done or key in self.seen_paths:
            return
        self.seen_paths.add(key)
        self.tests.append(self._build(path, key))

    def walk(self, node_id: str, path: list[str], depth: int) -> None:
        if self.done:
            return
        current = path + [node_id]
        if "->".join(current) in self.seen_paths or node_id not in self.nodes:
            return
        edges = self.out_edges.get(node_id, [])

        if depth >= self.options.max_steps - 1 or not edges:
            if len(current) >= 2:
                self.emit(current)
            return

        for edge in edges:
            if self.done:
                return
            if edge.to_id not in self.nodes:
                continue
            if len(current) >= 2:
                self.emit(current + [edge.to_id])
            self.walk(edge.to_id, current, depth + 1)

    def _edge_between(self, from_id: str, to_id: str) -> Optional[AppEdge]:
        for edge in self.out_edges.get(from_id, []):
            if edge.to_id == to_id:
                return edge
        return None

    def _build(self, path: list[str], key: str) -> TestCase:
        test_id = stable_id("journey", self.options.seed, key)
        nodes = [self.nodes[node_id] for node_id in path]
        steps = [navigate_step(test_id, 0, nodes[0])]
        for prev, nxt in zip(nodes, nodes[1:]):
            edge = self._edge_between(prev.id, nxt.id)
            if edge is None:
                continue
            label = edge.trigger.text or edge.trigger.name or edge.trigger.role
            steps.append(element_step(
                test_id, len(steps), "click", edge.trigger,
                description=f"Click {label} to reach {nxt.route or nxt.url}",
            ))
            steps.append(wait_step(test_id, len(steps)))
        return TestCase(
            id=test_id,
            name="Journey: " + " -> ".join(n.route or n.name for n in nodes),
            description=f"Follow a {len(nodes)}-page path through the app",
            steps=steps,
            assertions=[url_assertion(n.route or "/") for n in nodes],
            tags=["journey", "flow"],
            priority=PRIORITY_HIGH,
        )


def start_nodes(graph: AppGraph) -> list[AppNode]:
    """The root route, or the first few route nodes when there is none."""
    routes = graph.route_nodes()
    roots = [n for n in routes if n.route in ("/", "", None)]
    return roots or routes[:FALLBACK_START_COUNT]


class JourneyGenerator(TestGenerator):
    kind = "journey"
    dimension = "flows"
    category = "regression"
    repeatable = True

    def __init__(self, max_steps: Optional[int] = None, max_journeys: Optional[int] = None):
        self.max_steps = max_steps
        self.max_journeys = max_journeys

    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]:
        options = (options or GenerationOptions()).model_copy()
        if self.max_steps is not None:
            options.max_steps = self.max_steps
        if self.max_journeys is not None:
            options.max_journeys = self.max_journeys
        if not graph.edges:
            return []

        walk = _Walk(graph, options)
        for node in start_nodes(graph):
            if walk.done:
                break
            walk.walk(node.id, [], 0)
        if not walk.done:
            for node in graph.route_nodes():
                if walk.done:
                    break
                walk.walk(node.id, [], 0)

        logger.info("Journey generator produced %d tests", len(walk.tests))
        return walk.tests
