"""Coverage-driven generation loop.

Generators are invoked only while the coverage dimension they move is below
its goal. The loop ends when every requested goal is met, the test ceiling
is reached, an iteration adds nothing new, or ``MAX_ITERATIONS`` is hit.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from pydantic import BaseModel

from qamap.coverage.engine import CoverageEngine
from qamap.models.config import GenerationConfig
from qamap.models.coverage import CoverageGoals, CoverageSnapshot
from qamap.models.graph import AppGraph
from qamap.models.test_plan import TestCase, TestPlan, TestPlanConfig, TestSuite
from qamap.utils.hashing import stable_id

from .a11y import A11yGenerator
from .base import GenerationOptions, TestGenerator
from .crud import CrudGenerator
from .form import FormGenerator
from .journey import JourneyGenerator
from .smoke import SmokeGenerator

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10

GENERATOR_REGISTRY: dict[str, type[TestGenerator]] = {
    "smoke": SmokeGenerator,
    "form": FormGenerator,
    "journey": JourneyGenerator,
    "crud": CrudGenerator,
    "a11y": A11yGenerator,
}


class OrchestratorOptions(BaseModel):
    """Per-call overrides; anything unset falls back to the generation config."""
    seed: Optional[int] = None
    scenario_types: Optional[list[str]] = None
    coverage_target: Optional[CoverageGoals] = None
    max_tests: Optional[int] = None


def resolve_coverage_target(config: GenerationConfig, override: Optional[CoverageGoals]) -> CoverageGoals:
    """Per dimension: override, then config, then the built-in default."""
    defaults = CoverageGoals.defaults().model_dump()
    configured = config.coverage_targets.model_dump()
    explicit = override.model_dump() if override is not None else {}
    merged = {}
    for dimension, default in defaults.items():
        for source in (explicit, configured):
            if source.get(dimension) is not None:
                merged[dimension] = source[dimension]
                break
        else:
            merged[dimension] = default
    return CoverageGoals(**merged)


class GenerationOrchestrator:
    """Runs registered generators against a graph until coverage goals are met."""

    def __init__(
        self,
        engine: Optional[CoverageEngine] = None,
        registry: Optional[dict[str, type[TestGenerator]]] = None,
    ):
        self.engine = engine or CoverageEngine()
        self.registry = registry if registry is not None else GENERATOR_REGISTRY

    def _generator(self, kind: str) -> TestGenerator:
        if kind not in self.registry:
            raise ValueError(f"Unknown generator kind: {kind}")
        return self.registry[kind]()

    @staticmethod
    def _options(config: GenerationConfig, seed: int) -> GenerationOptions:
        return GenerationOptions(
            seed=seed,
            max_steps=config.max_journey_steps,
            max_journeys=config.max_journeys,
            include_invalid=config.include_invalid,
            include_boundary=config.include_boundary,
        )

    @staticmethod
    def _new_plan(graph: AppGraph, seed: int, goals: CoverageGoals) -> TestPlan:
        return TestPlan(
            app_name=graph.app_name,
            base_url=graph.base_url,
            timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            config=TestPlanConfig(seed=seed, coverage_target=goals),
        )

    @staticmethod
    def _append_suite(
        plan: TestPlan, generator: TestGenerator, tests: list[TestCase],
        seen_ids: set[str], limit: int, seed: int, iteration: int,
    ) -> int:
        """Append unseen tests (up to ``limit``) as one suite; returns how many were added."""
        fresh = []
        for test in tests:
            if len(fresh) >= limit:
                break
            if test.id in seen_ids:
                continue
            seen_ids.add(test.id)
            fresh.append(test)
        if not fresh:
            return 0
        plan.suites.append(TestSuite(
            id=stable_id("suite", seed, generator.kind, iteration),
            name=f"{generator.kind.capitalize()} Tests (iter {iteration})",
            category=generator.category,
            generator=generator.kind,
            tests=fresh,
            tags=[generator.kind],
        ))
        return len(fresh)

    def run(
        self,
        graph: AppGraph,
        config: Optional[GenerationConfig] = None,
        options: Optional[OrchestratorOptions] = None,
    ) -> TestPlan:
        config = config or GenerationConfig()
        options = options or OrchestratorOptions()
        seed = options.seed if options.seed is not None else config.seed
        kinds = options.scenario_types or config.scenario_types
        max_tests = options.max_tests if options.max_tests is not None else config.max_tests
        goals = resolve_coverage_target(config, options.coverage_target)
        targets = goals.requested()
        gen_options = self._options(config, seed)

        generators = [self._generator(kind) for kind in kinds]
        plan = self._new_plan(graph, seed, goals)
        seen_ids: set[str] = set()
        invoked: set[str] = set()
        snapshot = self.engine.compute(graph, plan)

        iteration = 0
        while iteration < MAX_ITERATIONS:
            if self.engine.meets_target(snapshot, goals):
                logger.info("Coverage target met after %d iteration(s)", iteration)
                break
            if plan.test_count >= max_tests:
                logger.warning("Reached max tests (%d); stopping", max_tests)
                break

            added = 0
            for generator in generators:
                target = targets.get(generator.dimension)
                if target is None or snapshot.value(generator.dimension) >= target:
                    continue
                if not generator.repeatable and generator.kind in invoked:
                    continue
                remaining = max_tests - plan.test_count
                if remaining <= 0:
                    break
                invoked.add(generator.kind)
                tests = generator.generate(graph, gen_options)
                added += self._append_suite(plan, generator, tests, seen_ids, remaining, seed, iteration)

            snapshot = self.engine.compute(graph, plan)
            iteration += 1
            logger.debug("Iteration %d added %d tests", iteration, added)
            if added == 0:
                logger.info("No generator added new tests; stopping after %d iteration(s)", iteration)
                break

        return self._finish(plan, snapshot)

    def generate_plan(
        self,
        graph: AppGraph,
        kinds: list[str],
        config: Optional[GenerationConfig] = None,
        seed: Optional[int] = None,
    ) -> TestPlan:
        """Run each requested generator exactly once, with no coverage gate."""
        config = config or GenerationConfig()
        seed = seed if seed is not None else config.seed
        gen_options = self._options(config, seed)
        plan = self._new_plan(graph, seed, config.coverage_targets)
        seen_ids: set[str] = set()
        for kind in kinds:
            generator = self._generator(kind)
            remaining = config.max_tests - plan.test_count
            if remaining <= 0:
                break
            self._append_suite(plan, generator, generator.generate(graph, gen_options), seen_ids, remaining, seed, 0)
        return self._finish(plan, self.engine.compute(graph, plan))

    @staticmethod
    def _finish(plan: TestPlan, snapshot: CoverageSnapshot) -> TestPlan:
        plan.timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        plan.coverage = snapshot
        logger.info(
            "Coverage: routes %d%%, elements %d%%, forms %d%%, assertions %d, flows %d (%d tests)",
            snapshot.routes.percentage, snapshot.elements.percentage, snapshot.forms.percentage,
            snapshot.assertions, snapshot.flows, plan.test_count,
        )
        return plan
