"""Tests for the coverage-driven generation orchestrator."""

from typing import Optional

import pytest

from qamap.generator.base import GenerationOptions, TestGenerator
from qamap.generator.orchestrator import (
    GENERATOR_REGISTRY,
    MAX_ITERATIONS,
    GenerationOrchestrator,
    OrchestratorOptions,
    resolve_coverage_target,
)
from qamap.models.config import GenerationConfig
from qamap.models.coverage import CoverageGoals
from qamap.models.graph import AppGraph
from qamap.models.test_plan import TestCase, TestStep

from conftest import make_graph


class EndlessGenerator(TestGenerator):
    """Always yields a brand-new single-step test, so flows never rise."""

    kind = "endless"
    dimension = "flows"
    repeatable = True
    calls = 0

    def generate(self, graph: AppGraph, options: Optional[GenerationOptions] = None) -> list[TestCase]:
        EndlessGenerator.calls += 1
        test_id = f"endless-{EndlessGenerator.calls}"
        return [TestCase(id=test_id, name=test_id, steps=[TestStep(id=f"{test_id}-s", action_type="navigate", value="/")])]


class OnceGenerator(EndlessGenerator):
    kind = "once"
    repeatable = False


@pytest.fixture(autouse=True)
def reset_calls():
    EndlessGenerator.calls = 0


class TestResolveCoverageTarget:
    """Tests for per-dimension goal resolution."""

    def test_override_then_config_then_default(self):
        config = GenerationConfig(coverage_targets=CoverageGoals(routes=50, forms=10))
        goals = resolve_coverage_target(config, CoverageGoals(routes=75))
        assert goals.routes == 75
        assert goals.forms == 10
        assert goals.elements == 70
        assert goals.flows == 3


class TestGenerationOrchestrator:
    """Tests for GenerationOrchestrator.run and generate_plan."""

    def test_default_run_produces_plan_with_coverage(self):
        plan = GenerationOrchestrator().run(make_graph())
        assert plan.test_count > 0
        assert plan.coverage is not None
        assert plan.coverage.routes.percentage == 100
        assert plan.config.seed == 42
        assert plan.base_url == "https://app.example.com"

    def test_test_ids_unique(self):
        plan = GenerationOrchestrator().run(make_graph(), GenerationConfig(
            scenario_types=["smoke", "form", "journey", "crud", "a11y"],
        ))
        ids = [t.id for t in plan.all_tests()]
        assert len(ids) == len(set(ids))

    def test_unreachable_target_terminates(self):
        options = OrchestratorOptions(coverage_target=CoverageGoals(flows=1000))
        plan = GenerationOrchestrator().run(make_graph(), options=options)
        assert plan.coverage.flows < 1000
        # Repeat iterations only yield duplicates, so they add no suites
        iterations = {s.name.split("(iter ")[1] for s in plan.suites}
        assert iterations == {"0)"}

    def test_iteration_bound(self):
        registry = {"endless": EndlessGenerator}
        options = OrchestratorOptions(scenario_types=["endless"], coverage_target=CoverageGoals(flows=1))
        plan = GenerationOrchestrator(registry=registry).run(make_graph(), options=options)
        assert EndlessGenerator.calls == MAX_ITERATIONS
        assert len(plan.suites) == MAX_ITERATIONS

    def test_non_repeatable_runs_once(self):
        registry = {"once": OnceGenerator}
        options = OrchestratorOptions(scenario_types=["once"], coverage_target=CoverageGoals(flows=1))
        GenerationOrchestrator(registry=registry).run(make_graph(), options=options)
        assert EndlessGenerator.calls == 1

    def test_max_tests_cap(self):
        plan = GenerationOrchestrator().run(make_graph(), options=OrchestratorOptions(max_tests=3))
        assert plan.test_count == 3

    def test_met_dimension_skips_generator(self):
        # Smoke alone covers every route, so a routes-only goal never invokes forms
        config = GenerationConfig(scenario_types=["smoke", "form"])
        goals = CoverageGoals(routes=100, elements=0, forms=0, assertions=0, flows=0)
        plan = GenerationOrchestrator().run(make_graph(), config, OrchestratorOptions(coverage_target=goals))
        assert [s.generator for s in plan.suites] == ["smoke"]

    def test_seed_override(self):
        plan = GenerationOrchestrator().run(make_graph(), options=OrchestratorOptions(seed=7))
        assert plan.config.seed == 7

    def test_deterministic(self):
        first = GenerationOrchestrator().run(make_graph(), options=OrchestratorOptions(seed=7))
        second = GenerationOrchestrator().run(make_graph(), options=OrchestratorOptions(seed=7))
        assert [t.id for t in first.all_tests()] == [t.id for t in second.all_tests()]
        assert [s.id for s in first.suites] == [s.id for s in second.suites]

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown generator kind"):
            GenerationOrchestrator(registry={}).run(make_graph(), options=OrchestratorOptions(scenario_types=["smoke"]))

    def test_generate_plan_runs_each_kind_once(self):
        plan = GenerationOrchestrator().generate_plan(make_graph(), ["smoke", "crud"])
        assert [s.generator for s in plan.suites] == ["smoke", "crud"]
        assert plan.coverage is not None

    def test_registry_has_all_kinds(self):
        assert set(GENERATOR_REGISTRY) == {"smoke", "form", "journey", "crud", "a11y"}
