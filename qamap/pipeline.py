"""Pipeline: coordinates the map, generate and execute stages and their files."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Optional

from qamap.crawler.crawler import Crawler
from qamap.driver.factory import session_factory
from qamap.executor.adapter import ExecutionAdapter, ExecutionOptions
from qamap.executor.parallel_runner import ParallelRunner
from qamap.generator.orchestrator import GenerationOrchestrator, OrchestratorOptions
from qamap.graph.builder import AppGraphBuilder
from qamap.learning.failure_analysis import cluster_failures
from qamap.learning.knowledge_base import KnowledgeBase, open_knowledge_base
from qamap.models.config import QAMapConfig
from qamap.models.graph import AppGraph
from qamap.models.graph_migrations import migrate_app_graph
from qamap.models.knowledge import FailureCluster, FlakyTest
from qamap.models.run_result import RunResult
from qamap.models.test_plan import TestPlan

logger = logging.getLogger(__name__)

DEFAULT_PLAN_NAME = "latest"


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)


class Pipeline:
    """Map -> generate -> execute, with every artifact persisted under ``work_dir``."""

    def __init__(self, config: QAMapConfig):
        self.config = config
        self.work_dir = Path(config.work_dir)
        self.work_dir.mkdir(parents=True, exist_ok=True)

    @property
    def graph_path(self) -> Path:
        return self.work_dir / "graph" / "latest.json"

    def plan_path(self, name: str = DEFAULT_PLAN_NAME) -> Path:
        return self.work_dir / "test-plans" / f"{name}.json"

    def report_path(self, run_id: str) -> Path:
        return self.work_dir / "reports" / f"{run_id}.json"

    # --- Stages ---

    def run_full_pipeline(self, parallel: Optional[bool] = None) -> RunResult:
        """Execute the complete map -> generate -> execute pipeline."""
        return asyncio.run(self._run_pipeline(parallel))

    async def _run_pipeline(self, parallel: Optional[bool]) -> RunResult:
        start = time.time()
        logger.info("=== Starting full pipeline for %s ===", self.config.base_url)

        logger.info("--- Stage 1: Map ---")
        stage_start = time.time()
        graph = await self._map()
        logger.info("--- Stage 1 complete: %d nodes, %d edges in %.1fs ---",
                    len(graph.nodes), len(graph.edges), time.time() - stage_start)

        logger.info("--- Stage 2: Generate ---")
        stage_start = time.time()
        plan = self._generate(graph)
        logger.info("--- Stage 2 complete: %d test cases in %.1fs ---",
                    plan.test_count, time.time() - stage_start)

        logger.info("--- Stage 3: Execute (%d tests) ---", plan.test_count)
        stage_start = time.time()
        result = await self._execute(plan, parallel)
        logger.info("--- Stage 3 complete: %d passed, %d failed in %.1fs ---",
                    result.summary.passed, result.summary.failed, time.time() - stage_start)

        logger.info("=== Pipeline complete in %.1fs ===", time.time() - start)
        return result

    def run_map(self, merge: bool = False) -> AppGraph:
        """Crawl the app and persist the graph (merged with the previous one if asked)."""
        return asyncio.run(self._map(merge))

    async def _map(self, merge: bool = False) -> AppGraph:
        mapping = self.config.mapping
        execution = self.config.execution
        crawler = Crawler(
            session_factory(
                execution.runner, execution.browser, mapping.headless, execution.selenium_remote_url,
            ),
            screenshots_dir=self.work_dir / "screenshots" if mapping.capture_screenshots else None,
            wait_until=mapping.wait_until,
        )
        result = await crawler.crawl(
            self.config.base_url,
            max_depth=mapping.max_depth,
            max_pages=mapping.max_pages,
            timeout_ms=mapping.timeout_ms,
            auth=self.config.auth,
            deep_form_extraction=mapping.deep_form_extraction,
        )
        builder = AppGraphBuilder()
        graph = builder.build(
            self.config.app_name, self.config.base_url, result.nodes, result.edges,
            crawl_duration_ms=result.duration_ms, screenshots=result.screenshots,
        )
        if merge and self.graph_path.exists():
            graph = builder.merge([self.load_graph(), graph])
        self.save_graph(graph)
        return graph

    def run_generate(
        self,
        kinds: Optional[list[str]] = None,
        seed: Optional[int] = None,
        max_tests: Optional[int] = None,
        use_coverage: bool = True,
        name: str = DEFAULT_PLAN_NAME,
    ) -> TestPlan:
        """Generate a plan from the saved graph."""
        return self._generate(self.load_graph(), kinds, seed, max_tests, use_coverage, name)

    def _generate(
        self,
        graph: AppGraph,
        kinds: Optional[list[str]] = None,
        seed: Optional[int] = None,
        max_tests: Optional[int] = None,
        use_coverage: bool = True,
        name: str = DEFAULT_PLAN_NAME,
    ) -> TestPlan:
        generation = self.config.generation
        orchestrator = GenerationOrchestrator()
        if use_coverage:
            plan = orchestrator.run(graph, generation, OrchestratorOptions(
                seed=seed, scenario_types=kinds, max_tests=max_tests,
            ))
        else:
            config = generation.model_copy(update={"max_tests": max_tests}) if max_tests else generation
            plan = orchestrator.generate_plan(graph, kinds or generation.scenario_types, config, seed)
        self.save_plan(plan, name)
        return plan

    def run_execute(
        self, plan: Optional[TestPlan] = None, parallel: Optional[bool] = None,
        workers: Optional[int] = None,
    ) -> RunResult:
        """Execute a plan (the saved one by default) and persist the run result."""
        return asyncio.run(self._execute(plan or self.load_plan(), parallel, workers))

    async def _execute(
        self, plan: TestPlan, parallel: Optional[bool] = None, workers: Optional[int] = None,
    ) -> RunResult:
        execution = self.config.execution
        options = ExecutionOptions(
            runner=execution.runner,
            browser=execution.browser,
            headless=execution.headless,
            base_url=plan.base_url or self.config.base_url,
            timeout_ms=execution.timeout_ms,
            retries=execution.retries,
            screenshot_on_fail=execution.screenshot_on_fail,
            auto_heal=self.config.learning.auto_heal,
            artifacts_dir=str(self.work_dir / "artifacts"),
            remote_url=execution.selenium_remote_url,
        )
        kb = self.open_kb()
        try:
            if parallel if parallel is not None else execution.parallel:
                runner = ParallelRunner(options, kb=kb, auth=self.config.auth)
                result = await runner.execute(plan, workers or execution.workers)
            else:
                result = await ExecutionAdapter(options, kb=kb, auth=self.config.auth).execute(plan)
        finally:
            if kb is not None:
                kb.close()
        self.save_run_result(result)
        return result

    # --- Learning ---

    def open_kb(self) -> Optional[KnowledgeBase]:
        if not self.config.learning.enabled:
            return None
        return open_knowledge_base(self.config.learning.kb_path)

    def failure_clusters(self) -> list[FailureCluster]:
        kb = self.open_kb()
        if kb is None:
            return []
        with kb:
            return cluster_failures(kb)

    def flaky_tests(self, threshold: Optional[float] = None) -> list[FlakyTest]:
        kb = self.open_kb()
        if kb is None:
            return []
        with kb:
            return kb.get_flaky_tests(threshold if threshold is not None else self.config.learning.flaky_threshold)

    # --- Persistence ---

    def save_graph(self, graph: AppGraph) -> None:
        logger.debug("Saving graph to %s", self.graph_path)
        _write_json(self.graph_path, graph.model_dump())

    def load_graph(self) -> AppGraph:
        if not self.graph_path.exists():
            raise FileNotFoundError(f"No graph found at {self.graph_path}. Run 'qamap map' first.")
        with open(self.graph_path) as f:
            return migrate_app_graph(json.load(f))

    def save_plan(self, plan: TestPlan, name: str = DEFAULT_PLAN_NAME) -> None:
        path = self.plan_path(name)
        logger.debug("Saving test plan to %s", path)
        _write_json(path, plan.model_dump())

    def load_plan(self, path: Optional[str | Path] = None) -> TestPlan:
        path = Path(path) if path else self.plan_path()
        if not path.exists():
            raise FileNotFoundError(f"No test plan found at {path}. Run 'qamap generate' first.")
        with open(path) as f:
            return TestPlan.model_validate(json.load(f))

    def save_run_result(self, result: RunResult) -> None:
        path = self.report_path(result.run_id)
        logger.debug("Saving run result to %s", path)
        _write_json(path, result.model_dump())
