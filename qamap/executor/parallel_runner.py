"""Parallel suite execution over a bounded pool of asyncio workers."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from pathlib import Path
from typing import Optional

from qamap.driver.factory import SessionFactory
from qamap.learning.knowledge_base import KnowledgeBase
from qamap.models.config import AuthConfig
from qamap.models.run_result import ArtifactManifest, RunResult, SuiteResult, Summary
from qamap.models.test_plan import TestPlan, TestSuite

from .adapter import ExecutionAdapter, ExecutionOptions

logger = logging.getLogger(__name__)


class ParallelRunner:
    """Workers pull suites from a shared queue; each has its own adapter and session.

    A suite whose run raises is logged and left out of the result. Results
    are assembled only after every worker has drained the queue.
    """

    def __init__(
        self,
        options: ExecutionOptions,
        kb: Optional[KnowledgeBase] = None,
        factory: Optional[SessionFactory] = None,
        auth: Optional[AuthConfig] = None,
    ):
        self.options = options
        self.kb = kb
        self.factory = factory
        self.auth = auth

    def _adapter(self, worker_id: int) -> ExecutionAdapter:
        worker_options = self.options.model_copy(update={
            "artifacts_dir": str(Path(self.options.artifacts_dir) / f"worker-{worker_id}"),
        })
        return ExecutionAdapter(worker_options, kb=self.kb, factory=self.factory, auth=self.auth)

    async def execute(self, plan: TestPlan, workers: int) -> RunResult:
        worker_count = max(1, min(workers, len(plan.suites)))
        logger.info("Running %d suites with %d parallel workers", len(plan.suites), worker_count)
        start = time.time()

        queue: deque[TestSuite] = deque(plan.suites)
        lock = asyncio.Lock()
        results: list[SuiteResult] = []
        adapters = [self._adapter(i) for i in range(worker_count)]

        async def next_suite() -> Optional[TestSuite]:
            async with lock:
                return queue.popleft() if queue else None

        async def worker(worker_id: int) -> None:
            adapter = adapters[worker_id]
            session = None
            try:
                while (suite := await next_suite()) is not None:
                    logger.info("[Worker %d] Executing suite: %s", worker_id, suite.name)
                    try:
                        if session is None:
                            session = await adapter.open_session()
                        results.append(await adapter.run_suite(suite, session))
                        logger.info("[Worker %d] Suite complete: %s", worker_id, suite.name)
                    except Exception as e:
                        logger.error("[Worker %d] Suite failed: %s - %s", worker_id, suite.name, e)
            finally:
                if session is not None:
                    await session.close()

        if plan.suites:
            await asyncio.gather(*(worker(i) for i in range(worker_count)))

        summary = Summary.from_suites(results)
        logger.info(
            "Parallel run complete: %d/%d passed (%d%%)",
            summary.passed + summary.flaky, summary.total, summary.pass_rate,
        )
        return RunResult(
            run_id=f"parallel-{uuid.uuid4().hex[:8]}",
            timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            config=self.options.run_config(parallel=True, workers=worker_count),
            suites=results,
            summary=summary,
            artifacts=ArtifactManifest(
                screenshots=[s for adapter in adapters for s in adapter.screenshots],
                worker_dirs=[str(adapter.artifacts_dir) for adapter in adapters],
            ),
            duration_ms=round((time.time() - start) * 1000, 1),
        )
