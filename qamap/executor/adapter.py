"""Execution adapter: replays test cases against a page driver.

Recovery is two-level. The outer loop retries a whole test (reload, then
replay every step and assertion) up to ``retries`` extra times. Inside one
attempt, an interaction on a crawled element that fails is handed to
selector healing before the attempt is given up.
"""

from __future__ import annotations

import logging
import time
import traceback
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from qamap.auth.auth_strategies import authenticate
from qamap.driver.base import BrowserSession, PageDriver
from qamap.driver.factory import SessionFactory, session_factory
from qamap.learning.failure_analysis import classify_error, suggest_fix
from qamap.learning.knowledge_base import KnowledgeBase
from qamap.learning.selector_healing import attempt_selector_healing
from qamap.models.config import AuthConfig
from qamap.models.run_result import (
    ArtifactManifest,
    ErrorDetails,
    HealingRecord,
    RunConfig,
    RunResult,
    StepResult,
    SuiteResult,
    Summary,
    TestResult,
)
from qamap.models.test_plan import Assertion, TestCase, TestPlan, TestStep, TestSuite
from qamap.url_utils import resolve_url

from .targets import ResolvedTarget, resolve_target

logger = logging.getLogger(__name__)

INTERACTIONS = ("click", "fill", "select", "check", "hover")
LOAD_STATES = ("networkidle", "load", "domcontentloaded")
ASSERTION_TIMEOUT_MS = 5000
HEAL_ATTEMPT_TIMEOUT_MS = 2000
HIDDEN_CHECK_TIMEOUT_MS = 500
SETTLE_TIMEOUT_MS = 5000
DEFAULT_WAIT_MS = 1000


class AssertionFailure(AssertionError):
    """An assertion evaluated against the page did not hold."""


class ExecutionOptions(BaseModel):
    runner: str = "playwright"
    browser: str = "chromium"
    headless: bool = True
    base_url: str = ""
    timeout_ms: int = 30000
    retries: int = 2
    screenshot_on_fail: bool = True
    auto_heal: bool = True
    artifacts_dir: str = ".qamap/artifacts"
    remote_url: Optional[str] = None

    def run_config(self, parallel: bool = False, workers: int = 1) -> RunConfig:
        return RunConfig(
            runner=self.runner, parallel=parallel, workers=workers, retries=self.retries,
            timeout_ms=self.timeout_ms, browser=self.browser, headless=self.headless,
            base_url=self.base_url,
        )


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class _Attempt:
    """Per-attempt bookkeeping; discarded when the attempt is retried."""

    def __init__(self):
        self.steps: list[StepResult] = []
        self.healing: list[HealingRecord] = []
        self.failed_step: Optional[StepResult] = None
        self.urls: list[str] = []  # page URL after each completed step


class ExecutionAdapter:
    """Runs a TestPlan's suites sequentially in one browsing session."""

    def __init__(
        self,
        options: ExecutionOptions,
        kb: Optional[KnowledgeBase] = None,
        factory: Optional[SessionFactory] = None,
        auth: Optional[AuthConfig] = None,
    ):
        self.options = options
        self.kb = kb
        self.auth = auth
        self.session_factory = factory or session_factory(
            options.runner, options.browser, options.headless, options.remote_url,
        )
        self.artifacts_dir = Path(options.artifacts_dir)
        self.screenshots: list[str] = []

    async def execute(self, plan: TestPlan) -> RunResult:
        run_id = f"run-{uuid.uuid4().hex[:8]}"
        start = time.time()
        logger.info("Starting %s run %s (%d tests)", self.options.runner, run_id, plan.test_count)

        suites = []
        session = await self.open_session()
        try:
            for suite in plan.suites:
                try:
                    suites.append(await self.run_suite(suite, session))
                except Exception as e:
                    logger.error("Suite failed: %s - %s", suite.name, e)
        finally:
            await session.close()

        result = RunResult(
            run_id=run_id,
            timestamp=_now(),
            config=self.options.run_config(),
            suites=suites,
            summary=Summary.from_suites(suites),
            artifacts=ArtifactManifest(screenshots=list(self.screenshots)),
            duration_ms=round((time.time() - start) * 1000, 1),
        )
        logger.info(
            "Run complete: %d/%d passed (%d%%), %d flaky",
            result.summary.passed + result.summary.flaky, result.summary.total,
            result.summary.pass_rate, result.summary.flaky,
        )
        return result

    async def open_session(self) -> BrowserSession:
        """New browsing session, authenticated when auth is configured."""
        session = await self.session_factory()
        if self.auth is not None:
            try:
                await authenticate(session, self.auth, self.options.base_url)
            except Exception:
                await session.close()
                raise
        return session

    async def run_suite(self, suite: TestSuite, session: BrowserSession) -> SuiteResult:
        logger.info("Suite: %s (%d tests)", suite.name, len(suite.tests))
        start = time.time()
        results = []
        for test in suite.tests:
            page = await session.new_page()
            try:
                results.append(await self.run_test(test, page))
            finally:
                await page.close()
        return SuiteResult.from_tests(suite.id, suite.name, results, (time.time() - start) * 1000)

    async def run_test(self, test: TestCase, page: PageDriver) -> TestResult:
        started_at = _now()
        start = time.time()
        logger.info("Running: %s", test.name)

        error: Optional[Exception] = None
        for number in range(self.options.retries + 1):
            attempt = _Attempt()
            try:
                for step in test.steps:
                    await self._run_step(step, page, test.id, attempt)
                for assertion in test.assertions:
                    if assertion.assertion_type != "url_contains":
                        await self.check_assertion(assertion, page)
                self.check_url_trail(
                    [a.expected_value or "" for a in test.assertions if a.assertion_type == "url_contains"],
                    attempt.urls + [page.url],
                )
                error = None
                break
            except Exception as e:
                error = e
                if number < self.options.retries:
                    logger.warning("Test failed (attempt %d): %s. Retrying...", number + 1, e)
                    await self._reload(page)

        if error is None:
            status = "flaky" if number > 0 else "pass"
        else:
            status = "fail"
        result = TestResult(
            test_id=test.id,
            test_name=test.name,
            status=status,
            retries=number,
            started_at=started_at,
            healing=attempt.healing,
            steps=attempt.steps,
        )

        if error is not None:
            await self._record_failure(test, page, result, error, attempt)
        if self.kb is not None:
            try:
                self.kb.record_test_run(test.id, passed=status == "pass")
            except SQLAlchemyError as e:
                self._disable_learning(e)

        result.ended_at = _now()
        result.duration_ms = round((time.time() - start) * 1000, 1)
        logger.info("[%s] %s (%.0fms)", status.upper(), test.name, result.duration_ms)
        return result

    def _disable_learning(self, error: Exception) -> None:
        logger.warning("Knowledge base write failed: %s. Learning disabled for this run.", error)
        self.kb = None

    async def _record_failure(
        self, test: TestCase, page: PageDriver, result: TestResult, error: Exception, attempt: _Attempt,
    ) -> None:
        message = str(error) or type(error).__name__
        error_type = classify_error(message)
        result.classification = error_type
        result.suggestion = suggest_fix(error_type)
        result.error = ErrorDetails(
            message=message,
            stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        )
        if self.options.screenshot_on_fail:
            path = await self._screenshot(page, f"{test.id}-fail.png")
            if path:
                result.error.screenshot = path
                result.artifacts.append(path)
        if self.kb is not None:
            failed = attempt.failed_step
            try:
                self.kb.record_failure(
                    test_id=test.id,
                    error_type=error_type,
                    error_message=message,
                    step_id=failed.step_id if failed else None,
                    selector=failed.selector if failed else None,
                    suggested_fix=result.suggestion,
                )
            except SQLAlchemyError as e:
                self._disable_learning(e)

    # --- Steps ---

    async def _run_step(self, step: TestStep, page: PageDriver, test_id: str, attempt: _Attempt) -> None:
        target = resolve_target(step.target)
        timeout = step.options.timeout_ms or self.options.timeout_ms
        started = time.time()
        record = StepResult(
            step_id=step.id, action_type=step.action_type,
            selector=target.selector if target else None,
        )
        attempt.steps.append(record)
        try:
            match step.action_type:
                case "navigate":
                    url = self._absolute(step.value or "/")
                    await page.navigate(url, wait_until="domcontentloaded", timeout_ms=timeout)
                    if step.options.wait_for in LOAD_STATES:
                        await self._settle(page, step.options.wait_for)
                case "wait":
                    await self._wait(step, page, target, timeout)
                case "screenshot":
                    await self._screenshot(page, f"{step.id}.png")
                case action if action in INTERACTIONS:
                    if target is None:
                        raise ValueError(f"{action} step {step.id} has no target")
                    record.selector = await self._interact(page, step, target, timeout, test_id, attempt)
                case _:
                    logger.warning("Unknown step action: %s", step.action_type)
            attempt.urls.append(page.url)
        except Exception as e:
            record.status = "fail"
            record.error = str(e)
            attempt.failed_step = record
            raise
        finally:
            record.duration_ms = round((time.time() - started) * 1000, 1)

    async def _interact(
        self, page: PageDriver, step: TestStep, target: ResolvedTarget,
        timeout: int, test_id: str, attempt: _Attempt,
    ) -> str:
        """Perform an interaction; on failure try to heal a crawled element."""
        try:
            await self._perform(page, step.action_type, target.selector, step.value, timeout)
            return target.selector
        except Exception as error:
            if not target.healable or self.kb is None or not self.options.auto_heal:
                raise

            async def try_selector(selector: str) -> bool:
                try:
                    await self._perform(page, step.action_type, selector, step.value, HEAL_ATTEMPT_TIMEOUT_MS)
                    return True
                except Exception as selector_error:
                    logger.debug("Healing candidate %s failed: %s", selector, selector_error)
                    return False

            try:
                healed = await attempt_selector_healing(target.element, self.kb, try_selector, test_id=test_id)
            except SQLAlchemyError as e:
                self._disable_learning(e)
                raise error
            if not healed.success:
                raise
            attempt.healing.append(HealingRecord(
                step_id=step.id,
                original_selector=target.selector,
                healed_selector=healed.selector,
                attempts=healed.attempts,
            ))
            return healed.selector

    @staticmethod
    async def _perform(page: PageDriver, action: str, selector: str, value: Optional[str], timeout: int) -> None:
        match action:
            case "click":
                await page.click(selector, timeout_ms=timeout)
            case "fill":
                await page.fill(selector, value or "", timeout_ms=timeout)
            case "select":
                await page.select_option(selector, value or "", timeout_ms=timeout)
            case "check":
                await page.check(selector, timeout_ms=timeout)
            case "hover":
                await page.hover(selector, timeout_ms=timeout)

    async def _wait(self, step: TestStep, page: PageDriver, target: Optional[ResolvedTarget], timeout: int) -> None:
        if step.options.wait_for in LOAD_STATES:
            await self._settle(page, step.options.wait_for)
        elif target is not None:
            if not await page.locate_by_selector(target.selector, timeout_ms=timeout):
                raise TimeoutError(f"Timeout {timeout}ms waiting for selector {target.selector}")
        else:
            await page.wait(int(step.value) if step.value else DEFAULT_WAIT_MS)

    @staticmethod
    async def _settle(page: PageDriver, state: str) -> None:
        try:
            await page.wait_for_load_state(state, timeout_ms=SETTLE_TIMEOUT_MS)
        except Exception:
            logger.debug("Wait for %s timed out, continuing", state)

    async def _reload(self, page: PageDriver) -> None:
        try:
            await page.reload(timeout_ms=self.options.timeout_ms)
        except Exception as e:
            logger.debug("Reload before retry failed: %s", e)

    async def _screenshot(self, page: PageDriver, name: str) -> Optional[str]:
        path = self.artifacts_dir / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(str(path))
        except Exception as e:
            logger.debug("Screenshot %s failed: %s", path, e)
            return None
        self.screenshots.append(str(path))
        return str(path)

    def _absolute(self, url: str) -> str:
        if url.startswith(("http://", "https://")) or not self.options.base_url:
            return url
        return resolve_url(url, self.options.base_url.rstrip("/") + "/")

    # --- Assertions ---

    @staticmethod
    def check_url_trail(expected: list[str], trail: list[str]) -> None:
        """URL assertions must match the visited URLs in order; the last one the current URL."""
        if not expected or not trail:
            return
        *earlier, last = expected
        position = 0
        for value in earlier:
            while position < len(trail) and value not in trail[position]:
                position += 1
            if position == len(trail):
                raise AssertionFailure(f'Assertion failed: no visited URL contains "{value}" in order')
        if last not in trail[-1]:
            raise AssertionFailure(f'Assertion failed: expected URL "{trail[-1]}" to contain "{last}"')

    async def check_assertion(self, assertion: Assertion, page: PageDriver) -> None:
        """Raise AssertionFailure when the assertion does not hold."""
        target = resolve_target(assertion.target)
        selector = target.selector if target else None
        expected = assertion.expected_value or ""

        match assertion.assertion_type:
            case "url_contains":
                if expected not in page.url:
                    raise AssertionFailure(f'Assertion failed: expected URL "{page.url}" to contain "{expected}"')
            case "url_equals":
                wanted = self._absolute(expected)
                if page.url.rstrip("/") != wanted.rstrip("/"):
                    raise AssertionFailure(f'Assertion failed: expected URL "{wanted}", got "{page.url}"')
            case "element_visible":
                if not await page.is_visible(self._need(selector, assertion), timeout_ms=ASSERTION_TIMEOUT_MS):
                    raise AssertionFailure(f"Assertion failed: expected {selector} to be visible")
            case "element_hidden":
                present = await page.count(self._need(selector, assertion)) > 0
                if present and await page.is_visible(selector, timeout_ms=HIDDEN_CHECK_TIMEOUT_MS):
                    raise AssertionFailure(f"Assertion failed: expected {selector} to be hidden")
            case "element_exists":
                if await page.count(self._need(selector, assertion)) == 0:
                    raise AssertionFailure(f"Assertion failed: expected {selector} to exist")
            case "element_count":
                actual = await page.count(self._need(selector, assertion))
                if actual != int(expected or 0):
                    raise AssertionFailure(f"Assertion failed: expected {expected} matches for {selector}, got {actual}")
            case "text_contains":
                text = await page.text_content(selector or "body", timeout_ms=ASSERTION_TIMEOUT_MS)
                if expected not in text:
                    raise AssertionFailure(f'Assertion failed: expected text to contain "{expected}"')
            case "text_equals":
                text = (await page.text_content(self._need(selector, assertion), timeout_ms=ASSERTION_TIMEOUT_MS)).strip()
                if text != expected:
                    raise AssertionFailure(f'Assertion failed: expected text "{expected}", got "{text}"')
            case "value_equals":
                value = await page.input_value(self._need(selector, assertion), timeout_ms=ASSERTION_TIMEOUT_MS)
                if value != expected:
                    raise AssertionFailure(f'Assertion failed: expected value "{expected}", got "{value}"')
            case "attribute_equals":
                if not assertion.attribute:
                    raise ValueError("attribute_equals assertion requires an attribute name")
                value = await page.get_attribute(
                    self._need(selector, assertion), assertion.attribute, timeout_ms=ASSERTION_TIMEOUT_MS,
                )
                if value != expected:
                    raise AssertionFailure(
                        f'Assertion failed: expected {assertion.attribute}="{expected}", got "{value}"'
                    )
            case _:
                logger.warning("Unknown assertion type: %s", assertion.assertion_type)

    @staticmethod
    def _need(selector: Optional[str], assertion: Assertion) -> str:
        if not selector:
            raise ValueError(f"{assertion.assertion_type} assertion requires a target")
        return selector
