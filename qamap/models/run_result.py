"""Test result data structures produced by the execution adapter."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ErrorDetails(BaseModel):
    message: str
    stack: Optional[str] = None
    screenshot: Optional[str] = None


class HealingRecord(BaseModel):
    step_id: str
    original_selector: str
    healed_selector: str
    attempts: int = 0


class StepResult(BaseModel):
    """Result of executing a single test step."""
    step_id: str
    action_type: str
    status: str = "pass"  # pass, fail
    duration_ms: float = 0.0
    selector: Optional[str] = None
    error: Optional[str] = None


class TestResult(BaseModel):
    test_id: str
    test_name: str
    status: str  # pass, fail, skip, flaky
    duration_ms: float = 0.0
    retries: int = 0
    started_at: str = ""
    ended_at: str = ""
    error: Optional[ErrorDetails] = None
    classification: Optional[str] = None  # ErrorType of the final failure
    suggestion: Optional[str] = None
    healing: list[HealingRecord] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)
    steps: list[StepResult] = Field(default_factory=list)


class SuiteResult(BaseModel):
    suite_id: str
    suite_name: str
    tests: list[TestResult] = Field(default_factory=list)
    duration_ms: float = 0.0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0

    @classmethod
    def from_tests(
        cls, suite_id: str, suite_name: str, tests: list[TestResult], duration_ms: float,
    ) -> "SuiteResult":
        return cls(
            suite_id=suite_id,
            suite_name=suite_name,
            tests=tests,
            duration_ms=round(duration_ms, 1),
            passed=sum(1 for t in tests if t.status == "pass"),
            failed=sum(1 for t in tests if t.status == "fail"),
            skipped=sum(1 for t in tests if t.status == "skip"),
            flaky=sum(1 for t in tests if t.status == "flaky"),
        )


class RunConfig(BaseModel):
    runner: str = "playwright"  # playwright, selenium
    parallel: bool = False
    workers: int = 1
    retries: int = 2
    timeout_ms: int = 30000
    browser: str = "chromium"
    headless: bool = True
    base_url: str = ""


class Summary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0
    pass_rate: int = 0

    @classmethod
    def from_suites(cls, suites: list[SuiteResult]) -> "Summary":
        passed = sum(s.passed for s in suites)
        failed = sum(s.failed for s in suites)
        skipped = sum(s.skipped for s in suites)
        flaky = sum(s.flaky for s in suites)
        total = passed + failed + skipped + flaky
        pass_rate = round((passed + flaky) / total * 100) if total else 0
        return cls(
            total=total, passed=passed, failed=failed,
            skipped=skipped, flaky=flaky, pass_rate=pass_rate,
        )


class ArtifactManifest(BaseModel):
    screenshots: list[str] = Field(default_factory=list)
    worker_dirs: list[str] = Field(default_factory=list)


class RunResult(BaseModel):
    run_id: str
    timestamp: str
    config: RunConfig = Field(default_factory=RunConfig)
    suites: list[SuiteResult] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    artifacts: ArtifactManifest = Field(default_factory=ArtifactManifest)
    duration_ms: float = 0.0
