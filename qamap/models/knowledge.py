"""Knowledge base record models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ElementSignature(BaseModel):
    id: str
    element_id: str
    role: str = ""
    text: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    primary_selector: str
    alternative_selectors: list[str] = Field(default_factory=list)
    stability: float = 0.5
    last_seen: str = ""
    success_count: int = 0
    fail_count: int = 0


class SelectorAttempt(BaseModel):
    id: int
    signature_id: str
    selector: str
    success: bool
    timestamp: str
    test_id: Optional[str] = None


class TestFailure(BaseModel):
    id: int
    test_id: str
    step_id: Optional[str] = None
    error_type: str
    error_message: str
    selector: Optional[str] = None
    timestamp: str
    resolved: bool = False
    suggested_fix: Optional[str] = None


class FlakyTest(BaseModel):
    test_id: str
    total_runs: int = 0
    failures: int = 0
    flakiness_score: float = 0.0
    last_run: str = ""


class FailureCluster(BaseModel):
    error_type: str
    count: int
    suggested_fix: str
    failures: list[TestFailure] = Field(default_factory=list)
