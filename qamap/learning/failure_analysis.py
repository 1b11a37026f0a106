"""Failure classification and clustering for triage."""

from __future__ import annotations

import logging
from typing import Literal

from qamap.models.knowledge import FailureCluster

from .knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

ErrorType = Literal[
    "timeout", "selector", "navigation", "detached", "overlay", "auth", "network", "assertion", "unknown",
]

# First match wins, so order matters
ERROR_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("timeout", ("timeout", "timed out")),
    ("selector", ("selector", "not found", "no element")),
    ("navigation", ("navigation", "navigating")),
    ("detached", ("detached", "stale element")),
    ("overlay", ("overlay", "obscured", "covered")),
    ("auth", ("auth", "unauthorized", "403", "401")),
    ("network", ("network", "net::", "failed to fetch")),
    ("assertion", ("expect", "assert")),
]

CLUSTER_FETCH_LIMIT = 50

SUGGESTED_FIXES = {
    "timeout": "Increase timeout or add explicit wait for element/network idle. Check if page is slow to load.",
    "selector": (
        "Selector may have changed. Enable auto-healing or update selector. "
        "Consider using data-testid or stable attributes."
    ),
    "navigation": "Add wait for navigation to complete (networkidle/load). Check if navigation triggers are stable.",
    "detached": "Element detached from DOM during action. Add retry logic or wait for DOM to stabilize.",
    "overlay": "Element obscured by overlay/modal. Close overlay first or scroll element into view.",
    "auth": "Session expired or auth required. Refresh session, re-login, or check auth strategy.",
    "network": "Network request failed. Check API availability, add retry logic, or mock network responses.",
    "assertion": "Assertion failed. Verify expected value is correct or update test data.",
    "unknown": "Unknown error. Review error message and test flow.",
}


def classify_error(message: str) -> ErrorType:
    msg = (message or "").lower()
    for error_type, needles in ERROR_RULES:
        if any(needle in msg for needle in needles):
            return error_type
    return "unknown"


def suggest_fix(error_type: str) -> str:
    return SUGGESTED_FIXES.get(error_type, SUGGESTED_FIXES["unknown"])


def cluster_failures(kb: KnowledgeBase) -> list[FailureCluster]:
    """Unresolved failures grouped by type, largest cluster first."""
    clusters = []
    for error_type in [t for t, _ in ERROR_RULES] + ["unknown"]:
        failures = kb.get_failures_by_type(error_type, CLUSTER_FETCH_LIMIT)
        if failures:
            clusters.append(FailureCluster(
                error_type=error_type,
                count=len(failures),
                suggested_fix=suggest_fix(error_type),
                failures=failures,
            ))
    clusters.sort(key=lambda c: c.count, reverse=True)
    logger.debug("Clustered failures into %d groups", len(clusters))
    return clusters
