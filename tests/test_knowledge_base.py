"""Tests for the SQLite knowledge base and failure analysis."""

import pytest
from sqlalchemy.exc import OperationalError

from qamap.learning.failure_analysis import SUGGESTED_FIXES, classify_error, cluster_failures, suggest_fix
from qamap.learning.knowledge_base import KnowledgeBase, open_knowledge_base
from qamap.models.knowledge import ElementSignature


@pytest.fixture
def kb(tmp_path):
    with KnowledgeBase(tmp_path / "kb" / "knowledge.db") as store:
        yield store


def _signature(**overrides) -> ElementSignature:
    data = {
        "id": "sig-1",
        "element_id": "btn-save",
        "role": "button",
        "text": "Save",
        "attributes": {"data-testid": "save"},
        "primary_selector": "#save",
        "alternative_selectors": ['[data-testid="save"]'],
    }
    data.update(overrides)
    return ElementSignature(**data)


# ============================================================================
# Lifecycle
# ============================================================================


class TestKnowledgeBaseLifecycle:
    """Tests for opening and closing the store."""

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "kb.db"
        with KnowledgeBase(path):
            pass
        assert path.exists()

    def test_session_requires_open(self, tmp_path):
        with pytest.raises(RuntimeError, match="not open"):
            KnowledgeBase(tmp_path / "kb.db").get_signature("x")

    def test_data_persists_across_reopen(self, tmp_path):
        path = tmp_path / "kb.db"
        with KnowledgeBase(path) as store:
            store.upsert_signature(_signature())
        with KnowledgeBase(path) as store:
            assert store.get_signature("sig-1").primary_selector == "#save"

    def test_open_failure_returns_none(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        assert open_knowledge_base(blocker / "kb.db") is None

    def test_failed_commit_rolls_back(self, kb, monkeypatch):
        real_commit = kb.session.commit
        calls = []

        def locked_once():
            if not calls:
                calls.append("locked")
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(kb.session, "commit", locked_once)

        with pytest.raises(OperationalError):
            kb.record_test_run("t1", passed=True)
        kb.record_test_run("t2", passed=True)

        assert kb.get_flaky_test("t1") is None
        assert kb.get_flaky_test("t2").total_runs == 1


# ============================================================================
# Signatures and Attempts
# ============================================================================


class TestSignatures:
    """Tests for element signatures and selector attempts."""

    def test_upsert_and_get(self, kb):
        kb.upsert_signature(_signature())
        stored = kb.get_signature("sig-1")
        assert stored.attributes == {"data-testid": "save"}
        assert stored.alternative_selectors == ['[data-testid="save"]']
        assert stored.last_seen

    def test_upsert_keeps_counters(self, kb):
        kb.upsert_signature(_signature())
        kb.increment_success("sig-1")
        kb.increment_success("sig-1")
        kb.increment_fail("sig-1")
        kb.upsert_signature(_signature(primary_selector="#save-v2", success_count=0))
        stored = kb.get_signature("sig-1")
        assert stored.primary_selector == "#save-v2"
        assert stored.success_count == 2
        assert stored.fail_count == 1

    def test_get_by_element_id_newest_first(self, kb):
        kb.upsert_signature(_signature(id="old", last_seen="2026-01-01T00:00:00Z"))
        kb.upsert_signature(_signature(id="new", last_seen="2026-02-01T00:00:00Z"))
        assert kb.get_signature_by_element_id("btn-save").id == "new"
        assert kb.get_signature_by_element_id("missing") is None

    def test_missing_signature(self, kb):
        assert kb.get_signature("nope") is None
        kb.increment_success("nope")

    def test_attempts_newest_first_and_limited(self, kb):
        kb.upsert_signature(_signature())
        for i in range(12):
            kb.record_attempt("sig-1", f"#sel-{i}", success=i % 2 == 0, test_id="t1")
        attempts = kb.get_recent_attempts("sig-1")
        assert len(attempts) == 10
        assert attempts[0].selector == "#sel-11"
        assert attempts[0].test_id == "t1"
        assert attempts[0].success is False


# ============================================================================
# Failures and Flakiness
# ============================================================================


class TestFailures:
    """Tests for failure records and clustering."""

    def test_record_and_query(self, kb):
        failure_id = kb.record_failure("t1", "timeout", "Timeout 30000ms", step_id="s1", selector="#a")
        failures = kb.get_failures_by_type("timeout")
        assert [f.id for f in failures] == [failure_id]
        assert failures[0].step_id == "s1"
        assert failures[0].resolved is False

    def test_resolved_failures_hidden(self, kb):
        failure_id = kb.record_failure("t1", "timeout", "Timeout")
        kb.mark_failure_resolved(failure_id)
        assert kb.get_failures_by_type("timeout") == []

    def test_cluster_failures_sorted_by_count(self, kb):
        for i in range(3):
            kb.record_failure(f"t{i}", "selector", "No element found")
        kb.record_failure("t9", "timeout", "Timeout")
        kb.record_failure("t8", "unknown", "boom")
        clusters = cluster_failures(kb)
        assert [c.error_type for c in clusters] == ["selector", "timeout", "unknown"]
        assert clusters[0].count == 3
        assert clusters[0].suggested_fix == SUGGESTED_FIXES["selector"]


class TestFlakyTracking:
    """Tests for the flaky-test aggregate."""

    def test_score_is_failure_ratio(self, kb):
        for passed in (True, False, True, False):
            kb.record_test_run("t1", passed)
        flaky = kb.get_flaky_test("t1")
        assert flaky.total_runs == 4
        assert flaky.failures == 2
        assert flaky.flakiness_score == 0.5

    def test_minimum_runs_required(self, kb):
        kb.record_test_run("t1", False)
        kb.record_test_run("t1", False)
        assert kb.get_flaky_tests(threshold=0.1) == []
        kb.record_test_run("t1", True)
        assert [f.test_id for f in kb.get_flaky_tests(threshold=0.1)] == ["t1"]

    def test_threshold_and_order(self, kb):
        for _ in range(3):
            kb.record_test_run("stable", True)
        for passed in (False, True, True):
            kb.record_test_run("sometimes", passed)
        for passed in (False, False, True):
            kb.record_test_run("often", passed)
        assert [f.test_id for f in kb.get_flaky_tests(threshold=0.3)] == ["often", "sometimes"]
        assert [f.test_id for f in kb.get_flaky_tests(threshold=0.5)] == ["often"]


# ============================================================================
# Classification
# ============================================================================


class TestClassifyError:
    """Tests for classify_error / suggest_fix."""

    @pytest.mark.parametrize("message,expected", [
        ("Timeout 30000ms exceeded", "timeout"),
        ("waiting for selector #foo", "selector"),
        ("No element matches", "selector"),
        ("Navigation failed because page crashed", "navigation"),
        ("Element is detached from the DOM", "detached"),
        ("element obscured by overlay", "overlay"),
        ("401 Unauthorized", "auth"),
        ("net::ERR_CONNECTION_REFUSED", "network"),
        ("Assertion failed: expected text", "assertion"),
        ("something odd", "unknown"),
        ("", "unknown"),
    ])
    def test_classification(self, message, expected):
        assert classify_error(message) == expected

    def test_first_rule_wins(self):
        assert classify_error("Timeout waiting for selector #x") == "timeout"

    def test_suggest_fix_fallback(self):
        assert suggest_fix("bogus") == SUGGESTED_FIXES["unknown"]
