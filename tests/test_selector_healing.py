"""Tests for alternative selector generation, ranking and healing."""

import pytest

from qamap.learning.knowledge_base import KnowledgeBase
from qamap.learning.selector_healing import (
    attempt_selector_healing,
    generate_alternative_selectors,
    rank_alternative_selectors,
)
from qamap.models.knowledge import ElementSignature

from conftest import make_element


@pytest.fixture
def kb(tmp_path):
    with KnowledgeBase(tmp_path / "kb.db") as store:
        yield store


def _save_button():
    return make_element(
        "btn-save",
        text="Save",
        selector=".toolbar > button:nth-child(2)",
        attributes={"data-testid": "save", "id": "save-btn", "aria-label": "Save document", "name": "save"},
    )


class TestAlternativeSelectors:
    """Tests for generate_alternative_selectors."""

    def test_candidates_in_derivation_order(self):
        assert generate_alternative_selectors(_save_button()) == [
            '[aria-label="Save document"]',
            '[role="button"][name="Save"]',
            'button:has-text("Save")',
            '[data-testid="save"]',
            "#save-btn",
            'button[name="save"]',
        ]

    def test_primary_excluded(self):
        element = make_element("x", selector="#save-btn", attributes={"id": "save-btn"})
        assert "#save-btn" not in generate_alternative_selectors(element)

    def test_text_truncated(self):
        element = make_element("x", "link", text="A" * 50)
        assert 'a:has-text("' + "A" * 30 + '")' in generate_alternative_selectors(element)

    def test_input_name_and_placeholder(self):
        element = make_element("q", "textbox", type="input", attributes={"name": "q"})
        element.placeholder = "Search"
        assert generate_alternative_selectors(element) == ['[placeholder="Search"]', 'input[name="q"]']

    def test_quotes_escaped(self):
        element = make_element("x", text='Say "hi"', attributes={"aria-label": 'Say "hi"'})
        candidates = generate_alternative_selectors(element)
        assert candidates[0] == '[aria-label="Say \\"hi\\""]'
        assert 'button:has-text("Say \\"hi\\"")' in candidates


class TestRanking:
    """Tests for rank_alternative_selectors."""

    def test_test_id_wins(self):
        ranked = rank_alternative_selectors(['button:has-text("Save")', '[data-testid="save"]', "#save-btn"])
        assert ranked[0] == '[data-testid="save"]'
        assert ranked == ['[data-testid="save"]', "#save-btn", 'button:has-text("Save")']

    def test_full_order(self):
        ranked = rank_alternative_selectors([
            'input[name="q"]', '[role="button"][name="Go"]', '[aria-label="Go"]',
            'button:has-text("Go")', "#go", '[data-test="go"]',
        ])
        assert ranked == [
            '[data-test="go"]', "#go", '[aria-label="Go"]',
            '[role="button"][name="Go"]', 'button:has-text("Go")', 'input[name="q"]',
        ]

    def test_ties_are_lexicographic(self):
        assert rank_alternative_selectors(["#b", "#a"]) == ["#a", "#b"]


@pytest.mark.asyncio
class TestAttemptSelectorHealing:
    """Tests for attempt_selector_healing."""

    async def test_heals_with_best_working_selector(self, kb):
        tried = []

        async def try_selector(selector):
            tried.append(selector)
            return selector == "#save-btn"

        result = await attempt_selector_healing(_save_button(), kb, try_selector, test_id="t1")

        assert result.success is True
        assert result.selector == "#save-btn"
        assert result.attempts == 2
        assert tried == ['[data-testid="save"]', "#save-btn"]
        signature = kb.get_signature("btn-save")
        assert signature.success_count == 1
        assert len(kb.get_recent_attempts("btn-save")) == 2

    async def test_exhaustion(self, kb):
        async def try_selector(selector):
            return False

        element = _save_button()
        result = await attempt_selector_healing(element, kb, try_selector)

        assert result.success is False
        assert result.selector is None
        assert result.attempts == len(generate_alternative_selectors(element))
        assert kb.get_signature("btn-save").fail_count == 1
        assert all(not a.success for a in kb.get_recent_attempts("btn-save"))

    async def test_no_alternatives(self, kb):
        async def try_selector(selector):
            raise AssertionError("try_selector should not be called")

        element = make_element("bare", "other", selector="div.x")
        result = await attempt_selector_healing(element, kb, try_selector)
        assert result.success is False
        assert result.attempts == 0

    async def test_reuses_stored_alternatives(self, kb):
        kb.upsert_signature(ElementSignature(
            id="btn-save", element_id="btn-save", primary_selector="#old",
            alternative_selectors=['[data-qa="save"]'],
        ))
        tried = []

        async def try_selector(selector):
            tried.append(selector)
            return True

        result = await attempt_selector_healing(_save_button(), kb, try_selector)
        assert tried == ['[data-qa="save"]']
        assert result.selector == '[data-qa="save"]'
