"""Tests for relevance filtering, excerpt extraction and context rendering."""

from __future__ import annotations

import pytest

from outreach_agent.retrieval.index import EMPTY_INDEX, build_index
from outreach_agent.retrieval.search import (
    TRUNCATION_MARKER,
    WINDOW_CHARS,
    SearchHit,
    build_context,
    rank_hits,
    search,
)

FAQ = "We offer AI consulting and automation services for manufacturing clients."


@pytest.fixture
def index():
    return build_index({
        "faq.txt": FAQ,
        "pricing.txt": "Our pricing starts with a free discovery call. Projects are billed monthly.",
    })


# ── Relevance threshold ──────────────────────────────────────────────


class TestRelevanceThreshold:
    def test_one_match_in_five_terms_is_excluded(self, index):
        # help, manufacturing, businesses, automate, processes: 1/5 < 0.25
        results = search(index, "Do you help manufacturing businesses automate processes?")
        assert results == {}

    def test_exactly_one_quarter_is_included(self, index):
        results = search(index, "manufacturing robotics drones lasers")
        assert list(results) == ["faq.txt"]
        assert results["faq.txt"].match_count == 1

    def test_below_one_quarter_is_excluded(self, index):
        assert search(index, "manufacturing robotics drones lasers welding") == {}

    def test_repeated_query_terms_count_once(self, index):
        # Distinct terms: manufacturing, robotics, drones -> 1/3
        results = search(index, "manufacturing robotics robotics robotics drones")
        assert results["faq.txt"].match_count == 1

    def test_match_count_counts_distinct_matching_terms(self, index):
        results = search(index, "manufacturing automation robotics drones lasers")
        assert results["faq.txt"].match_count == 2

    def test_prefixes_do_not_match(self, index):
        # "automate" is not "automation"
        assert search(index, "automate") == {}

    def test_case_insensitive(self, index):
        assert "faq.txt" in search(index, "MANUFACTURING")

    def test_query_without_terms_returns_nothing(self, index):
        assert search(index, "is it ok?") == {}
        assert search(index, "") == {}

    def test_empty_index(self):
        assert search(EMPTY_INDEX, "manufacturing") == {}

    def test_results_only_contain_qualifying_documents(self, index):
        results = search(index, "pricing monthly")
        assert list(results) == ["pricing.txt"]


# ── Excerpts ─────────────────────────────────────────────────────────


class TestContexts:
    def test_window_surrounds_the_match(self):
        content = "x" * 300 + " automation " + "y" * 300
        index = build_index({"doc.txt": content})
        [context] = search(index, "automation")["doc.txt"].contexts
        assert "automation" in context
        assert len(context) == len("automation") + 2 * WINDOW_CHARS

    def test_window_clipped_at_document_edges(self, index):
        [context] = search(index, "manufacturing")["faq.txt"].contexts
        assert context == FAQ

    def test_at_most_three_windows_per_term(self):
        content = " ".join(f"pricing option{i}" + " " * 250 for i in range(6))
        index = build_index({"doc.txt": content})
        assert len(search(index, "pricing")["doc.txt"].contexts) == 3

    def test_at_most_five_contexts_per_document(self):
        words = ["alpha", "bravo", "charlie", "delta"]
        content = (" " * 250).join(f"{word} {word}" + " " * 250 + word for word in words)
        index = build_index({"doc.txt": content})
        hit = search(index, "alpha bravo charlie delta")["doc.txt"]
        assert hit.match_count == 4
        assert len(hit.contexts) == 5


# ── Ranking & prompt context ─────────────────────────────────────────


class TestRankAndBuildContext:
    def test_rank_by_match_count_then_name(self):
        results = {
            "b.txt": SearchHit(1, ["b"]),
            "c.txt": SearchHit(2, ["c"]),
            "a.txt": SearchHit(1, ["a"]),
        }
        assert [name for name, _ in rank_hits(results)] == ["c.txt", "a.txt", "b.txt"]

    def test_build_context_labels_documents(self):
        results = {"faq.txt": SearchHit(1, ["first", "second"])}
        assert build_context(results) == "[faq.txt]\nfirst\n...\nsecond"

    def test_build_context_empty(self):
        assert build_context({}) == ""

    def test_build_context_truncates_to_budget(self):
        results = {"faq.txt": SearchHit(1, ["z" * 500])}
        context = build_context(results, budget=50)
        assert context.endswith(TRUNCATION_MARKER)
        assert len(context) == 50 + len(TRUNCATION_MARKER)

    def test_build_context_within_budget_not_marked(self):
        results = {"faq.txt": SearchHit(1, ["short"])}
        assert TRUNCATION_MARKER not in build_context(results, budget=50)
