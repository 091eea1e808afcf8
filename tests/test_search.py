"""Tests for fuzzy and exact search over entries."""

from __future__ import annotations

import pytest

from folder_index_mcp.index.search import (
    DEFAULT_THRESHOLD,
    FuzzyIndex,
    SearchResult,
    exact_search,
    make_entry_matcher,
)


def paths(results: list[SearchResult]) -> list[str]:
    return [r.item.relative_path for r in results]


class TestFuzzyIndex:
    """Tests for fuzzy ranking."""

    def test_substring_is_perfect_match(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        results = fuzzy.search("readme")
        assert results[0].item.relative_path == "docs/readme.md"
        assert results[0].score == 0.0

    def test_tolerates_typos(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        results = fuzzy.search("tutorail")
        assert "docs/react-tutorial.md" in paths(results)
        assert all(0 < r.score <= DEFAULT_THRESHOLD for r in results)

    def test_case_insensitive_by_default(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        assert paths(fuzzy.search("README")) == paths(fuzzy.search("readme"))

    def test_case_sensitive_option(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries, case_sensitive=True)
        assert fuzzy.search("README") == []

    def test_unrelated_query_finds_nothing(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        assert fuzzy.search("zzzzqqqq") == []

    def test_blank_query_finds_nothing(self, sample_entries):
        assert FuzzyIndex(sample_entries).search("   ") == []

    def test_results_sorted_by_score_then_path_length(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        results = fuzzy.search("guide")
        keys = [(r.score, len(r.item.relative_path)) for r in results]
        assert keys == sorted(keys)
        assert paths(results)[0] == "docs/guides"

    def test_limit(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        assert len(fuzzy.search("docs", limit=2)) == 2

    def test_path_key_matches(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        result = fuzzy.search("notes/meeting")[0]
        assert result.item.relative_path == "notes/meeting-notes.txt"
        assert [m.key for m in result.matches] == ["relative_path"]
        assert result.matches[0].indices == [(0, 12)]

    def test_add_replaces_by_path(self, sample_entries, entry_factory):
        fuzzy = FuzzyIndex(sample_entries)
        count = len(fuzzy)
        fuzzy.add([entry_factory("docs/readme.md", size=1)])
        assert len(fuzzy) == count

    def test_remove(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        fuzzy.remove("/content/docs/readme.md")
        assert "/content/docs/readme.md" not in fuzzy
        assert len(fuzzy) == len(sample_entries) - 1

        fuzzy.remove("/content/missing.md")
        assert len(fuzzy) == len(sample_entries) - 1

    def test_score_entry(self, sample_entries):
        fuzzy = FuzzyIndex(sample_entries)
        config = sample_entries[-1]
        score, matches = fuzzy.score_entry("config", config)
        assert score == 0.0
        assert {m.key for m in matches} == {"name", "relative_path"}

    def test_to_dict(self, sample_entries):
        result = FuzzyIndex(sample_entries).search("config")[0]
        data = result.to_dict()
        assert data["item"]["relativePath"] == "config.yml"
        assert data["score"] == 0.0
        assert data["matches"][0]["key"] == "name"


class TestExactSearch:
    """Tests for exact (case-normalized) search."""

    def test_name_equality(self, sample_entries):
        results = exact_search(sample_entries, "README.md")
        assert paths(results) == ["docs/readme.md"]

    def test_path_substring(self, sample_entries):
        results = exact_search(sample_entries, "guides/")
        assert paths(results) == [
            "docs/guides/vue-guide.md",
            "docs/guides/draft-markdown-guide.md",
        ]

    def test_scores_are_zero(self, sample_entries):
        results = exact_search(sample_entries, "docs")
        assert results
        assert {r.score for r in results} == {0.0}

    def test_limit_caps_results(self, sample_entries):
        assert len(exact_search(sample_entries, "docs", limit=3)) == 3

    def test_zero_limit_matches_fuzzy(self, sample_entries):
        assert exact_search(sample_entries, "readme.md", limit=0) == []
        assert FuzzyIndex(sample_entries).search("readme", limit=0) == []

    def test_no_typo_tolerance(self, sample_entries):
        assert exact_search(sample_entries, "tutorail") == []

    def test_blank_query(self, sample_entries):
        assert exact_search(sample_entries, "") == []


class TestEntryMatcher:
    """Tests for the boolean-query term matcher."""

    @pytest.fixture
    def matcher(self, sample_entries):
        return make_entry_matcher(FuzzyIndex(sample_entries))

    def test_exact_term_is_substring(self, matcher, sample_entries):
        tutorial = sample_entries[3]
        assert matcher("React-Tut", tutorial, True)
        assert not matcher("react tut", tutorial, True)

    def test_fuzzy_term_uses_threshold(self, matcher, sample_entries):
        tutorial = sample_entries[3]
        assert matcher("tutorail", tutorial, False)
        assert not matcher("python", tutorial, False)
