"""Fuzzy and exact search over index entries.

Provides:
- FuzzyIndex: approximate matching over entry name and relative path
- exact_search(): case-normalized name / path-substring matching
- make_entry_matcher(): term matcher for boolean query evaluation

Scoring follows the usual fuzzy-finder convention: 0.0 is a perfect
match, 1.0 is no match at all, lower is better. A key's score is the
fraction of the pattern that the best-aligned window of the key fails to
match (difflib ratio over equal-length windows), so it does not depend on
where in the key the match sits. An entry's score is its best key score.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ..query import ParseResult
    from .schema import IndexEntry

DEFAULT_KEYS = ("name", "relative_path")
DEFAULT_THRESHOLD = 0.3


@dataclass
class FuzzyMatch:
    """Where a pattern matched inside one key of an entry."""

    key: str
    value: str
    indices: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class SearchResult:
    """A single search result with ranking info."""

    item: IndexEntry
    score: float
    matches: list[FuzzyMatch] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "item": self.item.to_dict(),
            "score": round(self.score, 3),
        }
        if self.matches is not None:
            result["matches"] = [
                {"key": m.key, "value": m.value, "indices": m.indices}
                for m in self.matches
            ]
        return result


@dataclass
class QueryResults:
    """Results of a boolean query plus how the query was understood."""

    results: list[SearchResult]
    parsed: ParseResult

    @property
    def error(self) -> str | None:
        return self.parsed.error


def _score_text(
    pattern: str, text: str, matcher: SequenceMatcher
) -> tuple[float, list[tuple[int, int]]]:
    """Score one (already normalized) key against a pattern.

    ``matcher`` must have ``pattern`` as its second sequence; difflib
    caches analysis of seq2, so one matcher serves every window.

    Returns:
        (score, matched index ranges as inclusive (start, end) pairs)
    """
    if not text:
        return 1.0, []

    m = len(pattern)
    found = text.find(pattern)
    if found != -1:
        return 0.0, [(found, found + m - 1)]

    best_ratio = 0.0
    best_start = 0
    best_window = ""

    if len(text) <= m:
        windows: Iterable[tuple[int, str]] = [(0, text)]
    else:
        windows = ((i, text[i : i + m]) for i in range(len(text) - m + 1))

    for start, window in windows:
        matcher.set_seq1(window)
        # Cheap upper bounds first, as difflib.get_close_matches does
        if matcher.real_quick_ratio() <= best_ratio:
            continue
        if matcher.quick_ratio() <= best_ratio:
            continue
        ratio = matcher.ratio()
        if ratio > best_ratio:
            best_ratio = ratio
            best_start = start
            best_window = window

    if best_ratio == 0.0:
        return 1.0, []

    matcher.set_seq1(best_window)
    indices = [
        (best_start + block.a, best_start + block.a + block.size - 1)
        for block in matcher.get_matching_blocks()
        if block.size
    ]
    return 1.0 - best_ratio, indices


class FuzzyIndex:
    """
    In-memory fuzzy matcher over a set of index entries.

    Entries are keyed by path, so re-adding an entry replaces it.

    Usage:
        fuzzy = FuzzyIndex(entries)
        fuzzy.add([new_entry])
        fuzzy.remove("/root/docs/old.md")
        results = fuzzy.search("readme", limit=10)
    """

    def __init__(
        self,
        entries: Iterable[IndexEntry] = (),
        *,
        keys: tuple[str, ...] = DEFAULT_KEYS,
        threshold: float = DEFAULT_THRESHOLD,
        case_sensitive: bool = False,
    ):
        self.keys = keys
        self.threshold = threshold
        self.case_sensitive = case_sensitive
        self._entries: dict[str, IndexEntry] = {}
        self.set_entries(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def _normalize(self, text: str) -> str:
        return text if self.case_sensitive else text.lower()

    def set_entries(self, entries: Iterable[IndexEntry]) -> None:
        """Rebuild the candidate set from scratch."""
        self._entries = {entry.path: entry for entry in entries}

    def add(self, entries: Iterable[IndexEntry]) -> None:
        for entry in entries:
            self._entries[entry.path] = entry

    def remove(self, path: str) -> None:
        self._entries.pop(path, None)

    def score_entry(
        self, query: str, entry: IndexEntry
    ) -> tuple[float, list[FuzzyMatch]]:
        """
        Score one entry against a query.

        Returns:
            (best key score, matches for keys within the threshold)
        """
        pattern = self._normalize(query.strip())
        if not pattern:
            return 1.0, []

        matcher = SequenceMatcher(None, autojunk=False)
        matcher.set_seq2(pattern)
        return self._score_entry(pattern, entry, matcher)

    def _score_entry(
        self, pattern: str, entry: IndexEntry, matcher: SequenceMatcher
    ) -> tuple[float, list[FuzzyMatch]]:
        best = 1.0
        matches: list[FuzzyMatch] = []
        for key in self.keys:
            value = str(getattr(entry, key, "") or "")
            score, indices = _score_text(
                pattern, self._normalize(value), matcher
            )
            if score <= self.threshold:
                matches.append(
                    FuzzyMatch(key=key, value=value, indices=indices)
                )
            best = min(best, score)
        return best, matches

    def search(
        self, query: str, limit: int | None = None
    ) -> list[SearchResult]:
        """
        Rank all entries against a query.

        Args:
            query: Search text
            limit: Maximum results (None = unlimited)

        Returns:
            Results within the threshold, best score first; ties prefer
            shorter relative paths
        """
        pattern = self._normalize(query.strip())
        if not pattern:
            return []

        matcher = SequenceMatcher(None, autojunk=False)
        matcher.set_seq2(pattern)

        results: list[SearchResult] = []
        for entry in self._entries.values():
            score, matches = self._score_entry(pattern, entry, matcher)
            if score <= self.threshold:
                results.append(
                    SearchResult(item=entry, score=score, matches=matches)
                )

        results.sort(key=lambda r: (r.score, len(r.item.relative_path)))
        if limit is not None:
            results = results[:limit]
        return results


def exact_search(
    entries: Iterable[IndexEntry], query: str, limit: int | None = None
) -> list[SearchResult]:
    """
    Case-normalized exact matching.

    An entry matches when its name equals the query or its relative path
    contains it. Iteration order is preserved; scores are 0.0.
    """
    needle = query.strip().lower()
    if not needle or (limit is not None and limit <= 0):
        return []

    results: list[SearchResult] = []
    for entry in entries:
        name = entry.name.lower()
        if name == needle or needle in entry.relative_path.lower():
            results.append(SearchResult(item=entry, score=0.0))
            if limit is not None and len(results) >= limit:
                break
    return results


def make_entry_matcher(
    fuzzy: FuzzyIndex,
) -> Callable[[str, IndexEntry, bool], bool]:
    """
    Build a ``matcher(term, entry, exact)`` for boolean query evaluation.

    Exact terms match as case-insensitive substrings of the name or the
    relative path; other terms match when the entry's fuzzy score is
    within the index threshold.
    """

    def matcher(term: str, entry: IndexEntry, exact: bool) -> bool:
        needle = term.lower()
        if exact:
            return (
                needle in entry.name.lower()
                or needle in entry.relative_path.lower()
            )
        score, _ = fuzzy.score_entry(term, entry)
        return score <= fuzzy.threshold

    return matcher
