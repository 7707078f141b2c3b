"""
Unit tests for fuzzy matching.

Tests cover:
- Each strategy tier and its score range
- Tier priority
- Digit queries against short codes and numbers in the text
- Smart-case subsequence matching
- Ranking and recency tie-breaks
"""

from datetime import UTC, datetime

import pytest

from rundiff.matcher import (
    DIGIT_BASE,
    EXACT_BASE,
    PREFIX_BASE,
    SUBSEQUENCE_MAX,
    Candidate,
    MatchKind,
    match,
    rank,
    score,
)


def ts(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=UTC)


# =============================================================================
# Strategies
# =============================================================================


class TestExact:
    """Tests for case-sensitive substring matches."""

    def test_substring(self) -> None:
        """A substring matches with its positions."""
        result = match("test", "make test")
        assert result is not None
        assert result.kind == MatchKind.EXACT
        assert result.indices == (5, 6, 7, 8)

    def test_earlier_position_scores_higher(self) -> None:
        """The same query scores higher the earlier it appears."""
        assert score("ls", "ls -la") > score("ls", "als")

    def test_longer_query_scores_higher(self) -> None:
        """Longer exact matches beat shorter ones."""
        assert score("git st", "git status") > score("git", "git status")

    def test_case_sensitive(self) -> None:
        """Exact matching respects case."""
        result = match("Test", "make test")
        assert result is None or result.kind != MatchKind.EXACT


class TestPrefix:
    """Tests for case-insensitive prefixes."""

    def test_prefix_ignores_case(self) -> None:
        """An upper-case prefix still matches."""
        result = match("MAKE", "make test")
        assert result is not None
        assert result.kind == MatchKind.PREFIX
        assert result.indices == (0, 1, 2, 3)


class TestDigit:
    """Tests for all-digit queries."""

    def test_short_code_sequence(self) -> None:
        """A number matches the short code with that sequence."""
        result = match("7", "make", short_code="g")
        assert result is not None
        assert result.kind == MatchKind.DIGIT
        assert result.score == DIGIT_BASE + 200

    def test_number_in_text(self) -> None:
        """A number matches an equal number in the text."""
        result = match("007", "sleep 7")
        assert result is not None
        assert result.kind == MatchKind.DIGIT
        assert result.indices == (6,)

    def test_short_code_beats_embedded_number(self) -> None:
        """A short code hit outranks a number found in the text."""
        assert score("3", "echo", short_code="c") > score("03", "sleep 3")

    def test_no_digit_match(self) -> None:
        """A number that appears nowhere does not match."""
        assert match("42", "echo", short_code="a") is None


class TestSubsequence:
    """Tests for skim-style subsequence matching."""

    def test_word_starts(self) -> None:
        """Characters are matched at word boundaries when possible."""
        result = match("mkt", "make test")
        assert result is not None
        assert result.kind == MatchKind.SUBSEQUENCE
        assert result.indices == (0, 2, 5)

    def test_smart_case(self) -> None:
        """Upper case in the query makes matching case-sensitive."""
        assert match("MT", "make test") is None
        assert match("mt", "make test") is not None

    def test_missing_character(self) -> None:
        """A query character absent from the text means no match."""
        assert match("date", "ls -la") is None

    def test_query_longer_than_text(self) -> None:
        """A query longer than the text never matches."""
        assert match("abcdef", "abc") is None

    def test_consecutive_scores_higher(self) -> None:
        """Consecutive matches beat scattered ones."""
        assert score("gst", "git-stat") > score("gst", "g.i.s.t")


class TestTiers:
    """Tests for ordering between strategies."""

    def test_empty_query_matches_everything(self) -> None:
        """An empty query matches with score 0."""
        result = match("", "anything")
        assert result is not None
        assert result.kind == MatchKind.ALL
        assert result.score == 0

    @pytest.mark.parametrize(
        ("query", "text", "short_code", "low", "high"),
        [
            ("ls", "ls -la", None, EXACT_BASE, 3999),
            ("LS", "ls -la", None, PREFIX_BASE, 2999),
            ("7", "make", "g", DIGIT_BASE, 1999),
            ("lla", "ls -la", None, 1, SUBSEQUENCE_MAX),
        ],
    )
    def test_score_ranges(self, query, text, short_code, low, high) -> None:
        """Every tier's score stays inside its band."""
        assert low <= score(query, text, short_code) <= high

    def test_prefix_never_beats_exact(self) -> None:
        """The weakest exact match outscores the strongest prefix match."""
        weakest_exact = score("x", "y" * 200 + "x")
        strongest_prefix = score("A" * 150, "a" * 150)
        assert weakest_exact > strongest_prefix


# =============================================================================
# Ranking
# =============================================================================


class TestRank:
    """Tests for rank()."""

    def test_drops_non_matches(self) -> None:
        """Only matching candidates are returned."""
        ranked = rank("7", [Candidate("echo 7", "g"), Candidate("echo 1", "a")])
        assert [r.candidate.text for r in ranked] == ["echo 7"]

    def test_best_first(self) -> None:
        """Higher scores come first."""
        ranked = rank("ls", [Candidate("als"), Candidate("ls -la"), Candidate("lxs")])
        assert [r.candidate.text for r in ranked] == ["ls -la", "als", "lxs"]

    def test_ties_newer_first(self) -> None:
        """Equal scores are ordered by recency."""
        old = Candidate("echo hi", "a", ts(1))
        new = Candidate("echo hi", "b", ts(2))
        undated = Candidate("echo hi", "c")
        ranked = rank("echo", [old, undated, new])
        assert [r.candidate.short_code for r in ranked] == ["b", "a", "c"]

    def test_empty_query_by_recency(self) -> None:
        """With no query, everything comes back newest first."""
        candidates = [Candidate("a", timestamp=ts(d)) for d in (3, 1, 2)]
        ranked = rank("", candidates)
        assert [r.candidate.timestamp.day for r in ranked] == [3, 2, 1]

    def test_payload_carried(self) -> None:
        """Caller data survives ranking untouched."""
        payload = object()
        ranked = rank("x", [Candidate("x", payload=payload)])
        assert ranked[0].candidate.payload is payload
        assert ranked[0].score == ranked[0].match.score
