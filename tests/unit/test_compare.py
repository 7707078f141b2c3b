"""
Unit tests for execution selection and comparison.

Tests cover:
- Date filter forms
- Selector resolution (first, last, short code)
- Pair selection defaults and fallbacks
- Diffing stored executions
"""

import logging
from datetime import UTC, datetime

import pytest

from rundiff.command import describe_command
from rundiff.diff.compare import (
    compare_executions,
    filter_by_date,
    matches_date_filter,
    resolve_selector,
    select_pair,
)
from rundiff.errors import CorruptRecordError, RecordNotFoundError
from rundiff.schema import DiffMode, DiffTag, Execution, Stream
from rundiff.store import ExecutionStore

CMD = describe_command("make test")
STAMP = datetime(2024, 3, 15, 10, 30, 0, tzinfo=UTC)


@pytest.fixture
def history(store: ExecutionStore, make_result) -> list[Execution]:
    """Four executions (a..d) on different dates, most recent first."""
    dates = [
        datetime(2023, 12, 31, 9, 0, tzinfo=UTC),
        datetime(2024, 1, 10, 9, 0, tzinfo=UTC),
        datetime(2024, 3, 15, 10, 30, tzinfo=UTC),
        datetime(2024, 3, 16, 8, 0, tzinfo=UTC),
    ]
    for i, ts in enumerate(dates):
        store.store(CMD, make_result(stdout=f"run {i}\n".encode(), exit_code=i % 2), timestamp=ts)
    return store.lookup(CMD.digest)


def codes(pair: tuple[Execution, Execution]) -> tuple[str, str]:
    return pair[0].short_code, pair[1].short_code


# =============================================================================
# Date Filters
# =============================================================================


class TestDateFilter:
    """Tests for matches_date_filter()."""

    @pytest.mark.parametrize(
        "date_filter",
        ["2024", "2024-03", "2024-3", "03-15", "3-15", "mar", "March", "2024-03-15", "10:30", ""],
    )
    def test_matches(self, date_filter: str) -> None:
        """Supported forms that should match the timestamp."""
        assert matches_date_filter(STAMP, date_filter)

    @pytest.mark.parametrize("date_filter", ["2023", "2024-04", "03-16", "feb", "11:00"])
    def test_does_not_match(self, date_filter: str) -> None:
        """Supported forms that should not match."""
        assert not matches_date_filter(STAMP, date_filter)

    def test_filter_keeps_order(self, history: list[Execution]) -> None:
        """Filtering preserves the most-recent-first order."""
        assert [e.short_code for e in filter_by_date(history, "2024")] == ["d", "c", "b"]


# =============================================================================
# Selection
# =============================================================================


class TestResolveSelector:
    """Tests for resolve_selector()."""

    def test_keywords(self, history: list[Execution]) -> None:
        """'last' is the newest, 'first' the oldest."""
        assert resolve_selector(history, "last").short_code == "d"
        assert resolve_selector(history, "FIRST").short_code == "a"

    def test_short_code(self, history: list[Execution]) -> None:
        """A code selects that execution."""
        assert resolve_selector(history, "b").short_code == "b"

    def test_unknown_code(self, history: list[Execution]) -> None:
        """A code that does not exist raises."""
        with pytest.raises(RecordNotFoundError) as exc_info:
            resolve_selector(history, "zz")
        assert exc_info.value.context["short_code"] == "zz"


class TestSelectPair:
    """Tests for select_pair()."""

    def test_default_is_two_most_recent(self, history: list[Execution]) -> None:
        """Without selectors the previous run is compared to the latest."""
        assert codes(select_pair(history)) == ("c", "d")

    def test_both_selectors(self, history: list[Execution]) -> None:
        """Explicit selectors are used as given."""
        assert codes(select_pair(history, "first", "c")) == ("a", "c")

    def test_from_only(self, history: list[Execution]) -> None:
        """With only --from, the latest run is the other side."""
        assert codes(select_pair(history, from_selector="a")) == ("a", "d")
        assert codes(select_pair(history, from_selector="d")) == ("d", "c")

    def test_to_only(self, history: list[Execution]) -> None:
        """With only --to, the newest older run is the other side."""
        assert codes(select_pair(history, to_selector="b")) == ("a", "b")

    def test_date_filter(self, history: list[Execution]) -> None:
        """A date filter narrows the pool."""
        assert codes(select_pair(history, date_filter="mar")) == ("c", "d")
        assert codes(select_pair(history, date_filter="2024", from_selector="first")) == ("b", "d")

    def test_date_filter_fallback(
        self, history: list[Execution], caplog: pytest.LogCaptureFixture
    ) -> None:
        """Fewer than two matches falls back to the full history with a warning."""
        with caplog.at_level(logging.WARNING, logger="rundiff.diff.compare"):
            pair = select_pair(history, date_filter="2023", from_selector="first")
        assert codes(pair) == ("a", "d")
        assert "date filter" in caplog.text

    def test_too_few_executions(self, store: ExecutionStore, make_result) -> None:
        """One execution cannot be diffed."""
        store.store(CMD, make_result())
        with pytest.raises(RecordNotFoundError) as exc_info:
            select_pair(store.lookup(CMD.digest))
        assert "at least two" in exc_info.value.message

    def test_empty_history(self) -> None:
        """No executions at all raises too."""
        with pytest.raises(RecordNotFoundError):
            select_pair([])


# =============================================================================
# Comparison
# =============================================================================


class TestCompareExecutions:
    """Tests for compare_executions()."""

    def test_stdout_diff(self, store: ExecutionStore, history: list[Execution]) -> None:
        """Captured stdout is diffed between the two executions."""
        old, new = select_pair(history)
        comparison = compare_executions(store, old, new, mode=DiffMode.LINEWISE)
        ops = comparison.diffs[Stream.STDOUT]
        assert [(op.tag, op.text) for op in ops] == [
            (DiffTag.DELETE, "run 2\n"),
            (DiffTag.INSERT, "run 3\n"),
        ]
        assert not comparison.identical
        assert comparison.exit_code_changed
        assert comparison.line_counts(Stream.STDOUT) == (1, 1)

    def test_both_streams(self, store: ExecutionStore, make_result) -> None:
        """stderr can be compared alongside stdout."""
        first = store.store(CMD, make_result(stdout=b"same\n", stderr=b"warn 1\n"))
        second = store.store(CMD, make_result(stdout=b"same\n", stderr=b"warn 2\n"))
        comparison = compare_executions(
            store, first, second, streams=(Stream.STDOUT, Stream.STDERR)
        )
        assert [op.tag for op in comparison.diffs[Stream.STDOUT]] == [DiffTag.EQUAL]
        assert DiffTag.INSERT in [op.tag for op in comparison.diffs[Stream.STDERR]]
        assert not comparison.identical
        assert not comparison.exit_code_changed

    def test_identical(self, store: ExecutionStore, make_result) -> None:
        """Equal output is reported as identical."""
        first = store.store(CMD, make_result(stdout=b"x\n"))
        second = store.store(CMD, make_result(stdout=b"x\n"))
        assert compare_executions(store, first, second).identical

    def test_missing_payload(self, store: ExecutionStore, data_dir, make_result) -> None:
        """A payload file that vanished is a corrupt record."""
        first = store.store(CMD, make_result(stdout=b"x\n"))
        second = store.store(CMD, make_result(stdout=b"y\n"))
        (data_dir / "records" / CMD.digest / first.stdout_file).unlink()
        with pytest.raises(CorruptRecordError):
            compare_executions(store, first, second)
