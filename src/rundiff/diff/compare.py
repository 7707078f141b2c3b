"""
Comparing two recorded executions.

This module sits between the store and the diff engine: it picks which two
executions of a command to compare (by selector, date filter or default)
and diffs their captured streams.

Selectors:
    last      the most recent execution
    first     the oldest execution
    <code>    an execution by short code
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from rundiff.diff.engine import DiffOp, changed_line_counts, compute
from rundiff.errors import RecordNotFoundError
from rundiff.schema import DiffMode, DiffTag, Execution, Stream
from rundiff.store import ExecutionStore

logger = logging.getLogger(__name__)

SELECT_FIRST = "first"
SELECT_LAST = "last"

MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")

_YEAR = re.compile(r"^\d{4}$")
_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")
_MONTH_DAY = re.compile(r"^(\d{1,2})-(\d{1,2})$")


@dataclass
class ExecutionComparison:
    """
    The result of diffing two executions.

    Attributes:
        old: Execution compared from
        new: Execution compared to
        mode: Alignment mode used
        diffs: DiffOps per compared stream
    """

    old: Execution
    new: Execution
    mode: DiffMode
    diffs: dict[Stream, list[DiffOp]] = field(default_factory=dict)

    @property
    def identical(self) -> bool:
        """Whether every compared stream is unchanged."""
        return all(
            all(op.tag == DiffTag.EQUAL for op in ops)
            for ops in self.diffs.values()
        )

    @property
    def exit_code_changed(self) -> bool:
        return self.old.exit_code != self.new.exit_code

    def line_counts(self, stream: Stream) -> tuple[int, int]:
        """(deleted, inserted) line counts for a stream."""
        return changed_line_counts(self.diffs.get(stream, []))


# =============================================================================
# Date Filters
# =============================================================================


def matches_date_filter(timestamp: datetime, date_filter: str) -> bool:
    """
    Check a timestamp against a loose date filter.

    Accepted forms: YYYY, YYYY-MM, MM-DD, an English month abbreviation
    (matched anywhere in the filter, e.g. "jan" or "January"), otherwise a
    substring of "YYYY-MM-DD HH:MM:SS".
    """
    text = date_filter.strip().lower()
    if not text:
        return True

    if _YEAR.match(text):
        return timestamp.year == int(text)

    if m := _YEAR_MONTH.match(text):
        return timestamp.year == int(m.group(1)) and timestamp.month == int(m.group(2))

    if m := _MONTH_DAY.match(text):
        return timestamp.month == int(m.group(1)) and timestamp.day == int(m.group(2))

    for number, name in enumerate(MONTHS, start=1):
        if name in text:
            return timestamp.month == number

    return text in timestamp.strftime("%Y-%m-%d %H:%M:%S")


def filter_by_date(executions: list[Execution], date_filter: str) -> list[Execution]:
    """Keep executions whose timestamp matches the filter, preserving order."""
    return [e for e in executions if matches_date_filter(e.timestamp, date_filter)]


# =============================================================================
# Selection
# =============================================================================


def resolve_selector(executions: list[Execution], selector: str) -> Execution:
    """
    Resolve 'first', 'last' or a short code against a list of executions.

    Args:
        executions: Executions of one command, most recent first
        selector: The selector

    Raises:
        RecordNotFoundError: Nothing matches
    """
    digest = executions[0].digest if executions else ""
    if not executions:
        raise RecordNotFoundError(operation="resolve_selector", digest=digest)

    key = selector.strip()
    if key.lower() == SELECT_LAST:
        return executions[0]
    if key.lower() == SELECT_FIRST:
        return executions[-1]
    for execution in executions:
        if execution.short_code == key:
            return execution
    raise RecordNotFoundError(operation="resolve_selector", digest=digest, short_code=key)


def select_pair(
    executions: list[Execution],
    from_selector: str | None = None,
    to_selector: str | None = None,
    date_filter: str | None = None,
) -> tuple[Execution, Execution]:
    """
    Pick the two executions to compare.

    Without selectors the two most recent executions are compared, older
    first. With only one selector, the other side is the most recent
    execution that is not the selected one. A date filter narrows the pool
    first; if fewer than two executions match, the full history is used.

    Args:
        executions: Executions of one command, most recent first

    Returns:
        (old, new)

    Raises:
        RecordNotFoundError: Fewer than two executions, or a selector misses
    """
    pool = executions
    if date_filter:
        filtered = filter_by_date(executions, date_filter)
        if len(filtered) >= 2:
            pool = filtered
        else:
            logger.warning(
                "Only %d executions match date filter %r; using full history",
                len(filtered),
                date_filter,
            )

    if len(pool) < 2:
        raise RecordNotFoundError(
            operation="select_pair",
            digest=pool[0].digest if pool else "",
            message=f"Need at least two executions to diff, found {len(pool)}",
            suggestion="Run the command again with 'rundiff run' to record another execution",
        )

    if from_selector is None and to_selector is None:
        return pool[1], pool[0]

    if from_selector is not None and to_selector is not None:
        return resolve_selector(pool, from_selector), resolve_selector(pool, to_selector)

    if from_selector is not None:
        old = resolve_selector(pool, from_selector)
        new = next(e for e in pool if e.short_code != old.short_code)
        return old, new

    new = resolve_selector(pool, to_selector)
    older = [e for e in pool if e.short_code != new.short_code and e.timestamp <= new.timestamp]
    old = older[0] if older else next(e for e in pool if e.short_code != new.short_code)
    return old, new


# =============================================================================
# Comparison
# =============================================================================


def compare_executions(
    store: ExecutionStore,
    old: Execution,
    new: Execution,
    streams: tuple[Stream, ...] = (Stream.STDOUT,),
    mode: DiffMode = DiffMode.ALIGNED,
    ignore_trailing_newline: bool = False,
) -> ExecutionComparison:
    """
    Diff the captured streams of two executions.

    Raises:
        CorruptRecordError: A payload file is missing
        StorageIOError: A payload cannot be read
    """
    comparison = ExecutionComparison(old=old, new=new, mode=mode)
    for stream in streams:
        comparison.diffs[stream] = compute(
            store.read_payload(old, stream),
            store.read_payload(new, stream),
            mode=mode,
            ignore_trailing_newline=ignore_trailing_newline,
        )
    logger.debug(
        "Compared %s -> %s (%s): identical=%s",
        old.short_code,
        new.short_code,
        mode.value,
        comparison.identical,
    )
    return comparison
