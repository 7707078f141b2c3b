"""
Diff module for rundiff.

engine  pure text diffing (DiffOp sequences, aligned and linewise modes)
compare selecting two executions and diffing their captured streams

Example:
    from rundiff.diff import compute, DiffMode

    ops = compute("one\\ntwo\\n", "one\\nTWO\\n", mode=DiffMode.LINEWISE)
"""

from rundiff.diff.compare import (
    ExecutionComparison,
    compare_executions,
    filter_by_date,
    matches_date_filter,
    resolve_selector,
    select_pair,
)
from rundiff.diff.engine import (
    BlockMove,
    DiffOp,
    compute,
    detect_moves,
    is_identical,
    split_lines,
)
from rundiff.schema import DiffMode, DiffTag

__all__ = [
    "BlockMove",
    "DiffMode",
    "DiffOp",
    "DiffTag",
    "ExecutionComparison",
    "compare_executions",
    "compute",
    "detect_moves",
    "filter_by_date",
    "is_identical",
    "matches_date_filter",
    "resolve_selector",
    "select_pair",
    "split_lines",
]
