"""
Reporting module for rundiff.

Output formats:
    - Console: Rich tables for listings, colored inline diffs
    - JSON: Structured listings and diffs for scripts

Example:
    from rundiff.report import build_comparison_dict, print_comparison, to_json

    print_comparison(console, comparison)
    print(to_json(build_comparison_dict(comparison)))
"""

from rundiff.report.console import (
    print_comparison,
    print_executions,
    print_ranked,
    print_run_summary,
    render_ops,
    sanitize,
)
from rundiff.report.json import (
    build_comparison_dict,
    build_listing_dict,
    execution_to_dict,
    to_json,
)

__all__ = [
    "build_comparison_dict",
    "build_listing_dict",
    "execution_to_dict",
    "print_comparison",
    "print_executions",
    "print_ranked",
    "print_run_summary",
    "render_ops",
    "sanitize",
    "to_json",
]
