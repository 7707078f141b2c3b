"""
JSON output for rundiff.

Machine-readable execution listings and diffs.

Design Principles:
    - Consistent schema: same keys for every execution
    - Human-readable keys: snake_case
    - ISO timestamps
"""

import json
from datetime import datetime
from typing import Any

from rundiff.diff.compare import ExecutionComparison
from rundiff.diff.engine import detect_moves
from rundiff.matcher import Ranked
from rundiff.schema import Execution

REPORT_VERSION = "1.0"


def execution_to_dict(execution: Execution) -> dict[str, Any]:
    """Serialize one execution."""
    return {
        "digest": execution.digest,
        "short_code": execution.short_code,
        "command": execution.command_text,
        "normalized_command": execution.normalized_command,
        "timestamp": execution.timestamp.isoformat(),
        "exit_code": execution.exit_code,
        "duration_ms": execution.duration_ms,
        "cwd": execution.cwd,
        "stdout_bytes": execution.stdout_bytes,
        "stderr_bytes": execution.stderr_bytes,
        "archived": execution.archived,
    }


def build_listing_dict(
    executions: list[Execution] | None = None,
    ranked: list[Ranked] | None = None,
    query: str = "",
) -> dict[str, Any]:
    """
    Build a listing document.

    Pass either plain executions or ranked search results; ranked entries
    carry their score and match kind.
    """
    items: list[dict[str, Any]] = []
    if ranked is not None:
        for item in ranked:
            entry = execution_to_dict(item.candidate.payload)
            entry["score"] = item.score
            entry["match"] = item.match.kind.value
            items.append(entry)
    else:
        items = [execution_to_dict(e) for e in executions or []]

    return {
        "report_version": REPORT_VERSION,
        "query": query,
        "count": len(items),
        "executions": items,
    }


def build_comparison_dict(comparison: ExecutionComparison) -> dict[str, Any]:
    """Build a diff document."""
    streams = {}
    for stream, ops in comparison.diffs.items():
        deleted, inserted = comparison.line_counts(stream)
        streams[stream.value] = {
            "identical": deleted == 0 and inserted == 0,
            "deleted_lines": deleted,
            "inserted_lines": inserted,
            "ops": [op.to_dict() for op in ops],
            "moves": [
                {
                    "text": move.text,
                    "delete_index": move.delete_index,
                    "insert_index": move.insert_index,
                }
                for move in detect_moves(ops)
            ],
        }

    return {
        "report_version": REPORT_VERSION,
        "mode": comparison.mode.value,
        "identical": comparison.identical,
        "from": execution_to_dict(comparison.old),
        "to": execution_to_dict(comparison.new),
        "streams": streams,
    }


def to_json(document: dict[str, Any], indent: int = 2) -> str:
    """Serialize a report document."""
    return json.dumps(document, indent=indent, default=_json_serializer, ensure_ascii=False)


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    msg = f"Object of type {type(obj).__name__} is not JSON serializable"
    raise TypeError(msg)
