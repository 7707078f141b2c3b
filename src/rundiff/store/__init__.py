"""
Storage module for rundiff.

Executions are stored as files under the data directory, one directory per
command digest, with a JSON index of short codes and per-year archives.

Example:
    from rundiff.store import ExecutionStore

    with ExecutionStore("~/.rundiff") as store:
        for execution in store.lookup(digest):
            print(execution.short_code, execution.exit_code)
"""

from rundiff.store.records import ExecutionStore
from rundiff.store.retention import RetentionManager

__all__ = [
    "ExecutionStore",
    "RetentionManager",
]
