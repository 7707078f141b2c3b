"""
Orchestration layer for rundiff.

The Engine wires the executor, the execution store, the fuzzy matcher and
the diff engine together. The CLI is a thin shell over it.

Run Flow:
    1. Normalize and hash the command
    2. If a baseline code was given, make sure it exists before running
    3. Execute, teeing output live
    4. Store the execution (a storage failure never re-runs the command)
    5. Optionally diff against the baseline
    6. Start the retention sweep in the background

Diff Flow:
    1. Pick the bucket: from the command, or by ranking known commands
    2. Select two executions (selectors, date filter, or latest two)
    3. Diff the requested streams
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rundiff import matcher
from rundiff.command import describe_command
from rundiff.config import RundiffConfig, load_config, resolve_data_dir
from rundiff.diff.compare import ExecutionComparison, compare_executions, select_pair
from rundiff.errors import RecordNotFoundError
from rundiff.executor import CommandExecutor, ExecutionResult
from rundiff.schema import DiffMode, Execution, Stream
from rundiff.store import ExecutionStore, RetentionManager

logger = logging.getLogger(__name__)

RETENTION_JOIN_SECONDS = 2.0


@dataclass
class RunOutcome:
    """
    Result of `Engine.run`.

    Attributes:
        execution: The stored execution
        result: What the executor captured
        comparison: Diff against the baseline, when one was requested
    """

    execution: Execution
    result: ExecutionResult
    comparison: ExecutionComparison | None = None

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class Engine:
    """
    Main entry point for recording and comparing command runs.

    Usage:
        with Engine(data_dir="~/.rundiff") as engine:
            outcome = engine.run("make test")
            comparison = engine.diff(command="make test")

    Attributes:
        data_dir: Store root
        config: Effective configuration
        store: The execution store
        executor: Runs commands
        retention: Background retention sweeps
    """

    def __init__(
        self,
        data_dir: str | Path | None = None,
        config: RundiffConfig | None = None,
        executor: CommandExecutor | None = None,
        recover: bool = True,
    ) -> None:
        """
        Open the store and set up the executor.

        Args:
            data_dir: Store root (see resolve_data_dir)
            config: Configuration (loaded from data_dir when omitted)
            executor: Executor to use (built from config when omitted)
            recover: Rebuild a corrupt index instead of failing; the
                failure is kept in store.problems
        """
        self.data_dir = resolve_data_dir(data_dir)
        self.config = config or load_config(self.data_dir)
        self.store = ExecutionStore(
            self.data_dir,
            auto_archive=self.config.storage.auto_archive,
            recover=recover,
        )
        self.executor = executor or CommandExecutor(
            shell=self.config.executor.shell,
            tee=self.config.executor.tee,
        )
        self.retention = RetentionManager(self.store, self.config.storage.max_retention_days)

    def close(self) -> None:
        """Give a running sweep a moment to finish, then close the store."""
        if not self.retention.join(RETENTION_JOIN_SECONDS):
            logger.debug("Retention sweep still running at close")
        self.store.close()

    def __enter__(self) -> "Engine":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Run
    # =========================================================================

    def run(
        self,
        command: str,
        working_dir: str | Path | None = None,
        diff_code: str | None = None,
        mode: DiffMode = DiffMode.ALIGNED,
        streams: tuple[Stream, ...] = (Stream.STDOUT,),
        ignore_trailing_newline: bool = False,
    ) -> RunOutcome:
        """
        Run a command and record it.

        Args:
            command: Command text, run through the configured shell
            working_dir: Where to run (defaults to the current directory)
            diff_code: Short code of an earlier execution to diff against
            mode: Diff mode for the baseline comparison
            streams: Streams to compare against the baseline
            ignore_trailing_newline: Newline handling for the comparison

        Returns:
            RunOutcome

        Raises:
            RecordNotFoundError: diff_code does not exist (nothing is run)
            SpawnFailedError, CaptureError, InterruptedRunError: From the executor
            StorageIOError: Recording failed after the command ran
        """
        descriptor = describe_command(command)
        baseline = None
        if diff_code:
            baseline = self.store.resolve_code(descriptor.digest, diff_code)

        logger.info("Running %r (bucket %s)", descriptor.normalized, descriptor.digest[:12])
        result = self.executor.execute(command, working_dir)
        execution = self.store.store(descriptor, result)

        outcome = RunOutcome(execution=execution, result=result)
        if baseline is not None:
            outcome.comparison = compare_executions(
                self.store,
                baseline,
                execution,
                streams=streams,
                mode=mode,
                ignore_trailing_newline=ignore_trailing_newline,
            )

        # After the comparison: the sweep may delete an old baseline.
        if self.config.storage.background_retention:
            self.retention.start()
        return outcome

    # =========================================================================
    # Query
    # =========================================================================

    def history(self, command: str) -> list[Execution]:
        """Executions of a command, most recent first."""
        return self.store.lookup(describe_command(command).digest)

    def search(self, query: str = "", limit: int | None = None) -> list[matcher.Ranked]:
        """
        Rank every recorded execution against a query.

        Each candidate's payload is its Execution.
        """
        candidates = [
            matcher.Candidate(
                text=execution.normalized_command or execution.command_text,
                short_code=execution.short_code,
                timestamp=execution.timestamp,
                payload=execution,
            )
            for execution in self.store.all_executions()
        ]
        ranked = matcher.rank(query, candidates)
        return ranked[:limit] if limit else ranked

    def find_bucket(self, query: str = "") -> str:
        """
        Pick the command bucket best matching a query.

        Commands are ranked by the fuzzy matcher; ties (and an empty query)
        go to the most recently run command.

        Raises:
            RecordNotFoundError: No recorded command matches
        """
        candidates = []
        for digest, command in self.store.buckets().items():
            executions = self.store.lookup(digest)
            if not executions:
                continue
            candidates.append(
                matcher.Candidate(
                    text=command or executions[0].normalized_command,
                    timestamp=executions[0].timestamp,
                    payload=digest,
                )
            )
        ranked = matcher.rank(query, candidates)
        if not ranked:
            raise RecordNotFoundError(
                operation="find_bucket",
                message=f"No recorded command matches {query!r}" if query else "No commands recorded yet",
            )
        return ranked[0].candidate.payload

    # =========================================================================
    # Diff
    # =========================================================================

    def diff(
        self,
        command: str | None = None,
        query: str = "",
        from_selector: str | None = None,
        to_selector: str | None = None,
        date_filter: str | None = None,
        mode: DiffMode = DiffMode.ALIGNED,
        streams: tuple[Stream, ...] = (Stream.STDOUT,),
        ignore_trailing_newline: bool = False,
    ) -> ExecutionComparison:
        """
        Compare two executions of one command.

        Args:
            command: Command whose history to use; when None the bucket is
                chosen by ranking recorded commands against query
            query: Fuzzy query used when command is None
            from_selector: 'first', 'last' or a short code
            to_selector: 'first', 'last' or a short code
            date_filter: Narrow the history first (see matches_date_filter)
            mode: Diff mode
            streams: Streams to compare
            ignore_trailing_newline: Ignore one trailing line break

        Raises:
            RecordNotFoundError: Unknown command, selector, or < 2 executions
        """
        if command is not None:
            digest = describe_command(command).digest
        else:
            digest = self.find_bucket(query)

        executions = self.store.lookup(digest)
        if not executions:
            raise RecordNotFoundError(operation="diff", digest=digest)

        old, new = select_pair(executions, from_selector, to_selector, date_filter)
        return compare_executions(
            self.store,
            old,
            new,
            streams=streams,
            mode=mode,
            ignore_trailing_newline=ignore_trailing_newline,
        )

    # =========================================================================
    # Maintenance
    # =========================================================================

    def remove(self, command: str, code: str) -> Execution:
        """Delete one execution of a command by short code."""
        execution = self.store.resolve_code(describe_command(command).digest, code)
        self.store.delete(execution.execution_id)
        return execution

    def clean_matching(self, query: str, dry_run: bool = False) -> list[Execution]:
        """Delete every execution whose command matches a fuzzy query."""
        if not query:
            msg = "clean by search needs a non-empty query"
            raise ValueError(msg)
        targets = [r.candidate.payload for r in self.search(query)]
        return self._clean(targets, dry_run)

    def clean_by_path(self, path: str | Path, dry_run: bool = False) -> list[Execution]:
        """
        Delete executions related to a file or directory.

        An execution is related when it ran in that directory, or its command
        mentions the path as given, as an absolute path, or relative to the
        execution's working directory.
        """
        given = str(path)
        absolute = os.path.abspath(os.path.expanduser(given))
        targets = []
        for execution in self.store.all_executions():
            needles = {given, absolute}
            if execution.cwd:
                relative = os.path.relpath(absolute, execution.cwd)
                if relative != "." and not relative.startswith(".."):
                    needles.add(relative)
            if execution.cwd == absolute or any(
                needle in execution.command_text for needle in needles
            ):
                targets.append(execution)
        return self._clean(targets, dry_run)

    def clean_all(self, dry_run: bool = False) -> int:
        """Delete everything; returns how many executions were (or would be) removed."""
        if dry_run:
            return len(self.store.all_executions())
        return self.store.clean_all()

    def prune(self, max_days: int | None = None) -> int:
        """Run retention synchronously."""
        days = max_days or self.config.storage.max_retention_days
        return self.store.retention(days)

    def archive(self) -> int:
        """Move past-year entries into yearly archives."""
        return self.retention.archive()

    def reindex(self) -> int:
        """Rebuild the live index from metadata files."""
        return self.store.rebuild_index()

    def _clean(self, targets: list[Execution], dry_run: bool) -> list[Execution]:
        if dry_run:
            return targets
        removed = []
        for execution in targets:
            try:
                self.store.delete(execution.execution_id)
            except RecordNotFoundError:
                continue
            removed.append(execution)
        logger.info("Cleaned %d executions", len(removed))
        return removed
