"""
File-backed execution store for rundiff.

Layout under the data directory:
    records/<digest>/meta_<stamp>.json     execution metadata (camelCase JSON)
    records/<digest>/stdout_<stamp>.txt    raw stdout bytes
    records/<digest>/stderr_<stamp>.txt    raw stderr bytes
    index                                  live buckets: digest -> codes + allocator
    index_<YYYY>.json                      archived buckets for year YYYY

Design Principles:
    - Write-once: an execution's files are never rewritten
    - Index last on write, index first on delete: a crash can leave orphan
      payload files but never an index entry pointing at missing files
    - Monotonic codes: a bucket's next_seq only grows, so a deleted code is
      never handed out again
    - Single writer: one ExecutionStore per process; an RLock serializes
      mutations between threads. Nothing coordinates separate processes.
"""

import json
import logging
import os
import shutil
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rundiff.command import CommandDescriptor
from rundiff.errors import (
    CorruptRecordError,
    RecordNotFoundError,
    StorageError,
    StorageIOError,
)
from rundiff.executor import ExecutionResult
from rundiff.schema import (
    Archive,
    ArchiveBucket,
    Bucket,
    BucketEntry,
    Execution,
    Index,
    Stream,
    make_stamp,
    split_execution_id,
    utc_now,
)
from rundiff.shortcode import encode

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index"
RECORDS_DIRNAME = "records"
ARCHIVE_GLOB = "index_*.json"


def _atomic_write(path: Path, data: bytes) -> None:
    """Write data to path via a temp file and rename."""
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


def _dump_model(model: Any) -> bytes:
    return json.dumps(model.model_dump(mode="json", by_alias=True), indent=2).encode("utf-8")


class ExecutionStore:
    """
    Content-addressed store of command executions.

    Usage:
        store = ExecutionStore("~/.rundiff")
        execution = store.store(describe_command("ls"), result)
        history = store.lookup(execution.digest)
        store.close()

    Or use as context manager:
        with ExecutionStore(data_dir) as store:
            ...

    Attributes:
        data_dir: Root of the store
        problems: Recoverable errors (corrupt records) met while reading
    """

    def __init__(
        self,
        data_dir: str | Path,
        auto_archive: bool = False,
        recover: bool = False,
    ) -> None:
        """
        Open the store, creating it if needed.

        Args:
            data_dir: Root directory of the store
            auto_archive: Move entries from past years into yearly archives now
            recover: Rebuild the index from metadata files if it is corrupt

        Raises:
            StorageIOError: The directories cannot be created
            CorruptRecordError: The index is corrupt and recover is False
        """
        self.data_dir = Path(data_dir).expanduser()
        self.records_dir = self.data_dir / RECORDS_DIRNAME
        self.index_path = self.data_dir / INDEX_FILENAME
        self.problems: list[StorageError] = []
        self._lock = threading.RLock()
        self._index = Index()
        self._archives: dict[int, Archive] = {}
        self._closed = False

        try:
            self.records_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(
                operation="open",
                path=str(self.records_dir),
                underlying_error=str(e),
            ) from e

        # Archives first: a rebuild must know which entries are archived.
        self._archives = self._load_archives()

        try:
            self._index = self._load_index()
        except CorruptRecordError as e:
            if not recover:
                raise
            logger.warning("Index is corrupt, rebuilding: %s", e.underlying_error)
            self.problems.append(e)
            self.rebuild_index()

        if auto_archive:
            self.archive()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Flush the index and release the store."""
        if self._closed:
            return
        with self._lock:
            self._flush_index()
            self._closed = True

    def __enter__(self) -> "ExecutionStore":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Write Operations
    # =========================================================================

    def store(
        self,
        descriptor: CommandDescriptor,
        result: ExecutionResult,
        timestamp: datetime | None = None,
    ) -> Execution:
        """
        Record a completed run.

        Args:
            descriptor: Identity of the command
            result: What the executor captured
            timestamp: Completion time (defaults to now)

        Returns:
            The new Execution

        Raises:
            StorageIOError: Writing failed. The command is not re-run;
                context["command_ran"] is True.
        """
        ts = timestamp or utc_now()
        with self._lock:
            bucket = self._index.buckets.get(descriptor.digest)
            if bucket is None:
                bucket = Bucket(command=descriptor.normalized)
                self._index.buckets[descriptor.digest] = bucket

            code = bucket.allocate()
            record_dir = self.records_dir / descriptor.digest
            stamp = self._unique_stamp(record_dir, ts)

            execution = Execution(
                digest=descriptor.digest,
                short_code=code,
                command_text=descriptor.text,
                normalized_command=descriptor.normalized,
                timestamp=ts,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                cwd=result.cwd,
                stamp=stamp,
                stdout_bytes=len(result.stdout),
                stderr_bytes=len(result.stderr),
            )

            written: list[Path] = []
            entry = BucketEntry(short_code=code, timestamp=ts, stamp=stamp)
            try:
                record_dir.mkdir(parents=True, exist_ok=True)
                for name, data in (
                    (execution.stdout_file, result.stdout),
                    (execution.stderr_file, result.stderr),
                    (execution.meta_file, _dump_model(execution)),
                ):
                    path = record_dir / name
                    _atomic_write(path, data)
                    written.append(path)

                bucket.entries.append(entry)
                self._flush_index()
            except (OSError, StorageIOError) as e:
                # Nothing of a failed store may survive, in memory or on disk.
                if entry in bucket.entries:
                    bucket.entries.remove(entry)
                for path in written:
                    path.unlink(missing_ok=True)
                cause = e.underlying_error if isinstance(e, StorageIOError) else str(e)
                raise StorageIOError(
                    operation="store",
                    path=str(record_dir),
                    underlying_error=cause,
                    context={"command_ran": True, "short_code": code},
                ) from e

        logger.info("Stored %s as code %s", descriptor.normalized, code)
        return execution

    def delete(self, execution_id: str) -> None:
        """
        Delete one execution.

        The index entry is removed and flushed before payload files are
        unlinked. The bucket's allocator state is kept, so the code is never
        reused.

        Args:
            execution_id: '<digest>:<short_code>'

        Raises:
            RecordNotFoundError: No such execution
            ValueError: Malformed execution id
        """
        digest, code = split_execution_id(execution_id)
        with self._lock:
            self._delete_locked(digest, code)

    def try_delete(self, execution_id: str) -> bool:
        """
        Delete an execution unless another thread holds the store.

        Returns:
            True if deleted, False if the store was busy or the id is gone
        """
        digest, code = split_execution_id(execution_id)
        if not self._lock.acquire(blocking=False):
            return False
        try:
            self._delete_locked(digest, code)
            return True
        except RecordNotFoundError:
            return False
        finally:
            self._lock.release()

    def _delete_locked(self, digest: str, code: str) -> None:
        found = self._find_entry(digest, code)
        if found is None:
            raise RecordNotFoundError(operation="delete", digest=digest, short_code=code)
        entry, container, year = found

        container.entries.remove(entry)
        if year is None:
            self._flush_index()
        else:
            archive = self._archives[year]
            if not container.entries:
                del archive.buckets[digest]
            self._flush_archive(archive)

        record_dir = self.records_dir / digest
        for prefix, suffix in (("meta", "json"), ("stdout", "txt"), ("stderr", "txt")):
            path = record_dir / f"{prefix}_{entry.stamp}.{suffix}"
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                err = StorageIOError(operation="delete", path=str(path), underlying_error=str(e))
                logger.warning("Left orphan file: %s", err.message)
                self.problems.append(err)
        logger.info("Deleted %s:%s", digest[:12], code)

    def archive(self, now: datetime | None = None) -> int:
        """
        Move entries dated before the current year into yearly archives.

        Archived entries stay visible to lookup() and resolve_code() but are
        never touched by allocation. Archives are written before the index,
        so a crash in between duplicates entries instead of losing them.

        Returns:
            Number of entries moved
        """
        year = (now or utc_now()).year
        with self._lock:
            touched: dict[int, Archive] = {}
            moved = 0
            for digest, bucket in self._index.buckets.items():
                keep: list[BucketEntry] = []
                for entry in bucket.entries:
                    entry_year = entry.timestamp.year
                    if entry_year >= year:
                        keep.append(entry)
                        continue
                    archive = self._archive_for(entry_year)
                    target = archive.buckets.setdefault(
                        digest, ArchiveBucket(command=bucket.command)
                    )
                    if target.find(entry.short_code) is None:
                        target.entries.append(entry)
                    touched[entry_year] = archive
                    moved += 1
                bucket.entries = keep

            if moved:
                for archive in touched.values():
                    self._flush_archive(archive)
                self._flush_index()
                logger.info("Archived %d entries into %d yearly archives", moved, len(touched))
        return moved

    def retention(
        self,
        max_days: int,
        now: datetime | None = None,
        blocking: bool = True,
    ) -> int:
        """
        Delete executions older than max_days.

        Args:
            max_days: Age limit in days
            now: Reference time (defaults to now)
            blocking: If False, stop at the first moment another thread holds
                the store instead of waiting for it

        Returns:
            Number of executions deleted
        """
        cutoff = (now or utc_now()) - timedelta(days=max_days)
        if blocking:
            expired = self.expired(cutoff)
        elif self._lock.acquire(blocking=False):
            try:
                expired = self.expired(cutoff)
            finally:
                self._lock.release()
        else:
            logger.debug("Store busy; retention sweep skipped")
            return 0

        removed = 0
        for execution_id in expired:
            if blocking:
                try:
                    self.delete(execution_id)
                except RecordNotFoundError:
                    continue
                removed += 1
            elif self.try_delete(execution_id):
                removed += 1
            else:
                logger.debug("Store busy; retention sweep stopped after %d", removed)
                break
        if removed:
            logger.info("Retention removed %d executions older than %d days", removed, max_days)
        return removed

    def expired(self, cutoff: datetime) -> list[str]:
        """List execution ids (live and archived) with timestamps before cutoff."""
        with self._lock:
            ids = [
                f"{digest}:{entry.short_code}"
                for digest, bucket in self._all_buckets()
                for entry in bucket.entries
                if entry.timestamp < cutoff
            ]
        return ids

    def clean_all(self) -> int:
        """
        Remove every execution, archive and the index.

        Returns:
            Number of executions removed
        """
        with self._lock:
            count = sum(len(b.entries) for _, b in self._all_buckets())
            try:
                for archive_path in self.data_dir.glob(ARCHIVE_GLOB):
                    archive_path.unlink()
                self.index_path.unlink(missing_ok=True)
                shutil.rmtree(self.records_dir, ignore_errors=False)
                self.records_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageIOError(
                    operation="clean_all",
                    path=str(self.data_dir),
                    underlying_error=str(e),
                ) from e
            self._index = Index()
            self._archives = {}
            self._flush_index()
        logger.info("Removed all %d executions", count)
        return count

    def rebuild_index(self) -> int:
        """
        Reconstruct the live index from metadata files on disk.

        Entries already present in a yearly archive stay archived. Each
        bucket's next_seq is set past the highest code found, and never
        lowered below its previous value.

        Returns:
            Number of live entries in the rebuilt index
        """
        with self._lock:
            archived = {
                (digest, entry.short_code)
                for digest, bucket in self._archived_buckets()
                for entry in bucket.entries
            }
            old = self._index.buckets
            index = Index()
            count = 0

            for meta_path in sorted(self.records_dir.glob("*/meta_*.json")):
                try:
                    execution = self._read_meta(meta_path)
                except CorruptRecordError as e:
                    logger.warning("Skipping %s", e.message)
                    self.problems.append(e)
                    continue

                bucket = index.buckets.get(execution.digest)
                if bucket is None:
                    previous = old.get(execution.digest)
                    bucket = Bucket(
                        command=execution.normalized_command,
                        next_seq=previous.next_seq if previous else 1,
                    )
                    index.buckets[execution.digest] = bucket
                bucket.next_seq = max(bucket.next_seq, execution.sequence + 1)

                if (execution.digest, execution.short_code) in archived:
                    continue
                bucket.entries.append(
                    BucketEntry(
                        short_code=execution.short_code,
                        timestamp=execution.timestamp,
                        stamp=execution.stamp,
                    )
                )
                count += 1

            for bucket in index.buckets.values():
                bucket.entries.sort(key=lambda e: (e.timestamp, e.short_code))

            self._index = index
            self._flush_index()
        logger.info("Rebuilt index with %d entries", count)
        return count

    # =========================================================================
    # Read Operations
    # =========================================================================

    def lookup(self, digest: str) -> list[Execution]:
        """
        Get all executions of a command, most recent first.

        Corrupt metadata is skipped, logged and added to self.problems.

        Args:
            digest: Bucket key

        Returns:
            Executions (live and archived); empty if the digest is unknown
        """
        with self._lock:
            refs: list[tuple[BucketEntry, bool]] = []
            seen: set[str] = set()
            live = self._index.buckets.get(digest)
            if live is not None:
                for entry in live.entries:
                    seen.add(entry.short_code)
                    refs.append((entry, False))
            for archive_digest, bucket in self._archived_buckets():
                if archive_digest != digest:
                    continue
                for entry in bucket.entries:
                    if entry.short_code not in seen:
                        seen.add(entry.short_code)
                        refs.append((entry, True))

        executions: list[Execution] = []
        for entry, archived in refs:
            try:
                execution = self._load_entry(digest, entry)
            except CorruptRecordError as e:
                logger.warning("Skipping %s", e.message)
                self.problems.append(e)
                continue
            if archived:
                execution = execution.model_copy(update={"archived": True})
            executions.append(execution)

        executions.sort(key=lambda e: (e.timestamp, e.sequence), reverse=True)
        return executions

    def resolve_code(self, digest: str, code: str) -> Execution:
        """
        Find one execution by its short code.

        Raises:
            RecordNotFoundError: Unknown digest or code
            CorruptRecordError: Its metadata cannot be read
        """
        with self._lock:
            found = self._find_entry(digest, code)
        if found is None:
            raise RecordNotFoundError(operation="resolve_code", digest=digest, short_code=code)
        entry, _, year = found
        execution = self._load_entry(digest, entry)
        if year is not None:
            execution = execution.model_copy(update={"archived": True})
        return execution

    def get(self, execution_id: str) -> Execution:
        """Resolve an '<digest>:<short_code>' id."""
        digest, code = split_execution_id(execution_id)
        return self.resolve_code(digest, code)

    def read_payload(self, execution: Execution, stream: Stream) -> bytes:
        """
        Read a captured stream.

        Raises:
            CorruptRecordError: The payload file is missing
            StorageIOError: The payload cannot be read
        """
        path = self.records_dir / execution.digest / execution.payload_file(stream)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise CorruptRecordError(
                operation="read_payload",
                path=str(path),
                underlying_error="payload file missing",
            ) from e
        except OSError as e:
            raise StorageIOError(
                operation="read_payload",
                path=str(path),
                underlying_error=str(e),
            ) from e

    def digests(self) -> list[str]:
        """All known bucket keys (live and archived)."""
        with self._lock:
            return sorted({digest for digest, _ in self._all_buckets()})

    def buckets(self) -> dict[str, str]:
        """Map every bucket key to its normalized command."""
        with self._lock:
            result: dict[str, str] = {}
            for digest, bucket in self._all_buckets():
                if not result.get(digest):
                    result[digest] = bucket.command
            return result

    def next_code(self, digest: str) -> str:
        """The short code the next execution of this command will get."""
        with self._lock:
            bucket = self._index.buckets.get(digest)
            return encode(bucket.next_seq if bucket else 1)

    def all_executions(self) -> list[Execution]:
        """Every recorded execution, most recent first."""
        executions: list[Execution] = []
        for digest in self.digests():
            executions.extend(self.lookup(digest))
        executions.sort(key=lambda e: e.timestamp, reverse=True)
        return executions

    def archive_years(self) -> list[int]:
        """Years that have an archive file."""
        with self._lock:
            return sorted(self._archives)

    # =========================================================================
    # Internals
    # =========================================================================

    def _all_buckets(self) -> list[tuple[str, ArchiveBucket]]:
        return list(self._index.buckets.items()) + self._archived_buckets()

    def _archived_buckets(self) -> list[tuple[str, ArchiveBucket]]:
        return [
            (digest, bucket)
            for year in sorted(self._archives)
            for digest, bucket in self._archives[year].buckets.items()
        ]

    def _find_entry(
        self, digest: str, code: str
    ) -> tuple[BucketEntry, ArchiveBucket, int | None] | None:
        """Locate an entry; returns (entry, owning bucket, archive year or None)."""
        live = self._index.buckets.get(digest)
        if live is not None:
            entry = live.find(code)
            if entry is not None:
                return entry, live, None
        for year in sorted(self._archives):
            bucket = self._archives[year].buckets.get(digest)
            if bucket is not None:
                entry = bucket.find(code)
                if entry is not None:
                    return entry, bucket, year
        return None

    def _archive_for(self, year: int) -> Archive:
        archive = self._archives.get(year)
        if archive is None:
            archive = Archive(year=year)
            self._archives[year] = archive
        return archive

    def _archive_path(self, year: int) -> Path:
        return self.data_dir / f"index_{year}.json"

    def _unique_stamp(self, record_dir: Path, ts: datetime) -> str:
        stamp = make_stamp(ts)
        while (record_dir / f"meta_{stamp}.json").exists():
            ts += timedelta(microseconds=1)
            stamp = make_stamp(ts)
        return stamp

    def _load_entry(self, digest: str, entry: BucketEntry) -> Execution:
        return self._read_meta(self.records_dir / digest / f"meta_{entry.stamp}.json")

    def _read_meta(self, path: Path) -> Execution:
        try:
            return Execution.model_validate_json(path.read_bytes())
        except FileNotFoundError as e:
            raise CorruptRecordError(
                operation="read_meta",
                path=str(path),
                underlying_error="metadata file missing",
            ) from e
        except OSError as e:
            raise StorageIOError(
                operation="read_meta",
                path=str(path),
                underlying_error=str(e),
            ) from e
        except ValidationError as e:
            raise CorruptRecordError(
                operation="read_meta",
                path=str(path),
                underlying_error=str(e),
            ) from e

    def _load_index(self) -> Index:
        if not self.index_path.exists():
            return Index()
        try:
            return Index.model_validate_json(self.index_path.read_bytes())
        except OSError as e:
            raise StorageIOError(
                operation="load_index",
                path=str(self.index_path),
                underlying_error=str(e),
            ) from e
        except ValidationError as e:
            raise CorruptRecordError(
                operation="load_index",
                path=str(self.index_path),
                underlying_error=str(e),
            ) from e

    def _load_archives(self) -> dict[int, Archive]:
        archives: dict[int, Archive] = {}
        for path in sorted(self.data_dir.glob(ARCHIVE_GLOB)):
            try:
                archive = Archive.model_validate_json(path.read_bytes())
            except (OSError, ValidationError) as e:
                err = CorruptRecordError(
                    operation="load_archive",
                    path=str(path),
                    underlying_error=str(e),
                )
                logger.warning("Skipping archive %s", err.message)
                self.problems.append(err)
                continue
            archives[archive.year] = archive
        return archives

    def _flush_index(self) -> None:
        try:
            _atomic_write(self.index_path, _dump_model(self._index))
        except OSError as e:
            raise StorageIOError(
                operation="flush_index",
                path=str(self.index_path),
                underlying_error=str(e),
            ) from e

    def _flush_archive(self, archive: Archive) -> None:
        path = self._archive_path(archive.year)
        try:
            if archive.buckets:
                _atomic_write(path, _dump_model(archive))
            else:
                path.unlink(missing_ok=True)
                self._archives.pop(archive.year, None)
        except OSError as e:
            raise StorageIOError(
                operation="flush_archive",
                path=str(path),
                underlying_error=str(e),
            ) from e
