"""
Schema definitions for rundiff.

This module defines the Pydantic models persisted by the execution store:
- Execution: Metadata of one recorded command run (meta_<stamp>.json)
- Bucket/BucketEntry: Per-command allocation state held in the index
- Index: The live digest -> Bucket mapping (the `index` file)
- Archive: A year-scoped snapshot of old buckets (index_<YYYY>.json)

And the enums shared by the diff path:
- DiffMode: Cross-line alignment vs strictly positional
- DiffTag: Equal / Insert / Delete
- Stream: Which captured stream to compare

Design Decisions:
    - On-disk keys are camelCase (exitCode, durationMs, shortCode, ...)
    - Python attributes are snake_case; aliases bridge the two
    - Executions are frozen: a record is written once and never edited
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rundiff import shortcode

INDEX_VERSION = 1


# =============================================================================
# Enums
# =============================================================================


class DiffMode(str, Enum):
    """How two texts are aligned before comparison."""

    ALIGNED = "aligned"
    LINEWISE = "linewise"


class DiffTag(str, Enum):
    """Kind of a diff segment."""

    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


class Stream(str, Enum):
    """A captured output stream."""

    STDOUT = "stdout"
    STDERR = "stderr"


# =============================================================================
# Helpers
# =============================================================================


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def make_stamp(ts: datetime) -> str:
    """Format a timestamp for use in payload file names."""
    return ts.astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")


class _CamelModel(BaseModel):
    """Base for models stored with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# =============================================================================
# Execution
# =============================================================================


class Execution(_CamelModel):
    """
    Metadata about one recorded run of a command.

    Attributes:
        digest: SHA256 of the normalized command (the bucket key)
        short_code: Bijective base-62 code, unique within the bucket
        command_text: The command as typed
        normalized_command: Canonical spelling used for bucketing
        timestamp: When the run completed (UTC)
        exit_code: Process exit status (negative: killed by that signal)
        duration_ms: Wall-clock duration in milliseconds
        cwd: Working directory of the run
        stamp: File-name stamp linking meta/stdout/stderr files
        stdout_bytes: Size of the stdout payload
        stderr_bytes: Size of the stderr payload
        archived: True when served from a yearly archive (not persisted)
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    digest: str = Field(..., min_length=1, description="Bucket key")
    short_code: str = Field(..., description="Per-bucket short code")
    command_text: str = Field(..., description="Command as typed")
    normalized_command: str = Field(default="", description="Normalized command")
    timestamp: datetime = Field(default_factory=utc_now, description="Completion time")
    exit_code: int = Field(..., description="Exit status")
    duration_ms: int = Field(default=0, ge=0, description="Duration in ms")
    cwd: str = Field(default="", description="Working directory")
    stamp: str = Field(..., min_length=1, description="Payload file stamp")
    stdout_bytes: int = Field(default=0, ge=0, description="stdout payload size")
    stderr_bytes: int = Field(default=0, ge=0, description="stderr payload size")
    archived: bool = Field(default=False, exclude=True)

    @field_validator("short_code")
    @classmethod
    def validate_short_code(cls, v: str) -> str:
        """Short codes must use the base-62 alphabet."""
        if not shortcode.is_valid(v):
            msg = f"Invalid short code: {v!r}"
            raise ValueError(msg)
        return v

    @property
    def execution_id(self) -> str:
        """Store-wide identifier: '<digest>:<short_code>'."""
        return f"{self.digest}:{self.short_code}"

    @property
    def sequence(self) -> int:
        """Allocation number of this execution within its bucket."""
        return shortcode.decode(self.short_code)

    @property
    def meta_file(self) -> str:
        return f"meta_{self.stamp}.json"

    @property
    def stdout_file(self) -> str:
        return f"stdout_{self.stamp}.txt"

    @property
    def stderr_file(self) -> str:
        return f"stderr_{self.stamp}.txt"

    def payload_file(self, stream: Stream) -> str:
        """File name of the payload for a stream."""
        return self.stdout_file if stream == Stream.STDOUT else self.stderr_file


def split_execution_id(execution_id: str) -> tuple[str, str]:
    """
    Split '<digest>:<short_code>' into its parts.

    Raises:
        ValueError: If the id is malformed
    """
    digest, sep, code = execution_id.partition(":")
    if not sep or not digest or not code:
        msg = f"Malformed execution id: {execution_id!r}"
        raise ValueError(msg)
    return digest, code


# =============================================================================
# Index Models
# =============================================================================


class BucketEntry(_CamelModel):
    """A pointer from the index to one execution's files."""

    short_code: str
    timestamp: datetime
    stamp: str


class ArchiveBucket(_CamelModel):
    """
    Frozen per-command history for one archived year.

    Archived buckets keep their entries queryable but carry no allocator
    state; new codes are only ever handed out from the live bucket.
    """

    command: str = Field(default="", description="Normalized command")
    entries: list[BucketEntry] = Field(default_factory=list)

    def find(self, code: str) -> BucketEntry | None:
        """Find the entry with the given short code."""
        for entry in self.entries:
            if entry.short_code == code:
                return entry
        return None


class Bucket(ArchiveBucket):
    """
    Live per-command state.

    Attributes:
        command: Normalized command text
        entries: Live executions in allocation order
        next_seq: Next sequence number to encode; never decreases
    """

    next_seq: int = Field(default=1, ge=1, description="Next allocation number")

    def allocate(self) -> str:
        """Hand out the next short code and advance the counter."""
        code = shortcode.encode(self.next_seq)
        self.next_seq += 1
        return code


class Index(_CamelModel):
    """The live index: digest -> Bucket."""

    version: int = Field(default=INDEX_VERSION)
    buckets: dict[str, Bucket] = Field(default_factory=dict)


class Archive(_CamelModel):
    """Buckets of entries whose timestamps fall in `year`."""

    version: int = Field(default=INDEX_VERSION)
    year: int
    buckets: dict[str, ArchiveBucket] = Field(default_factory=dict)
