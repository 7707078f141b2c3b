"""
Exception hierarchy for rundiff.

All rundiff exceptions inherit from RundiffError, allowing callers to catch
all rundiff-specific exceptions with a single except clause.

Exception Categories:
    - ExecutionError: The command could not be run or captured
    - StorageError: The execution store could not be read or written
    - ConfigError: The configuration file is invalid

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (command, digest, path where applicable)
    - NotFound and Corrupt errors are recoverable; callers report and continue
    - Errors are both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Execution errors: 1xxx
ERROR_SPAWN_FAILED = 1001
ERROR_CAPTURE_FAILED = 1002
ERROR_INTERRUPTED = 1003

# Storage errors: 2xxx
ERROR_STORAGE_IO = 2001
ERROR_NOT_FOUND = 2002
ERROR_CORRUPT = 2003

# Config errors: 3xxx
ERROR_CONFIG_INVALID = 3001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class RundiffError(Exception):
    """
    Base exception for all rundiff errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Execution Errors
# =============================================================================


@dataclass
class ExecutionError(RundiffError):
    """
    Base class for command execution errors.

    A non-zero exit status is NOT an execution error; these are raised only
    when the command could not be started, captured, or was aborted.

    Attributes:
        command: The command text that was being run
    """

    command: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["command"] = self.command


@dataclass
class SpawnFailedError(ExecutionError):
    """Raised when the shell cannot be started (missing, permission denied, bad cwd)."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to start command: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_SPAWN_FAILED
        if not self.suggestion:
            self.suggestion = "Check that the shell exists and the working directory is accessible"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class CaptureError(ExecutionError):
    """Raised when reading the child's output streams fails."""

    stream: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to capture {self.stream or 'output'}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CAPTURE_FAILED
        super().__post_init__()
        self.context.update({
            "stream": self.stream,
            "underlying_error": self.underlying_error,
        })


@dataclass
class InterruptedRunError(ExecutionError):
    """Raised when the user aborts a running command. Nothing is recorded."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Command interrupted: {self.command}"
        if self.code == 0:
            self.code = ERROR_INTERRUPTED
        super().__post_init__()


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(RundiffError):
    """
    Base class for execution store errors.

    Attributes:
        operation: The operation that failed (e.g., "store", "lookup")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageIOError(StorageError):
    """Raised when a disk read or write fails."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Storage I/O failed for {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_IO
        if not self.suggestion:
            self.suggestion = "Check that the data directory is writable and the disk is not full"
        super().__post_init__()
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


@dataclass
class RecordNotFoundError(StorageError):
    """Raised when a digest or short code is unknown."""

    digest: str = ""
    short_code: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.short_code:
                self.message = f"No execution with code '{self.short_code}' for this command"
            else:
                self.message = f"No executions recorded for digest {self.digest[:12]}"
        if self.code == 0:
            self.code = ERROR_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Run 'rundiff ls' to see recorded executions"
        super().__post_init__()
        self.context.update({
            "digest": self.digest,
            "short_code": self.short_code,
        })


@dataclass
class CorruptRecordError(StorageError):
    """Raised when the index or a metadata file fails to parse."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Corrupt record {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CORRUPT
        if not self.suggestion:
            self.suggestion = "Run 'rundiff reindex' to rebuild the index from metadata files"
        super().__post_init__()
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(RundiffError):
    """Raised when config.yaml cannot be parsed or fails validation."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration in {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        if not self.suggestion:
            self.suggestion = "Fix or remove the config file to fall back to defaults"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })
