"""
Command executor for rundiff.

Runs one command through a shell, streams its stdout and stderr to the
terminal as they are produced, and keeps a complete copy of each stream.

Unlike a tool runner that passes argv lists, rundiff deliberately goes
through `<shell> -c <command>`: the recorded command is whatever the user
typed, pipes, redirects and && included.

Concurrency:
    Two reader threads drain the child's stdout and stderr while the caller
    waits for the process to exit. Neither pipe can fill up and stall the
    child. Bytes within one stream keep their order; the interleaving between
    the two streams is whatever the scheduler produced.

Failure modes:
    - Non-zero exit status: a normal ExecutionResult
    - Shell missing / cwd unusable: SpawnFailedError
    - Pipe read failure: CaptureError
    - Ctrl-C, cancel(), or child killed by SIGINT: InterruptedRunError
      (captured output is discarded)
"""

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from rundiff.errors import CaptureError, InterruptedRunError, SpawnFailedError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
TERMINATE_GRACE_SECONDS = 2.0
INTERRUPTED_JOIN_SECONDS = 1.0
PUMP_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of a completed command.

    Attributes:
        stdout: Complete captured stdout
        stderr: Complete captured stderr
        exit_code: Exit status (negative: killed by that signal)
        duration_ms: Wall-clock duration in milliseconds
        cwd: Working directory the command ran in
    """

    stdout: bytes
    stderr: bytes
    exit_code: int
    duration_ms: int
    cwd: str = ""

    @property
    def success(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0


class _StreamPump(threading.Thread):
    """Copy one pipe into a buffer and, optionally, a live sink."""

    def __init__(self, name: str, source: BinaryIO, sink: BinaryIO | None) -> None:
        super().__init__(name=f"rundiff-{name}", daemon=True)
        self.stream_name = name
        self.source = source
        self.sink = sink
        self.buffer = bytearray()
        self.error: OSError | None = None

    def run(self) -> None:
        try:
            while True:
                chunk = self.source.read(CHUNK_SIZE)
                if not chunk:
                    break
                self.buffer += chunk
                if self.sink is not None:
                    self._tee(chunk)
        except OSError as e:
            self.error = e
        finally:
            self.source.close()

    def _tee(self, chunk: bytes) -> None:
        try:
            self.sink.write(chunk)
            self.sink.flush()
        except (OSError, ValueError) as e:
            # Terminal went away; keep capturing.
            logger.warning("Stopped mirroring %s: %s", self.stream_name, e)
            self.sink = None


def _default_sink(stream: object) -> BinaryIO | None:
    return getattr(stream, "buffer", None)


class CommandExecutor:
    """
    Run shell commands with live-tee capture.

    Usage:
        executor = CommandExecutor()
        result = executor.execute("make test", "/path/to/project")
        print(result.exit_code, len(result.stdout))

    Attributes:
        shell: Shell used as `<shell> -c <command>`
        tee: Mirror output to the sinks while capturing
    """

    def __init__(
        self,
        shell: str = "/bin/sh",
        tee: bool = True,
        stdout_sink: BinaryIO | None = None,
        stderr_sink: BinaryIO | None = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            shell: Shell executable
            tee: Whether to stream output live
            stdout_sink: Where live stdout goes (defaults to sys.stdout's buffer)
            stderr_sink: Where live stderr goes (defaults to sys.stderr's buffer)
        """
        self.shell = shell
        self.tee = tee
        self.stdout_sink = stdout_sink
        self.stderr_sink = stderr_sink
        self._lock = threading.Lock()
        self._proc: subprocess.Popen[bytes] | None = None
        self._cancelled = threading.Event()

    def execute(self, command: str, working_dir: str | Path | None = None) -> ExecutionResult:
        """
        Run a command to completion.

        Args:
            command: Command text, passed to the shell unchanged
            working_dir: Directory to run in (defaults to the current directory)

        Returns:
            ExecutionResult with both captured streams

        Raises:
            SpawnFailedError: The shell could not be started
            CaptureError: Reading a pipe failed
            InterruptedRunError: The run was aborted
        """
        cwd = str(Path(working_dir).resolve()) if working_dir else os.getcwd()
        self._cancelled.clear()

        logger.debug("Spawning %s -c %r in %s", self.shell, command, cwd)
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                [self.shell, "-c", command],
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as e:
            raise SpawnFailedError(command=command, underlying_error=str(e)) from e

        with self._lock:
            self._proc = proc

        stdout_sink = stderr_sink = None
        if self.tee:
            stdout_sink = self.stdout_sink or _default_sink(sys.stdout)
            stderr_sink = self.stderr_sink or _default_sink(sys.stderr)

        pumps = [
            _StreamPump("stdout", proc.stdout, stdout_sink),
            _StreamPump("stderr", proc.stderr, stderr_sink),
        ]
        for pump in pumps:
            pump.start()

        # A background job can hold the pipes open after the shell exits.
        interrupted = False
        try:
            exit_code = proc.wait()
            self._join_pumps(pumps)
        except KeyboardInterrupt:
            self._terminate(proc)
            exit_code = proc.returncode
            interrupted = True
        finally:
            with self._lock:
                self._proc = None

        if interrupted or self._cancelled.is_set() or exit_code == -signal.SIGINT:
            for pump in pumps:
                pump.join(INTERRUPTED_JOIN_SECONDS)
            logger.info("Command interrupted: %s", command)
            raise InterruptedRunError(command=command)

        for pump in pumps:
            if pump.error is not None:
                raise CaptureError(
                    command=command,
                    stream=pump.stream_name,
                    underlying_error=str(pump.error),
                ) from pump.error

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Command finished with exit code %d in %dms", exit_code, duration_ms)

        return ExecutionResult(
            stdout=bytes(pumps[0].buffer),
            stderr=bytes(pumps[1].buffer),
            exit_code=exit_code,
            duration_ms=duration_ms,
            cwd=cwd,
        )

    def cancel(self) -> None:
        """
        Abort the running command from another thread.

        The pending execute() call raises InterruptedRunError. Does nothing
        when no command is running.
        """
        with self._lock:
            proc = self._proc
            if proc is None:
                return
            self._cancelled.set()
        logger.debug("Cancelling pid %d", proc.pid)
        self._terminate(proc)

    def _join_pumps(self, pumps: list[_StreamPump]) -> None:
        for pump in pumps:
            while pump.is_alive() and not self._cancelled.is_set():
                pump.join(PUMP_POLL_SECONDS)

    @staticmethod
    def _terminate(proc: subprocess.Popen[bytes]) -> None:
        """Terminate the child, escalating to SIGKILL after a grace period."""
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
