"""
Unit tests for the command executor.

Tests cover:
- Capture of stdout and stderr, byte for byte
- Live tee to sinks
- Exit codes (zero, non-zero, signals)
- Shell features (pipes, redirects)
- Spawn failures
- Interruption and cancellation
"""

import io
import threading
import time
from pathlib import Path

import pytest

from rundiff.errors import InterruptedRunError, SpawnFailedError
from rundiff.executor import CommandExecutor, _StreamPump


@pytest.fixture
def executor() -> CommandExecutor:
    """An executor that does not write to the terminal."""
    return CommandExecutor(tee=False)


# =============================================================================
# Capture
# =============================================================================


class TestCapture:
    """Tests for stream capture."""

    def test_stdout_and_stderr_separated(self, executor: CommandExecutor) -> None:
        """Each stream is captured into its own buffer."""
        result = executor.execute("printf 'to out'; printf 'to err' >&2")
        assert result.stdout == b"to out"
        assert result.stderr == b"to err"
        assert result.exit_code == 0
        assert result.success

    def test_interleaved_streams_keep_their_own_order(self, executor: CommandExecutor) -> None:
        """Alternating writes end up in order within each stream."""
        script = "for i in 1 2 3 4 5; do echo out$i; echo err$i >&2; done"
        result = executor.execute(script)
        assert result.stdout == b"out1\nout2\nout3\nout4\nout5\n"
        assert result.stderr == b"err1\nerr2\nerr3\nerr4\nerr5\n"

    def test_large_output_on_both_streams(self, executor: CommandExecutor) -> None:
        """Output larger than a pipe buffer on both streams does not deadlock."""
        script = (
            "i=0; while [ $i -lt 4000 ]; do "
            "echo 'stdout line padding padding padding'; "
            "echo 'stderr line padding padding padding' >&2; "
            "i=$((i+1)); done"
        )
        result = executor.execute(script)
        assert result.stdout.count(b"\n") == 4000
        assert result.stderr.count(b"\n") == 4000
        assert set(result.stdout.splitlines()) == {b"stdout line padding padding padding"}

    def test_binary_bytes_preserved(self, executor: CommandExecutor) -> None:
        """Non-UTF-8 bytes pass through untouched."""
        result = executor.execute("printf '\\377\\000\\001'")
        assert result.stdout == b"\xff\x00\x01"

    def test_shell_features(self, executor: CommandExecutor) -> None:
        """Pipes and logical operators work as typed."""
        result = executor.execute("printf 'b\\na\\n' | sort && echo done")
        assert result.stdout == b"a\nb\ndone\n"

    def test_working_directory(self, executor: CommandExecutor, temp_dir: Path) -> None:
        """Commands run in the requested directory."""
        result = executor.execute("pwd", temp_dir)
        assert Path(result.stdout.decode().strip()).resolve() == temp_dir.resolve()
        assert result.cwd == str(temp_dir.resolve())

    def test_duration_recorded(self, executor: CommandExecutor) -> None:
        """Duration is measured in milliseconds."""
        result = executor.execute("sleep 0.1")
        assert result.duration_ms >= 90


class TestTee:
    """Tests for live mirroring."""

    def test_output_mirrored_to_sinks(self) -> None:
        """Sinks receive exactly what was captured."""
        out, err = io.BytesIO(), io.BytesIO()
        executor = CommandExecutor(tee=True, stdout_sink=out, stderr_sink=err)
        result = executor.execute("echo hello; echo oops >&2")
        assert out.getvalue() == result.stdout == b"hello\n"
        assert err.getvalue() == result.stderr == b"oops\n"

    def test_broken_sink_keeps_capturing(self) -> None:
        """A sink that fails does not lose captured output."""
        sink = io.BytesIO()
        sink.close()
        executor = CommandExecutor(tee=True, stdout_sink=sink, stderr_sink=io.BytesIO())
        result = executor.execute("echo still here")
        assert result.stdout == b"still here\n"


# =============================================================================
# Exit Status and Failures
# =============================================================================


class TestExitStatus:
    """Tests for exit codes."""

    def test_nonzero_is_a_result(self, executor: CommandExecutor) -> None:
        """A failing command is not an error."""
        result = executor.execute("echo partial; exit 3")
        assert result.exit_code == 3
        assert result.stdout == b"partial\n"
        assert not result.success

    def test_killed_by_signal(self, executor: CommandExecutor) -> None:
        """Death by signal shows as a negative exit code."""
        result = executor.execute("kill -TERM $$")
        assert result.exit_code == -15


class TestFailures:
    """Tests for spawn failures and interruption."""

    def test_missing_shell(self) -> None:
        """An unusable shell is SpawnFailedError."""
        executor = CommandExecutor(shell="/nonexistent/shell", tee=False)
        with pytest.raises(SpawnFailedError) as exc_info:
            executor.execute("echo hi")
        assert exc_info.value.context["command"] == "echo hi"

    def test_missing_working_dir(self, executor: CommandExecutor, temp_dir: Path) -> None:
        """A missing working directory is SpawnFailedError."""
        with pytest.raises(SpawnFailedError):
            executor.execute("echo hi", temp_dir / "missing")

    def test_child_interrupted(self, executor: CommandExecutor) -> None:
        """A child killed by SIGINT means the run was interrupted."""
        with pytest.raises(InterruptedRunError):
            executor.execute("echo before; kill -INT $$")

    def test_cancel_from_another_thread(self, executor: CommandExecutor) -> None:
        """cancel() aborts the running command."""
        timer = threading.Timer(0.2, executor.cancel)
        timer.start()
        try:
            with pytest.raises(InterruptedRunError):
                executor.execute("sleep 5")
        finally:
            timer.cancel()

    def test_cancel_while_background_job_holds_pipes(self, executor: CommandExecutor) -> None:
        """cancel() returns promptly even when a background job keeps stdout open."""
        timer = threading.Timer(0.3, executor.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(InterruptedRunError):
                executor.execute("sleep 10 & echo hi")
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5

    def test_ctrl_c_while_draining_output(
        self, executor: CommandExecutor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Ctrl-C after the shell exited but before the pipes closed is an interruption."""

        def interrupted(self, pumps) -> None:
            raise KeyboardInterrupt

        monkeypatch.setattr(CommandExecutor, "_join_pumps", interrupted)
        with pytest.raises(InterruptedRunError):
            executor.execute("echo hi")

    def test_cancel_right_after_spawn(
        self, executor: CommandExecutor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A cancel that lands before output capture starts still aborts the run."""
        original_start = _StreamPump.start

        def start(pump: _StreamPump) -> None:
            executor.cancel()
            original_start(pump)

        monkeypatch.setattr(_StreamPump, "start", start)
        begun = time.monotonic()
        with pytest.raises(InterruptedRunError):
            executor.execute("sleep 5")
        assert time.monotonic() - begun < 4

    def test_cancel_when_idle(self, executor: CommandExecutor) -> None:
        """cancel() with nothing running is a no-op."""
        executor.cancel()
        assert executor.execute("echo ok").stdout == b"ok\n"
