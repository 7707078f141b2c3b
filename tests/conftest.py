"""
Pytest configuration and fixtures for rundiff tests.

This module provides shared fixtures used across unit and integration tests.
"""

import logging
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from rundiff.config import RundiffConfig, StorageConfig
from rundiff.executor import ExecutionResult
from rundiff.store import ExecutionStore

ENV_VARS = ("RUNDIFF_DATA_DIR", "RUNDIFF_RETENTION_DAYS", "RUNDIFF_LOG_LEVEL", "RUNDIFF_SHELL")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep RUNDIFF_* settings and root logging from leaking between tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    """A data directory inside the temp dir (not created yet)."""
    return temp_dir / "data"


@pytest.fixture
def store(data_dir: Path) -> Generator[ExecutionStore, None, None]:
    """An open execution store."""
    s = ExecutionStore(data_dir)
    yield s
    s.close()


@pytest.fixture
def make_result() -> Callable[..., ExecutionResult]:
    """Factory for executor results."""

    def factory(
        stdout: bytes = b"",
        stderr: bytes = b"",
        exit_code: int = 0,
        duration_ms: int = 5,
        cwd: str = "/tmp",
    ) -> ExecutionResult:
        return ExecutionResult(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration_ms=duration_ms,
            cwd=cwd,
        )

    return factory


@pytest.fixture
def quiet_config() -> RundiffConfig:
    """Config without background retention, so tests stay deterministic."""
    return RundiffConfig(storage=StorageConfig(background_retention=False))
