"""
Pytest configuration and fixtures
"""
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, Dict, Union

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep rotating log files out of the source tree.
os.environ.setdefault("PURGE_LOG_DIR", tempfile.mkdtemp(prefix="purge-logs-"))

from duplicate_purger import DuplicatePurger, PurgeReport, RunConfiguration, get_logger  # noqa: E402

# Bind the console handler to the session-wide stream, not a per-test capture.
get_logger()


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, Union[str, bytes]], Path]:
    """Create a file under tmp_path, making parent directories as needed."""

    def _write(relative: str, content: Union[str, bytes]) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def run_purge() -> Callable[..., PurgeReport]:
    """Run a full scan against a directory and return its report."""

    def _run(directory: Path, *, live_run: bool = False, show_progress: bool = False) -> PurgeReport:
        config = RunConfiguration(
            directory=directory,
            show_progress=show_progress,
            live_run=live_run,
        )
        return DuplicatePurger(config).scan_and_dispose()

    return _run


@pytest.fixture
def snapshot() -> Callable[[Path], Dict[str, bytes]]:
    """Map every regular file under a directory to its content."""

    def _snapshot(directory: Path) -> Dict[str, bytes]:
        return {
            str(path.relative_to(directory)): path.read_bytes()
            for path in sorted(directory.rglob("*"))
            if path.is_file() and not path.is_symlink()
        }

    return _snapshot


@pytest.fixture
def blocked_log_dirs(tmp_path: Path, monkeypatch) -> Path:
    """Point every log directory candidate at a regular file."""
    import duplicate_purger

    blocked = tmp_path / "blocked"
    blocked.mkdir()
    for name in ("env-logs", "module-logs", "user-logs"):
        (blocked / name).write_text("not a directory")
    monkeypatch.setenv(duplicate_purger.LOG_DIR_ENV, str(blocked / "env-logs"))
    monkeypatch.setattr(duplicate_purger, "DEFAULT_LOG_DIR", blocked / "module-logs")
    monkeypatch.setattr(duplicate_purger, "USER_LOG_DIR", blocked / "user-logs")
    return blocked
