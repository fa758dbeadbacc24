"""
Pytest configuration and shared fixtures.
"""

import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from fakes import ScriptedRunner
from share_dumper.config import Settings
from share_dumper.dependencies import reset_singletons


@pytest.fixture(autouse=True)
def clean_singletons():
    """Automatically reset singletons before each test."""
    reset_singletons()
    yield
    reset_singletons()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with fast timings and every path inside tmp_path."""
    return Settings(
        _env_file=None,
        log_file_path=str(tmp_path / "logs" / "share_dumper.log"),
        job_log_directory=str(tmp_path / "job-logs"),
        mount_root=str(tmp_path / "Volumes"),
        cancel_grace_seconds=0.5,
        enumeration_retry_delay_seconds=0.0,
        mount_settle_seconds=0.0,
        use_keyring=False,
    )


@pytest.fixture
def make_script(tmp_path) -> Callable[[str, str], Path]:
    """Write an executable Python script and return its path."""

    def _make(name: str, body: str) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    return ScriptedRunner()
