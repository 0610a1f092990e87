"""Pytest configuration.

Settings are read from the environment when `format_transformer.config` is
first imported, so the database, staging area and temp dir are pointed at a
throwaway directory here, before any test module imports the package.

External tools are replaced by small POSIX shell scripts (see `make_tool`),
so these tests do not need ImageMagick, FFmpeg or LibreOffice installed.
"""

from __future__ import annotations

import os
import stat
import sys
import tempfile
from pathlib import Path

import pytest

_SESSION_DIR = Path(tempfile.mkdtemp(prefix="ft_tests_"))
os.environ["DATABASE_URL"] = f"sqlite:///{_SESSION_DIR / 'history.db'}"
os.environ["STAGING_DIR"] = str(_SESSION_DIR / "staging")
os.environ["TEMP_DIR"] = str(_SESSION_DIR / "tmp")
os.environ["BIN_DIR"] = str(_SESSION_DIR / "bin")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
(_SESSION_DIR / "tmp").mkdir(exist_ok=True)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake tools are shell scripts")


@pytest.fixture
def make_tool(tmp_path: Path):
    """Write an executable shell script standing in for an external tool."""

    def _make(name: str, body: str) -> str:
        path = tmp_path / "tools" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n" + body.strip() + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def history_db():
    from format_transformer.db import clear_history, init_db

    init_db()
    clear_history()
    yield
    clear_history()
