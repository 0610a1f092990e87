from __future__ import annotations

import pytest

from conftest import posix_only
from format_transformer.conversion import process
from format_transformer.conversion.exceptions import DependencyMissingError, ToolExecutionError, ToolLaunchError

pytestmark = posix_only


def test_run_tool_captures_output():
    result = process.run_tool("sh", ["sh", "-c", "echo out; echo err >&2"])
    assert result.returncode == 0
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_run_tool_nonzero_exit_carries_output_tail():
    with pytest.raises(ToolExecutionError) as excinfo:
        process.run_tool("sh", ["sh", "-c", "echo 'bad input' >&2; exit 3"])
    err = excinfo.value
    assert err.returncode == 3
    assert err.tool == "sh"
    assert "exited with code 3" in str(err)
    assert "bad input" in str(err)


def test_run_tool_missing_executable_is_launch_error(tmp_path):
    with pytest.raises(ToolLaunchError) as excinfo:
        process.run_tool("Nothing", [str(tmp_path / "no-such-tool")])
    assert isinstance(excinfo.value, DependencyMissingError)
    assert isinstance(excinfo.value.os_error, FileNotFoundError)


def test_run_tool_timeout_kills_process():
    with pytest.raises(ToolExecutionError, match="timed out"):
        process.run_tool("sleep", ["sleep", "5"], timeout=0.2)
    assert not process._active


def test_stream_tool_splits_carriage_returns():
    lines = []
    process.stream_tool("sh", ["sh", "-c", r"printf 'one\rtwo\nthree\n' >&2"], lines.append)
    assert lines == ["one", "two", "three"]


def test_stream_tool_nonzero_exit():
    with pytest.raises(ToolExecutionError) as excinfo:
        process.stream_tool("sh", ["sh", "-c", "echo broken >&2; exit 1"], lambda line: None)
    assert "broken" in str(excinfo.value)


def test_check_tool_reports_missing_dependency(tmp_path):
    with pytest.raises(DependencyMissingError, match="PATH"):
        process.check_tool("Fake", str(tmp_path / "fake"))


def test_check_tool_accepts_working_tool(make_tool):
    tool = make_tool("fake", "echo 'Fake 1.0'")
    process.check_tool("Fake", tool)


def test_terminate_active_kills_running_tools():
    proc = process._launch("sleep", ["sleep", "10"])
    assert process.terminate_active() == 1
    assert proc.wait(timeout=5) != 0
    assert process.terminate_active() == 0
