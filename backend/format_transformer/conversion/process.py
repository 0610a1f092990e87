"""Runs external tools (ImageMagick, FFmpeg, LibreOffice) and translates their failures."""
import logging
import subprocess
import sys
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from format_transformer.conversion.exceptions import DependencyMissingError, ToolExecutionError, ToolLaunchError

logger = logging.getLogger("transformer.process")

OUTPUT_TAIL_LINES = 20

_active: set[subprocess.Popen] = set()
_active_lock = threading.Lock()


@dataclass
class ToolResult:
    returncode: int
    stdout: str
    stderr: str


def _popen_kwargs() -> dict:
    # No console window flashing up for every tool call on Windows
    if sys.platform == "win32":
        startupinfo = subprocess.STARTUPINFO()
        startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        return {"startupinfo": startupinfo, "creationflags": subprocess.CREATE_NO_WINDOW}
    return {}


def _launch(name: str, args: list[str], **kwargs) -> subprocess.Popen:
    logger.debug("Running %s: %s", name, " ".join(args))
    try:
        proc = subprocess.Popen(args, **_popen_kwargs(), **kwargs)
    except FileNotFoundError as e:
        raise ToolLaunchError(f"{name} not found ({args[0]}): {e}", tool=name, os_error=e) from e
    except OSError as e:
        raise ToolLaunchError(f"Cannot start {name} ({args[0]}): {e}", tool=name, os_error=e) from e
    with _active_lock:
        _active.add(proc)
    return proc


def _release(proc: subprocess.Popen) -> None:
    with _active_lock:
        _active.discard(proc)


def _tail(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return "\n".join(lines[-OUTPUT_TAIL_LINES:])


def _check_returncode(name: str, returncode: int, stderr: str, stdout: str = "") -> None:
    if returncode == 0:
        return
    output = _tail(stderr or stdout)
    message = f"{name} exited with code {returncode}"
    if output:
        message = f"{message}: {output}"
    raise ToolExecutionError(message, tool=name, output=output, returncode=returncode)


def run_tool(name: str, args: list[str], cwd: Optional[str] = None, timeout: Optional[float] = None) -> ToolResult:
    """Run a tool to completion and capture its output.

    Raises ToolLaunchError when the executable cannot be started and
    ToolExecutionError when it exits non-zero.
    """
    proc = _launch(
        name,
        args,
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        stdout, stderr = proc.communicate()
        raise ToolExecutionError(f"{name} timed out after {timeout}s", tool=name, output=_tail(stderr))
    finally:
        _release(proc)
    _check_returncode(name, proc.returncode, stderr, stdout)
    return ToolResult(proc.returncode, stdout, stderr)


def stream_tool(name: str, args: list[str], on_stderr_line: Callable[[str], None]) -> ToolResult:
    """Run a tool and hand every line of its error stream to a callback as it arrives.

    FFmpeg redraws its status line with carriage returns; text mode splits on
    those too, so each status update arrives as its own line.
    """
    proc = _launch(
        name,
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
    try:
        for raw_line in proc.stderr:
            line = raw_line.rstrip()
            if not line:
                continue
            tail.append(line)
            on_stderr_line(line)
        returncode = proc.wait()
    except BaseException:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        raise
    finally:
        if proc.stderr:
            proc.stderr.close()
        _release(proc)
    stderr = "\n".join(tail)
    _check_returncode(name, returncode, stderr)
    return ToolResult(returncode, "", stderr)


def check_tool(name: str, binary: str, version_args: Optional[list[str]] = None) -> None:
    """Fail fast with a DependencyMissingError when the tool does not answer a version query."""
    args = [binary] + (version_args if version_args is not None else ["-version"])
    try:
        run_tool(name, args, timeout=30)
    except ToolLaunchError as e:
        raise DependencyMissingError(
            f"{name} ({binary}) was not found. Install {name} and make sure '{binary}' is on PATH.",
            tool=name,
            error_type="missing_dependency",
        ) from e
    except ToolExecutionError as e:
        raise DependencyMissingError(
            f"{name} ({binary}) is installed but not usable: {e}",
            tool=name,
            error_type="missing_dependency",
        ) from e


def terminate_active() -> int:
    """Kill every tool process started by this process. Returns how many were still running."""
    with _active_lock:
        procs = list(_active)
        _active.clear()
    killed = 0
    for proc in procs:
        if proc.poll() is None:
            try:
                proc.kill()
                killed += 1
            except OSError as e:
                logger.debug("Could not kill pid %s: %s", proc.pid, e)
    return killed
