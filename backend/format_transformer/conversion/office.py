"""In-memory document conversion: bytes in, bytes out.

Drives a private headless LibreOffice instance in a scratch directory with its
own user profile, so it works even when the suite is not on PATH (well-known
install locations are searched) or a desktop instance holds the default
profile lock.
"""
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from format_transformer.config import SOFFICE_CANDIDATES
from format_transformer.conversion.exceptions import DependencyMissingError, ToolExecutionError
from format_transformer.conversion.process import run_tool

logger = logging.getLogger("transformer.office")

TOOL_NAME = "LibreOffice"
CONVERT_TIMEOUT = 300


def find_soffice() -> Optional[str]:
    for candidate in SOFFICE_CANDIDATES:
        if candidate and os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return shutil.which("soffice") or shutil.which("libreoffice")


def convert_bytes(data: bytes, target_format: str, source_name: str = "source") -> bytes:
    """Convert document bytes to `target_format` (e.g. 'pdf' or 'pdf:writer_pdf_Export')."""
    soffice = find_soffice()
    if not soffice:
        raise DependencyMissingError(
            "Could not find soffice binary in any known LibreOffice location",
            tool=TOOL_NAME,
            error_type="missing_dependency",
        )
    ext = target_format.split(":", 1)[0].lstrip(".").lower()
    workdir = Path(tempfile.mkdtemp(prefix="ft_office_"))
    try:
        suffix = Path(source_name).suffix
        src = workdir / f"source{suffix}"
        src.write_bytes(data)
        profile = (workdir / "profile").as_uri()
        run_tool(TOOL_NAME, [
            soffice,
            f"-env:UserInstallation={profile}",
            "--headless",
            "--convert-to", target_format,
            "--outdir", str(workdir),
            str(src),
        ], cwd=str(workdir), timeout=CONVERT_TIMEOUT)
        out = workdir / f"source.{ext}"
        if not out.is_file():
            raise ToolExecutionError(f"{TOOL_NAME} produced no .{ext} output", tool=TOOL_NAME)
        return out.read_bytes()
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
