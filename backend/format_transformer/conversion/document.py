"""Document conversion: LibreOffice CLI first, in-memory conversion as fallback."""
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Optional

from format_transformer.config import SOFFICE_BINARY
from format_transformer.conversion import office
from format_transformer.conversion.exceptions import DocumentConversionError, ToolExecutionError
from format_transformer.conversion.process import run_tool
from format_transformer.conversion.progress import (
    DOCUMENT_CLI_DONE,
    DOCUMENT_CLI_START,
    DOCUMENT_FALLBACK_DONE,
    DOCUMENT_FALLBACK_START,
)

logger = logging.getLogger("transformer.document")

TOOL_NAME = "LibreOffice"
MTIME_SLACK = 1.0


def _normalize_format(target_format: str) -> str:
    # "pdf:writer_pdf_Export" names a filter after the colon; filter names are case-sensitive
    ext, sep, filter_name = target_format.strip().lstrip(".").partition(":")
    return ext.lower() + sep + filter_name


def _extension(target_format: str) -> str:
    return target_format.split(":", 1)[0].strip().lstrip(".").lower()


def find_generated_output(outdir: str, source: str, ext: str, since: Optional[float] = None) -> Optional[str]:
    """Locate the file the suite wrote for `source`.

    The exact `<stem>.<ext>` name is tried first; otherwise the newest file in
    `outdir` whose name starts with the stem and whose extension matches
    (case-insensitively) wins. The source itself never counts, and with
    `since` set neither does any file last modified before the run started.
    """
    stem = Path(source).stem
    exact = os.path.join(outdir, f"{stem}.{ext}")
    if os.path.isfile(exact) and not _same_file(exact, source) and _written_since(exact, since):
        return exact
    candidates = []
    try:
        entries = list(os.scandir(outdir))
    except OSError as e:
        logger.warning("Cannot scan %s: %s", outdir, e)
        return None
    for entry in entries:
        if not entry.is_file() or not entry.name.startswith(stem):
            continue
        if Path(entry.name).suffix.lstrip(".").lower() != ext:
            continue
        if _same_file(entry.path, source) or not _written_since(entry.path, since):
            continue
        candidates.append(entry)
    if not candidates:
        return None
    return max(candidates, key=lambda e: e.stat().st_mtime).path


def _written_since(path: str, since: Optional[float]) -> bool:
    if since is None:
        return True
    try:
        # File timestamps come from a coarser clock than time.time()
        return os.path.getmtime(path) >= since - MTIME_SLACK
    except OSError:
        return False


def _same_file(a: str, b: str) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def _move_into_place(generated: str, destination: str) -> None:
    if os.path.abspath(generated) == os.path.abspath(destination):
        return
    if os.path.exists(destination):
        os.remove(destination)
    shutil.move(generated, destination)


def convert_with_cli(source: str, destination: str, target_format: str) -> None:
    """Strategy 1: `soffice --headless --convert-to` into the destination's directory."""
    outdir = os.path.dirname(os.path.abspath(destination))
    started = time.time()
    run_tool(TOOL_NAME, [
        SOFFICE_BINARY,
        "--headless",
        "--convert-to", target_format,
        "--outdir", outdir,
        source,
    ], timeout=office.CONVERT_TIMEOUT)
    ext = _extension(target_format)
    generated = find_generated_output(outdir, source, ext, since=started)
    if not generated:
        raise ToolExecutionError(
            f"{TOOL_NAME} CLI did not produce a .{ext} file for {Path(source).name}",
            tool=TOOL_NAME,
        )
    _move_into_place(generated, destination)


def convert_with_library(source: str, destination: str, target_format: str,
                         on_progress: Callable[[int], None]) -> None:
    """Strategy 2: read the source into memory and convert the bytes."""
    with open(source, "rb") as f:
        data = f.read()
    converted = office.convert_bytes(data, target_format, source_name=Path(source).name)
    on_progress(DOCUMENT_FALLBACK_DONE)
    with open(destination, "wb") as f:
        f.write(converted)


def convert_document(
    source: str,
    destination: str,
    target_format: str,
    on_progress: Optional[Callable[[int], None]] = None,
) -> None:
    on_progress = on_progress or (lambda value: None)
    target_format = _normalize_format(target_format)

    on_progress(DOCUMENT_CLI_START)
    try:
        convert_with_cli(source, destination, target_format)
        on_progress(DOCUMENT_CLI_DONE)
        logger.info("Converted %s -> %s with the LibreOffice CLI", Path(source).name, Path(destination).name)
        return
    except Exception as e:
        cli_error = e
        logger.warning("LibreOffice CLI conversion failed, falling back: %s", e)

    on_progress(DOCUMENT_FALLBACK_START)
    try:
        convert_with_library(source, destination, target_format, on_progress)
    except Exception as e:
        raise DocumentConversionError(
            f"CLI error: {cli_error}; library error: {e}. "
            f"Make sure LibreOffice is installed and '{SOFFICE_BINARY}' is on PATH.",
            cli_error=str(cli_error),
            library_error=str(e),
        ) from e
    logger.info("Converted %s -> %s with the in-memory fallback", Path(source).name, Path(destination).name)
