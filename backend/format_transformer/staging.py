"""Staging area for dropped/uploaded files. A staged copy belongs to the task that
converts it and is removed once that task has a result."""
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from format_transformer.config import STAGING_DIR

logger = logging.getLogger("transformer.staging")


def _sanitize_filename(name: str) -> str:
    """Safe file name (no path separators, no empty)."""
    name = Path(name or "").name
    s = "".join(c for c in name if c.isalnum() or c in "._- ").strip() or "file"
    return s[-128:]


def new_staging_path(filename: str, staging_dir: Optional[Path] = None) -> Path:
    staging_dir = staging_dir or STAGING_DIR
    staging_dir.mkdir(parents=True, exist_ok=True)
    return staging_dir / f"{uuid.uuid4().hex[:12]}_{_sanitize_filename(filename)}"


def is_staged(path: str, staging_dir: Optional[Path] = None) -> bool:
    staging_dir = (staging_dir or STAGING_DIR).resolve()
    try:
        return Path(path).resolve().parent == staging_dir
    except OSError:
        return False


def release_staged(path: str, staging_dir: Optional[Path] = None) -> None:
    """Delete a staged copy. Failures are logged, never raised."""
    if not is_staged(path, staging_dir):
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove staged file %s: %s", path, e)


def cleanup_stale(max_age_seconds: float = 24 * 3600, staging_dir: Optional[Path] = None) -> int:
    """Remove staged files left behind by a previous run. Returns the number removed."""
    staging_dir = staging_dir or STAGING_DIR
    if not staging_dir.is_dir():
        return 0
    cutoff = time.time() - max_age_seconds
    removed = 0
    for f in staging_dir.iterdir():
        try:
            if f.is_file() and f.stat().st_mtime < cutoff:
                f.unlink()
                removed += 1
        except OSError as e:
            logger.warning("Could not remove stale staged file %s: %s", f, e)
    if removed:
        logger.info("Removed %s stale staged file(s) from %s", removed, staging_dir)
    return removed
