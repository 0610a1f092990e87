"""API routes for staging files, submitting conversions and polling their progress."""
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Body, File, HTTPException, Query, UploadFile

from format_transformer.config import FORMAT_MAP, ICO_SIZE_CHOICES, MAX_UPLOAD_SIZE_BYTES, VIDEO_PRESETS
from format_transformer.conversion.models import ConversionTask
from format_transformer.conversion.probe import probe_file, tool_status
from format_transformer.conversion.service import get_conversion_service
from format_transformer.db import clear_history, get_history, get_history_stats
from format_transformer.staging import new_staging_path

logger = logging.getLogger("transformer.api")
router = APIRouter(prefix="/api", tags=["transformer"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/formats")
def get_formats():
    """Target formats per category plus the option choices the UI offers."""
    return {
        "categories": {category: [f.upper() for f in formats] for category, formats in FORMAT_MAP.items()},
        "ico_sizes": ICO_SIZE_CHOICES,
        "video_presets": VIDEO_PRESETS,
    }


@router.get("/tools")
def get_tools():
    """Resolved paths of the external tools (null when missing)."""
    return tool_status()


@router.post("/file-info")
def file_info(path: str = Body(..., embed=True)):
    """Size, detected category and, for images, dimensions of a local file."""
    try:
        return probe_file(path)
    except FileNotFoundError:
        raise HTTPException(404, "File not found")


@router.post("/stage")
async def stage_file(file: UploadFile = File(...)):
    """Copy a dropped file into the staging area; the returned path can be converted
    and is deleted once that conversion finishes."""
    max_mb = MAX_UPLOAD_SIZE_BYTES // (1024 * 1024)
    dest = new_staging_path(file.filename or "file")
    try:
        total = 0
        with open(dest, "wb") as f:
            while chunk := await file.read(1024 * 1024):
                total += len(chunk)
                if total > MAX_UPLOAD_SIZE_BYTES:
                    raise HTTPException(413, f"File too large (max {max_mb} MB)")
                f.write(chunk)
    except HTTPException:
        dest.unlink(missing_ok=True)
        raise
    except Exception as e:
        logger.exception("Staging failed: %s", e)
        dest.unlink(missing_ok=True)
        raise HTTPException(500, "Staging failed")
    info = probe_file(str(dest))
    info["file_name"] = file.filename
    return info


@router.post("/convert")
def convert(
    source_path: str = Body(...),
    output_path: str = Body(...),
    target_format: str = Body(...),
    category: str = Body(...),
    options: Optional[dict] = Body(None),
):
    """Start a conversion. Poll /api/task/{task_id} for progress and the result."""
    if not Path(source_path).is_file():
        raise HTTPException(404, "Source file not found")
    out_dir = Path(output_path).parent
    if not out_dir.is_dir():
        raise HTTPException(400, f"Output directory does not exist: {out_dir}")
    if not target_format.strip():
        raise HTTPException(400, "target_format is required")
    task = ConversionTask(
        source_path=source_path,
        output_path=output_path,
        target_format=target_format,
        category=category,
        options=options or {},
    )
    state = get_conversion_service().submit(task)
    return state.to_dict()


@router.get("/task/{task_id}")
def get_task_status(task_id: str):
    """Conversion status, progress (never decreasing) and, once finished, the result."""
    state = get_conversion_service().get_task(task_id)
    if not state:
        raise HTTPException(404, "Task not found")
    return state.to_dict()


@router.get("/history")
def history(limit: int = Query(50, ge=1, le=500)):
    return {"conversions": get_history(limit=limit)}


@router.get("/history/stats")
def history_stats():
    return get_history_stats()


@router.delete("/history")
def history_delete():
    removed = clear_history()
    return {"ok": True, "removed": removed}
