"""File information for the UI: size, category, and image dimensions."""
import logging
import shutil
from pathlib import Path
from typing import Any

from PIL import Image

from format_transformer.config import MAGICK_BINARY, SOFFICE_BINARY, resolve_ffmpeg_path
from format_transformer.conversion import office
from format_transformer.conversion.models import Category, SupportedFormats

logger = logging.getLogger("transformer.probe")


def probe_file(path: str) -> dict[str, Any]:
    """Describe a file. Raises FileNotFoundError when it does not exist."""
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(path)
    category = SupportedFormats.detect_category(p.name)
    info: dict[str, Any] = {
        "path": str(p),
        "file_name": p.name,
        "extension": p.suffix.lstrip(".").lower(),
        "size": p.stat().st_size,
        "category": category.value if category else None,
    }
    if category == Category.IMAGES:
        try:
            with Image.open(p) as img:
                info["width"] = img.width
                info["height"] = img.height
        except Exception as e:
            logger.warning("Could not read image dimensions for %s: %s", p.name, e)
    return info


def tool_status() -> dict[str, Any]:
    """Which external tools can be found right now."""
    ffmpeg = resolve_ffmpeg_path()
    return {
        "imagemagick": shutil.which(MAGICK_BINARY),
        "ffmpeg": ffmpeg,
        "libreoffice": shutil.which(SOFFICE_BINARY) or office.find_soffice(),
    }
