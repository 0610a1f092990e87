"""Image conversion through ImageMagick, including multi-resolution ICO synthesis."""
import logging
import os
import uuid
from pathlib import Path
from typing import Callable, Optional

from format_transformer.config import DEFAULT_IMAGE_QUALITY, JPEG_FORMATS, MAGICK_BINARY, TEMP_DIR
from format_transformer.conversion.exceptions import InvalidInputError
from format_transformer.conversion.process import check_tool, run_tool
from format_transformer.conversion.progress import (
    ICO_COMBINE,
    IMAGE_SINGLE_PASS,
    IMAGE_TOOL_READY,
    band_progress,
)

logger = logging.getLogger("transformer.image")

TOOL_NAME = "ImageMagick"


def _optional_int(value, name: str, low: int = 1, high: Optional[int] = None) -> Optional[int]:
    """None/'' mean "not set"; anything else must be an integer within range."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid {name}: {value!r}", error_type="invalid_option")
    if number < low or (high is not None and number > high):
        bounds = f"{low}-{high}" if high is not None else f">= {low}"
        raise InvalidInputError(f"Invalid {name}: {number} (expected {bounds})", error_type="invalid_option")
    return number


def parse_ico_sizes(raw) -> list[int]:
    """Ascending, de-duplicated positive sizes; entries that are not positive integers are dropped."""
    if raw is None:
        return []
    if isinstance(raw, (str, int)):
        raw = [raw]
    sizes = set()
    for item in raw:
        try:
            size = int(item)
        except (TypeError, ValueError):
            continue
        if size > 0:
            sizes.add(size)
    return sorted(sizes)


def build_image_args(source: str, destination: str, fmt: str, options: dict) -> list[str]:
    """Single ImageMagick invocation for every target except sized ICO."""
    args = [MAGICK_BINARY, source]
    width = _optional_int(options.get("width"), "width")
    height = _optional_int(options.get("height"), "height")
    if width or height:
        # An empty side lets ImageMagick keep the aspect ratio on that axis
        args += ["-resize", f"{width or ''}x{height or ''}"]

    if fmt in JPEG_FORMATS:
        quality = _optional_int(options.get("quality"), "quality", 1, 100)
        args += ["-quality", str(quality if quality is not None else DEFAULT_IMAGE_QUALITY)]
    elif fmt == "png":
        args += ["-background", "none", "-flatten"]
    elif fmt == "ico":
        args += ["-background", "none", "-define", "icon:auto-resize"]
    args.append(destination)
    return args


def _snapshot(path: str) -> Optional[tuple[int, int]]:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_size, st.st_mtime_ns)


def _discard_partial_output(destination: str, before: Optional[tuple[int, int]]) -> None:
    """Remove the destination if this attempt created or touched it."""
    after = _snapshot(destination)
    if after is None or after == before:
        return
    try:
        os.remove(destination)
        logger.info("Removed partial output %s", destination)
    except OSError as e:
        logger.warning("Could not remove partial output %s: %s", destination, e)


def _render_ico(
    source: str,
    destination: str,
    sizes: list[int],
    on_progress: Callable[[int], None],
) -> dict:
    tmp_files: list[Path] = []
    prefix = f"ft_tmp_{uuid.uuid4().hex[:8]}"
    try:
        # Sequential on purpose: the combine step needs every layer in order
        for i, size in enumerate(sizes):
            tmp_png = TEMP_DIR / f"{prefix}_{size}_{i}.png"
            run_tool(TOOL_NAME, [
                MAGICK_BINARY, source,
                "-resize", f"{size}x{size}",
                "-background", "none",
                "-gravity", "center",
                "-extent", f"{size}x{size}",
                str(tmp_png),
            ])
            tmp_files.append(tmp_png)
            on_progress(band_progress(i + 1, len(sizes)))

        on_progress(ICO_COMBINE)
        run_tool(TOOL_NAME, [MAGICK_BINARY] + [str(p) for p in tmp_files] + [destination])
    finally:
        for p in tmp_files:
            try:
                p.unlink()
            except OSError:
                pass
    logger.info("Wrote %s with %s layers: %s", destination, len(sizes), sizes)
    return {"icoSizes": [{"width": s, "height": s} for s in sizes]}


def convert_image(
    source: str,
    destination: str,
    target_format: str,
    options: Optional[dict] = None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> Optional[dict]:
    """Convert one image. Returns ICO layer info for ICO targets, else None."""
    options = options or {}
    on_progress = on_progress or (lambda value: None)
    fmt = target_format.strip().lstrip(".").lower()

    check_tool(TOOL_NAME, MAGICK_BINARY)
    on_progress(IMAGE_TOOL_READY)

    if fmt == "ico" and options.get("icoSizes"):
        sizes = parse_ico_sizes(options.get("icoSizes"))
        if not sizes:
            raise InvalidInputError(
                f"Invalid ICO size parameters: {options.get('icoSizes')!r}",
                tool=TOOL_NAME,
                error_type="invalid_ico_sizes",
            )
        before = _snapshot(destination)
        try:
            return _render_ico(source, destination, sizes, on_progress)
        except Exception:
            _discard_partial_output(destination, before)
            raise

    args = build_image_args(source, destination, fmt, options)
    on_progress(IMAGE_SINGLE_PASS)
    before = _snapshot(destination)
    try:
        run_tool(TOOL_NAME, args)
    except Exception:
        _discard_partial_output(destination, before)
        raise
    logger.info("Converted %s -> %s", Path(source).name, Path(destination).name)
    if fmt == "ico":
        return {"icoSizes": None}
    return None
