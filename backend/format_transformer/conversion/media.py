"""Video and audio conversion through FFmpeg with time-based progress."""
import logging
import re
from pathlib import Path
from typing import Callable, Optional

from format_transformer.config import VIDEO_CODEC_HINTS, VIDEO_PRESETS
from format_transformer.conversion.exceptions import DependencyMissingError, InvalidInputError
from format_transformer.conversion.process import stream_tool
from format_transformer.conversion.progress import MediaProgressParser

logger = logging.getLogger("transformer.media")

TOOL_NAME = "FFmpeg"

_RESOLUTION_RE = re.compile(r"^\s*(-?\d+)\s*[xX:]\s*(-?\d+)\s*$")
_BITRATE_RE = re.compile(r"^\d+(\.\d+)?[kKmM]?$")


def _scale_filter(value) -> Optional[str]:
    """'1280x720' (or '1280:720', '-2x720') -> 'scale=1280:720'."""
    if value is None or not str(value).strip():
        return None
    m = _RESOLUTION_RE.match(str(value))
    if not m:
        raise InvalidInputError(f"Invalid resolution: {value!r} (expected WxH)", tool=TOOL_NAME, error_type="invalid_option")
    width, height = int(m.group(1)), int(m.group(2))
    for side in (width, height):
        if side == 0 or side < -2:
            raise InvalidInputError(f"Invalid resolution: {value!r}", tool=TOOL_NAME, error_type="invalid_option")
    return f"scale={width}:{height}"


def _preset(value) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    preset = str(value).strip().lower()
    if preset not in VIDEO_PRESETS:
        raise InvalidInputError(
            f"Invalid encoding preset: {value!r} (expected one of {', '.join(VIDEO_PRESETS)})",
            tool=TOOL_NAME,
            error_type="invalid_option",
        )
    return preset


def _bitrate(value) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    bitrate = str(value).strip()
    if not _BITRATE_RE.match(bitrate):
        raise InvalidInputError(f"Invalid audio bitrate: {value!r} (e.g. 192k)", tool=TOOL_NAME, error_type="invalid_option")
    return bitrate


def build_ffmpeg_args(
    ffmpeg_path: str,
    source: str,
    destination: str,
    fmt: str,
    resolution: Optional[str] = None,
    preset: Optional[str] = None,
    audio_bitrate: Optional[str] = None,
) -> list[str]:
    args = [ffmpeg_path, "-i", source, "-y"]
    scale = _scale_filter(resolution)
    if scale:
        args += ["-vf", scale]
    preset = _preset(preset)
    if preset:
        args += ["-preset", preset]
    codecs = VIDEO_CODEC_HINTS.get(fmt)
    if codecs:
        args += ["-c:v", codecs[0], "-c:a", codecs[1]]
    bitrate = _bitrate(audio_bitrate)
    if bitrate:
        args += ["-b:a", bitrate]
    args.append(destination)
    return args


def require_ffmpeg(ffmpeg_path: Optional[str]) -> str:
    if not ffmpeg_path:
        raise DependencyMissingError(
            "FFmpeg executable not found. Put ffmpeg (ffmpeg.exe on Windows) into the bin folder "
            "of the project, set FFMPEG_PATH in .env, or install FFmpeg on PATH.",
            tool=TOOL_NAME,
            error_type="missing_dependency",
        )
    return ffmpeg_path


def _option(options: dict, *names):
    for name in names:
        if options.get(name) not in (None, ""):
            return options[name]
    return None


def run_ffmpeg(args: list[str], on_progress: Optional[Callable[[int], None]] = None) -> None:
    """Run FFmpeg, reporting progress parsed from its stderr."""
    parser = MediaProgressParser()

    def handle_line(line: str) -> None:
        value = parser.feed(line)
        if value is not None and on_progress:
            on_progress(value)

    stream_tool(TOOL_NAME, args, handle_line)
    if not parser.total_seconds:
        logger.debug("FFmpeg reported no duration; no intermediate progress for %s", args[-1])


def convert_video(
    source: str,
    destination: str,
    target_format: str,
    options: Optional[dict] = None,
    ffmpeg_path: Optional[str] = None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> None:
    options = options or {}
    args = build_ffmpeg_args(
        require_ffmpeg(ffmpeg_path),
        source,
        destination,
        target_format.strip().lstrip(".").lower(),
        resolution=_option(options, "videoRes", "resolutionSpec"),
        preset=_option(options, "videoPreset", "encodingPreset"),
    )
    run_ffmpeg(args, on_progress)
    logger.info("Converted video %s -> %s", Path(source).name, Path(destination).name)


def convert_audio(
    source: str,
    destination: str,
    target_format: str,
    options: Optional[dict] = None,
    ffmpeg_path: Optional[str] = None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> None:
    options = options or {}
    args = build_ffmpeg_args(
        require_ffmpeg(ffmpeg_path),
        source,
        destination,
        target_format.strip().lstrip(".").lower(),
        audio_bitrate=_option(options, "audioBitrate", "bitrateSpec"),
    )
    run_ffmpeg(args, on_progress)
    logger.info("Converted audio %s -> %s", Path(source).name, Path(destination).name)
