"""Progress estimation: parsed from tool output where possible, staged otherwise."""
import math
import re
from typing import Optional

# Stage markers (percent)
TASK_STARTED = 5
TASK_DONE = 100
STREAM_CAP = 95

IMAGE_TOOL_READY = 20
IMAGE_SINGLE_PASS = 50
ICO_BAND_START = 20
ICO_BAND_SPAN = 60
ICO_COMBINE = 85

DOCUMENT_CLI_START = 30
DOCUMENT_CLI_DONE = 80
DOCUMENT_FALLBACK_START = 40
DOCUMENT_FALLBACK_DONE = 90

_DURATION_RE = re.compile(r"Duration: (\d{2}):(\d{2}):(\d{2})")
_TIME_RE = re.compile(r"time=(\d{2}):(\d{2}):(\d{2})")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def hms_to_seconds(hours, minutes, seconds) -> int:
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds)


def band_progress(step: int, total: int, start: int = ICO_BAND_START, span: int = ICO_BAND_SPAN) -> int:
    """Progress after `step` of `total` equal steps spread over [start, start + span]."""
    if total <= 0:
        return start
    return start + _round_half_up(step / total * span)


class MediaProgressParser:
    """Turns FFmpeg's diagnostic stream into percentages.

    The first `Duration: HH:MM:SS` seen fixes the total; every later
    `time=HH:MM:SS` that moves forward yields a new value, capped at 95 so
    that 100 only ever means the process has exited cleanly.
    """

    def __init__(self):
        self.total_seconds = 0
        self.current_seconds = 0

    def feed(self, text: str) -> Optional[int]:
        if not self.total_seconds:
            m = _DURATION_RE.search(text)
            if m:
                self.total_seconds = hms_to_seconds(*m.groups())
        matches = _TIME_RE.findall(text)
        if not matches or not self.total_seconds:
            return None
        current = hms_to_seconds(*matches[-1])
        if current <= self.current_seconds:
            return None
        self.current_seconds = current
        return min(STREAM_CAP, _round_half_up(current / self.total_seconds * 100))


class ProgressTracker:
    """Consumer-side clamp: displayed progress never goes backwards."""

    def __init__(self, initial: int = 0):
        self.value = initial

    def advance(self, value) -> Optional[int]:
        """Return the new value if it moves progress forward, else None."""
        try:
            value = int(value)
        except (TypeError, ValueError):
            return None
        value = max(0, min(100, value))
        if value <= self.value:
            return None
        self.value = value
        return value
