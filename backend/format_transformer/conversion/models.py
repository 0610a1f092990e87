"""Conversion request/response models."""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from format_transformer.config import FORMAT_MAP


class TaskStatus(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"


class Category(str, Enum):
    IMAGES = "images"
    VIDEOS = "videos"
    AUDIO = "audio"
    DOCUMENTS = "documents"

    @classmethod
    def parse(cls, value) -> Optional["Category"]:
        """Return the matching category or None for anything unknown."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


class SupportedFormats:
    IMAGES = FORMAT_MAP["images"]
    VIDEOS = FORMAT_MAP["videos"]
    AUDIO = FORMAT_MAP["audio"]
    DOCUMENTS = FORMAT_MAP["documents"]

    _BY_EXTENSION = {fmt: category for category, formats in FORMAT_MAP.items() for fmt in formats}

    @classmethod
    def detect_category(cls, filename: str) -> Optional[Category]:
        """Category owning the file's extension, e.g. 'clip.MOV' -> videos."""
        ext = Path(filename or "").suffix.lstrip(".").lower()
        if not ext:
            return None
        category = cls._BY_EXTENSION.get(ext)
        return Category(category) if category else None


@dataclass(frozen=True)
class ConversionTask:
    """One file to convert. Immutable once submitted; options stay a raw dict and are
    validated by the category converter inside the worker."""

    source_path: str
    output_path: str
    target_format: str
    category: str
    options: dict = field(default_factory=dict)
    tool_path: Optional[str] = None
    task_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def format(self) -> str:
        return self.target_format.strip().lstrip(".").lower()


@dataclass(frozen=True)
class ProgressEvent:
    value: int


@dataclass(frozen=True)
class ConversionResult:
    success: bool
    message: str
    output_path: Optional[str] = None
    extra: Optional[dict] = None

    @classmethod
    def succeeded(cls, output_path: str, extra: Optional[dict] = None) -> "ConversionResult":
        return cls(success=True, message="Conversion completed", output_path=output_path, extra=extra)

    @classmethod
    def failed(cls, message: str) -> "ConversionResult":
        return cls(success=False, message=message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            out["output_path"] = self.output_path
            out["extra"] = self.extra
        return out


class TaskState:
    """In-memory task state for progress tracking."""

    def __init__(self, task: ConversionTask):
        self.task = task
        self.task_id = task.task_id
        self.status = TaskStatus.PENDING
        self.progress: int = 0
        self.result: Optional[ConversionResult] = None
        self.input_size: Optional[int] = None
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "filename": Path(self.task.source_path).name,
            "category": self.task.category,
            "target_format": self.task.format,
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result.to_dict() if self.result else None,
        }
