from .models import Category, ConversionResult, ConversionTask, ProgressEvent, SupportedFormats, TaskStatus
from .service import ConversionService

__all__ = [
    "Category",
    "ConversionResult",
    "ConversionService",
    "ConversionTask",
    "ProgressEvent",
    "SupportedFormats",
    "TaskStatus",
]
