"""Maps a task's category to the converter that handles it."""
import logging
import shutil
from typing import Callable, NamedTuple, Optional

from format_transformer.conversion.document import convert_document
from format_transformer.conversion.image import convert_image
from format_transformer.conversion.media import convert_audio, convert_video
from format_transformer.conversion.models import Category, ConversionTask

logger = logging.getLogger("transformer.dispatch")

ProgressCallback = Callable[[int], None]


class Handler(NamedTuple):
    label: str
    run: Callable[[ConversionTask, ProgressCallback], Optional[dict]]


def _images(task: ConversionTask, on_progress: ProgressCallback) -> Optional[dict]:
    return convert_image(task.source_path, task.output_path, task.format, task.options, on_progress)


def _videos(task: ConversionTask, on_progress: ProgressCallback) -> None:
    convert_video(task.source_path, task.output_path, task.format, task.options, task.tool_path, on_progress)


def _audio(task: ConversionTask, on_progress: ProgressCallback) -> None:
    convert_audio(task.source_path, task.output_path, task.format, task.options, task.tool_path, on_progress)


def _documents(task: ConversionTask, on_progress: ProgressCallback) -> None:
    convert_document(task.source_path, task.output_path, task.target_format, on_progress)


def _copy(task: ConversionTask, on_progress: ProgressCallback) -> None:
    logger.info("Unknown category %r, copying %s unchanged", task.category, task.source_path)
    shutil.copyfile(task.source_path, task.output_path)


HANDLERS = {
    Category.IMAGES: Handler("Image", _images),
    Category.VIDEOS: Handler("Video", _videos),
    Category.AUDIO: Handler("Audio", _audio),
    Category.DOCUMENTS: Handler("Document", _documents),
}
COPY_HANDLER = Handler("File", _copy)


def get_handler(category) -> Handler:
    """Handler for a category; anything unknown is copied byte for byte."""
    parsed = Category.parse(category)
    if parsed is None:
        return COPY_HANDLER
    return HANDLERS[parsed]
