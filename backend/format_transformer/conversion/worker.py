"""Runs a single task inside its own worker process and reports back over a queue."""
import logging
import signal
import sys
from typing import Callable

from format_transformer.conversion.dispatch import get_handler
from format_transformer.conversion.exceptions import ConversionError
from format_transformer.conversion.models import ConversionResult, ConversionTask, ProgressEvent
from format_transformer.conversion.process import terminate_active
from format_transformer.conversion.progress import TASK_DONE, TASK_STARTED

logger = logging.getLogger("transformer.worker")


def run_task(task: ConversionTask, emit: Callable[[object], None]) -> ConversionResult:
    """Convert one task, sending ProgressEvents through `emit`. Never raises."""
    emit(ProgressEvent(TASK_STARTED))
    label = "Conversion"
    try:
        handler = get_handler(task.category)
        label = f"{handler.label} conversion"
        extra = handler.run(task, lambda value: emit(ProgressEvent(int(value))))
    except ConversionError as e:
        logger.error("%s failed for %s: %s", label, task.source_path, e)
        return ConversionResult.failed(f"{label} failed: {e}")
    except Exception as e:
        logger.exception("%s failed unexpectedly for %s", label, task.source_path)
        return ConversionResult.failed(f"{label} failed: {type(e).__name__}: {e}")
    emit(ProgressEvent(TASK_DONE))
    return ConversionResult.succeeded(task.output_path, extra)


def _on_terminate(signum, frame):
    killed = terminate_active()
    logger.warning("Worker received signal %s, killed %s tool process(es)", signum, killed)
    # SystemExit unwinds through the converters' finally blocks (temp file cleanup)
    sys.exit(128 + signum)


def task_main(task: ConversionTask, events) -> None:
    """Worker process entry point: emits progress, then exactly one ConversionResult."""
    signal.signal(signal.SIGTERM, _on_terminate)
    result = run_task(task, events.put)
    events.put(result)
