"""Conversion task controller: runs every task in its own worker process and relays progress."""
import dataclasses
import logging
import multiprocessing
import os
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterator, Optional, Union

from format_transformer.config import (
    MAX_WORKERS,
    MP_START_METHOD,
    WORKER_JOIN_TIMEOUT,
    WORKER_POLL_INTERVAL,
    resolve_ffmpeg_path,
)
from format_transformer.conversion.models import (
    Category,
    ConversionResult,
    ConversionTask,
    ProgressEvent,
    TaskState,
    TaskStatus,
)
from format_transformer.conversion.progress import ProgressTracker
from format_transformer.conversion.worker import task_main
from format_transformer.db import record_conversion
from format_transformer.staging import release_staged

logger = logging.getLogger("transformer.service")

ProgressCallback = Callable[[ProgressEvent], None]
DoneCallback = Callable[[ConversionResult], None]


class ConversionService:
    """Runs conversions out of process, one worker process per task.

    A crash, hang or hard exit inside a converter only ever affects that
    task's worker; the supervising thread turns it into a Failure result.
    """

    def __init__(self, max_workers: int = MAX_WORKERS, start_method: str = MP_START_METHOD,
                 record_history: bool = True):
        self._tasks: dict[str, TaskState] = {}
        self._futures: dict[str, Future] = {}
        self._done_callbacks: dict[str, Optional[DoneCallback]] = {}
        self._workers: dict[str, multiprocessing.process.BaseProcess] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="conversion")
        self._mp = multiprocessing.get_context(start_method)
        self._record_history = record_history
        self._closed = False
        logger.info("ConversionService initialized with max_workers=%s start_method=%s", max_workers, start_method)

    def get_task(self, task_id: str) -> Optional[TaskState]:
        return self._tasks.get(task_id)

    def submit(
        self,
        task: ConversionTask,
        on_progress: Optional[ProgressCallback] = None,
        on_done: Optional[DoneCallback] = None,
    ) -> TaskState:
        """Schedule a task. Progress and the single result arrive through the callbacks."""
        if self._closed:
            raise RuntimeError("ConversionService is shut down")
        if not task.tool_path and Category.parse(task.category) in (Category.VIDEOS, Category.AUDIO):
            task = dataclasses.replace(task, tool_path=resolve_ffmpeg_path())
        state = TaskState(task)
        try:
            state.input_size = os.path.getsize(task.source_path)
        except OSError:
            state.input_size = None
        with self._lock:
            self._tasks[task.task_id] = state
            self._done_callbacks[task.task_id] = on_done
            self._futures[task.task_id] = self._executor.submit(self._supervise, state, on_progress, on_done)
        logger.info("Queued %s: %s -> %s (%s)", task.task_id[:8], task.source_path, task.format, task.category)
        return state

    def run(self, task: ConversionTask) -> Iterator[Union[ProgressEvent, ConversionResult]]:
        """Yield non-decreasing ProgressEvents, then exactly one ConversionResult."""
        events: queue.Queue = queue.Queue()
        self.submit(task, on_progress=events.put, on_done=events.put)
        while True:
            item = events.get()
            yield item
            if isinstance(item, ConversionResult):
                return

    def convert(self, task: ConversionTask, on_progress: Optional[ProgressCallback] = None) -> ConversionResult:
        """Blocking conversion; returns the result."""
        result = None
        for item in self.run(task):
            if isinstance(item, ConversionResult):
                result = item
            elif on_progress:
                on_progress(item)
        return result

    def _supervise(self, state: TaskState, on_progress: Optional[ProgressCallback],
                   on_done: Optional[DoneCallback]) -> None:
        tracker = ProgressTracker()

        def progress(value: int) -> None:
            new_value = tracker.advance(value)
            if new_value is None:
                return
            state.progress = new_value
            if on_progress:
                _call_safely(on_progress, ProgressEvent(new_value))

        try:
            result = self._run_in_worker(state, progress)
        except Exception as e:
            logger.exception("Could not run worker for task %s", state.task_id)
            result = ConversionResult.failed(f"Conversion worker could not be started: {e}")
        self._finish(state, result, on_done)

    def _run_in_worker(self, state: TaskState, progress: Callable[[int], None]) -> ConversionResult:
        events = self._mp.Queue()
        proc = self._mp.Process(
            target=task_main,
            args=(state.task, events),
            name=f"convert-{state.task_id[:8]}",
            daemon=True,
        )
        state.status = TaskStatus.CONVERTING
        state.started_at = time.time()
        proc.start()
        with self._lock:
            self._workers[state.task_id] = proc
        logger.debug("Worker pid %s started for task %s", proc.pid, state.task_id[:8])
        try:
            while True:
                try:
                    message = events.get(timeout=WORKER_POLL_INTERVAL)
                except queue.Empty:
                    if proc.is_alive():
                        continue
                    # Exited: anything it sent before dying is still in the pipe
                    try:
                        message = events.get(timeout=WORKER_POLL_INTERVAL)
                    except queue.Empty:
                        logger.error("Worker for task %s died with exit code %s", state.task_id[:8], proc.exitcode)
                        return ConversionResult.failed(
                            f"Conversion worker exited unexpectedly (exit code {proc.exitcode})"
                        )
                if isinstance(message, ProgressEvent):
                    progress(message.value)
                elif isinstance(message, ConversionResult):
                    return message
                else:
                    logger.warning("Ignoring unexpected worker message: %r", message)
        finally:
            proc.join(timeout=WORKER_JOIN_TIMEOUT)
            if proc.is_alive():
                logger.warning("Worker pid %s still alive after result, terminating", proc.pid)
                proc.terminate()
                proc.join(timeout=WORKER_JOIN_TIMEOUT)
            events.close()
            with self._lock:
                self._workers.pop(state.task_id, None)

    def _finish(self, state: TaskState, result: ConversionResult, on_done: Optional[DoneCallback]) -> None:
        with self._lock:
            if state.finished_at is not None:
                return
            state.finished_at = time.time()
            self._futures.pop(state.task_id, None)
            self._done_callbacks.pop(state.task_id, None)
        status = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
        if result.success:
            logger.info("Task %s completed: %s", state.task_id[:8], result.output_path)
        else:
            logger.warning("Task %s failed: %s", state.task_id[:8], result.message)
        release_staged(state.task.source_path)
        if self._record_history:
            self._record(state, status, result)
        # Published last: a visible result means cleanup and history are done
        if result.success:
            state.progress = 100
        state.status = status
        state.result = result
        if on_done:
            _call_safely(on_done, result)

    def _record(self, state: TaskState, status: TaskStatus, result: ConversionResult) -> None:
        task = state.task
        output_bytes = None
        if result.success:
            try:
                output_bytes = os.path.getsize(task.output_path)
            except OSError:
                pass
        try:
            record_conversion(
                task.task_id,
                os.path.basename(task.source_path),
                task.category,
                task.format,
                status.value,
                message=result.message,
                output_path=result.output_path,
                input_bytes=state.input_size,
                output_bytes=output_bytes,
                started_at=state.started_at,
                finished_at=state.finished_at,
            )
        except Exception as e:
            logger.warning("Could not record history for task %s: %s", task.task_id[:8], e)

    def shutdown(self, wait: bool = False) -> None:
        """Terminate running workers (and their tool processes); fail tasks that never started."""
        self._closed = True
        with self._lock:
            workers = list(self._workers.values())
            pending = [(self._tasks[tid], f, self._done_callbacks.get(tid)) for tid, f in self._futures.items()]
        for state, future, on_done in pending:
            if future.cancel():
                self._finish(state, ConversionResult.failed("Conversion cancelled: application is shutting down"), on_done)
        for proc in workers:
            if proc.is_alive():
                logger.info("Terminating worker pid %s", proc.pid)
                proc.terminate()
        self._executor.shutdown(wait=wait)


def _call_safely(callback: Callable, arg) -> None:
    try:
        callback(arg)
    except Exception:
        logger.exception("Progress/result callback raised")


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service


def shutdown_conversion_service() -> None:
    global _conversion_service
    if _conversion_service is not None:
        _conversion_service.shutdown()
        _conversion_service = None
