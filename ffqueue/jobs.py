"""
Job queue for FFQueue.

A strict single-flight FIFO: at most one job is running (or paused) at any
time, and every terminal state immediately dispatches the next queued job.
All state transitions happen on the event loop, so no locking is needed.
"""

import asyncio
import logging
import random
import string
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Set, Tuple

from .errors import FFQueueError, FfmpegExitError
from .models import JobStatus, TranscodeOptions
from .transcoding.progress import Progress

logger = logging.getLogger(__name__)

EVENT_JOB_START = "job-start"
EVENT_JOB_PROGRESS = "job-progress"
EVENT_JOB_DONE = "job-done"
EVENT_JOB_ERROR = "job-error"
EVENT_JOB_CANCELED = "job-canceled"
EVENT_JOB_PAUSED = "job-paused"
EVENT_JOB_RESUMED = "job-resumed"
EVENT_QUEUE_EMPTY = "queue-empty"

EVENTS = (
    EVENT_JOB_START,
    EVENT_JOB_PROGRESS,
    EVENT_JOB_DONE,
    EVENT_JOB_ERROR,
    EVENT_JOB_CANCELED,
    EVENT_JOB_PAUSED,
    EVENT_JOB_RESUMED,
    EVENT_QUEUE_EMPTY,
)

EventCallback = Callable[[Dict[str, Any]], None]
AnyEventCallback = Callable[[str, Dict[str, Any]], None]

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_job_id() -> str:
    """``job_<epoch ms>_<6 base36 chars>``"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"job_{_now_ms()}_{suffix}"


@dataclass
class Job:
    """A transcode job; mutated in place until it reaches a terminal state."""
    id: str
    options: TranscodeOptions
    status: JobStatus = JobStatus.QUEUED
    created_at: int = field(default_factory=_now_ms)
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    last_progress: Optional[Progress] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    fallback_codec: Optional[str] = None
    output_path: Optional[str] = None
    pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "options": self.options.model_dump(mode="json"),
            "status": self.status.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "last_progress": self.last_progress.to_dict() if self.last_progress else None,
            "error": self.error,
            "error_code": self.error_code,
            "fallback_codec": self.fallback_codec,
            "output_path": self.output_path,
            "pid": self.pid,
        }


def serialize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Convert an event payload into JSON-safe data."""
    data: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, (Job, Progress)):
            data[key] = value.to_dict()
        else:
            data[key] = value
    return data


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.cancelled_jobs: int = 0
        self.total_encode_time: float = 0.0
        self.start_time: float = time.time()

    def record_job_complete(self, job: Job) -> None:
        self.total_jobs_processed += 1

        if job.status == JobStatus.COMPLETED:
            self.successful_jobs += 1
            if job.started_at and job.finished_at:
                self.total_encode_time += (job.finished_at - job.started_at) / 1000
        elif job.status == JobStatus.FAILED:
            self.failed_jobs += 1
        elif job.status == JobStatus.CANCELED:
            self.cancelled_jobs += 1

    @property
    def average_encode_time(self) -> float:
        if self.successful_jobs > 0:
            return self.total_encode_time / self.successful_jobs
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_jobs_processed": self.total_jobs_processed,
            "successful_jobs": self.successful_jobs,
            "failed_jobs": self.failed_jobs,
            "cancelled_jobs": self.cancelled_jobs,
            "total_encode_time": round(self.total_encode_time, 3),
            "average_encode_time": round(self.average_encode_time, 3),
        }


class JobQueue:
    """
    Single-concurrency FIFO job queue.

    ``service`` is anything with the FfmpegService surface the queue uses:
    ``transcode(job, on_progress, on_spawn)``, ``cancel(pid)``, ``pause(pid)``
    and ``resume(pid)``.
    """

    def __init__(self, service):
        self.service = service
        self.jobs: Dict[str, Job] = {}
        self.stats = JobStats()

        self._pending: Deque[Job] = deque()
        self._running: Optional[Job] = None
        self._task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._drained = True
        self._idle = asyncio.Event()
        self._idle.set()

        self._listeners: Dict[str, List[EventCallback]] = defaultdict(list)
        self._any_listeners: List[AnyEventCallback] = []
        self._subscribers: Set[asyncio.Queue] = set()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: str, callback: EventCallback) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        try:
            self._listeners[event].remove(callback)
        except ValueError:
            pass

    def on_any(self, callback: AnyEventCallback) -> None:
        self._any_listeners.append(callback)

    async def events(self) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """Yield every ``(event, payload)`` emitted after subscription."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"[Queue] {event} listener error: {e}")

        for callback in list(self._any_listeners):
            try:
                callback(event, payload)
            except Exception as e:
                logger.error(f"[Queue] Event listener error: {e}")

        for queue in self._subscribers:
            queue.put_nowait((event, payload))

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def enqueue(self, options: TranscodeOptions) -> Job:
        """Add a job; it starts immediately if the queue is idle."""
        job = Job(id=generate_job_id(), options=options)
        self.jobs[job.id] = job
        self._pending.append(job)
        logger.info(f"[Queue] Enqueued job {job.id} for {options.input} (queue length {len(self._pending)})")

        if self._running is None:
            self._process_next()
        return job

    def start(self) -> None:
        logger.info(f"[Queue] Start requested (queued={len(self._pending)}, running={self._running is not None})")
        if self._running is None:
            self._process_next()

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a queued, running or paused job.

        A running job's process is signalled and the queue moves on without
        waiting for it to exit. Returns False for unknown or finished jobs.
        """
        job = self.jobs.get(job_id)
        if job is None:
            logger.warning(f"[Queue] Cancel: unknown job {job_id}")
            return False

        if job.status.is_terminal:
            logger.info(f"[Queue] Cancel: job {job_id} already {job.status.value}")
            return False

        if job.status == JobStatus.QUEUED:
            self._pending.remove(job)
            self._finish_canceled(job)
            logger.info(f"[Queue] Removed queued job {job_id}")
            return True

        if job.pid is None or not self.service.cancel(job.pid):
            # Not spawned yet, or the service no longer tracks the process
            if self._task is not None:
                self._task.cancel()

        self._finish_canceled(job)
        logger.info(f"[Queue] Cancelled running job {job_id}")

        if self._running is job:
            self._running = None
            self._task = None
        self._process_next()
        return True

    def pause(self, job_id: str) -> bool:
        """
        Suspend the running job.

        Raises:
            PauseUnsupportedError: on platforms without process suspend
        """
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            logger.warning(f"[Queue] Pause: job {job_id} is not running")
            return False
        if job.pid is None:
            logger.warning(f"[Queue] Pause: job {job_id} has no active process")
            return False

        if not self.service.pause(job.pid):
            logger.warning(f"[Queue] Pause: process for job {job_id} is not active")
            return False
        job.status = JobStatus.PAUSED
        logger.info(f"[Queue] Paused job {job_id}")
        self._emit(EVENT_JOB_PAUSED, {"job": job})
        return True

    def resume(self, job_id: str) -> bool:
        """
        Continue a paused job.

        Raises:
            PauseUnsupportedError: on platforms without process suspend
        """
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.PAUSED:
            logger.warning(f"[Queue] Resume: job {job_id} is not paused")
            return False
        if job.pid is None:
            logger.warning(f"[Queue] Resume: job {job_id} has no active process")
            return False

        if not self.service.resume(job.pid):
            logger.warning(f"[Queue] Resume: process for job {job_id} is not active")
            return False
        job.status = JobStatus.RUNNING
        logger.info(f"[Queue] Resumed job {job_id}")
        self._emit(EVENT_JOB_RESUMED, {"job": job})
        return True

    def clear(self) -> int:
        """Cancel every queued job. The running job is left alone."""
        cleared = 0
        while self._pending:
            job = self._pending.popleft()
            self._finish_canceled(job)
            cleared += 1
        if cleared:
            logger.info(f"[Queue] Cleared {cleared} queued job(s)")
        return cleared

    def get_status(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._pending),
            "running": self._running.to_dict() if self._running else None,
            "active_pid": self._running.pid if self._running else None,
            "stats": self.stats.to_dict(),
        }

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def get_all_jobs(self) -> List[Job]:
        return list(self.jobs.values())

    def get_pending_jobs(self) -> List[Job]:
        return list(self._pending)

    @property
    def running_job(self) -> Optional[Job]:
        return self._running

    async def wait_idle(self) -> None:
        """Wait until nothing is running and nothing is queued."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Cancel everything and wait for in-flight tasks to settle."""
        self.clear()
        if self._running is not None:
            self.cancel(self._running.id)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("[Queue] Stopped")

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _process_next(self) -> None:
        if self._running is not None:
            return

        if not self._pending:
            if not self._drained:
                self._drained = True
                self._idle.set()
                logger.info("[Queue] Queue empty")
                self._emit(EVENT_QUEUE_EMPTY, {})
            return

        job = self._pending.popleft()
        self._drained = False
        self._idle.clear()
        self._running = job
        job.status = JobStatus.RUNNING
        job.started_at = _now_ms()

        logger.info(f"[Queue] Starting job {job.id} ({len(self._pending)} remaining)")
        self._emit(EVENT_JOB_START, {"job": job})

        task = asyncio.create_task(self._execute(job))
        self._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: Job) -> None:
        def on_progress(progress: Progress) -> None:
            if job.status.is_terminal:
                return
            job.last_progress = progress
            self._emit(EVENT_JOB_PROGRESS, {"job": job, "progress": progress})

        def on_spawn(pid: int) -> None:
            job.pid = pid

        try:
            await self.service.transcode(job, on_progress, on_spawn)
        except asyncio.CancelledError:
            if not job.status.is_terminal:
                self._finish_canceled(job)
        except Exception as e:
            if not job.status.is_terminal:
                self._finish_failed(job, e)
        else:
            if not job.status.is_terminal:
                self._finish_completed(job)
        finally:
            # A cancelled job has already handed the slot to the next one
            if self._running is job:
                self._running = None
                self._task = None
                self._process_next()

    def _finish_completed(self, job: Job) -> None:
        job.status = JobStatus.COMPLETED
        job.finished_at = _now_ms()
        self.stats.record_job_complete(job)
        logger.info(f"[Queue] Job {job.id} completed in {(job.finished_at - (job.started_at or job.created_at)) / 1000:.1f}s")
        self._emit(EVENT_JOB_DONE, {"job": job})

    def _finish_failed(self, job: Job, error: Exception) -> None:
        job.status = JobStatus.FAILED
        job.finished_at = _now_ms()
        if isinstance(error, FFQueueError):
            job.error = error.message
            job.error_code = error.code
        else:
            job.error = str(error)
            job.error_code = "ERR_UNKNOWN"
            logger.exception(f"[Queue] Unexpected error in job {job.id}: {error}")
        if isinstance(error, FfmpegExitError) and error.hardware_failure:
            job.fallback_codec = error.fallback_codec

        self.stats.record_job_complete(job)
        logger.error(f"[Queue] Job {job.id} failed ({job.error_code}): {job.error}")

        payload: Dict[str, Any] = {"job": job, "error": job.error, "code": job.error_code}
        if job.fallback_codec:
            payload["fallback_codec"] = job.fallback_codec
        self._emit(EVENT_JOB_ERROR, payload)

    def _finish_canceled(self, job: Job) -> None:
        job.status = JobStatus.CANCELED
        job.finished_at = _now_ms()
        self.stats.record_job_complete(job)
        self._emit(EVENT_JOB_CANCELED, {"job": job})
