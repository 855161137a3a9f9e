from __future__ import annotations

import logging
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock

from timetabler.core.exceptions import AppError
from timetabler.schemas.timetable import GenerateTimetableRequest, GenerationJobOut, JobStatus
from timetabler.services.scheduling_types import GenerationResult, RunControl, SchedulingSnapshot
from timetabler.services.time_model import DEFAULT_LAYOUT, DailyLayout
from timetabler.services.timetable_generator import TimetableGenerator, to_response

logger = logging.getLogger(__name__)

FINISHED_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GenerationJob:
    id: str
    school_id: int
    algorithm: str
    control: RunControl
    status: JobStatus = "queued"
    submitted_at: datetime = field(default_factory=_utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: GenerationResult | None = None
    error: str | None = None
    error_details: dict = field(default_factory=dict)
    future: Future | None = field(default=None, repr=False)

    def to_out(self) -> GenerationJobOut:
        return GenerationJobOut(
            id=self.id,
            status=self.status,
            algorithm=self.algorithm,
            school_id=self.school_id,
            submitted_at=self.submitted_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            result=to_response(self.result) if self.result is not None else None,
            error=self.error,
            error_details=self.error_details,
        )


class GenerationJobManager:
    """Runs generation requests on a worker pool so HTTP handlers never block on search."""

    def __init__(
        self,
        *,
        max_workers: int,
        evaluation_workers: int = 0,
        timeout_seconds: float | None = None,
        max_retained_jobs: int = 200,
        layout: DailyLayout = DEFAULT_LAYOUT,
    ) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="timetable-gen")
        self._evaluation_executor = (
            ThreadPoolExecutor(max_workers=evaluation_workers, thread_name_prefix="timetable-eval")
            if evaluation_workers > 0
            else None
        )
        self.generator = TimetableGenerator(layout=layout, executor=self._evaluation_executor)
        self._timeout_seconds = timeout_seconds
        self._max_retained_jobs = max(1, max_retained_jobs)
        self._jobs: dict[str, GenerationJob] = {}
        self._lock = Lock()

    def submit(self, request: GenerateTimetableRequest, snapshot: SchedulingSnapshot) -> GenerationJob:
        job = GenerationJob(
            id=str(uuid.uuid4()),
            school_id=request.school_id,
            algorithm=request.optimization.algorithm,
            control=RunControl(timeout_seconds=self._timeout_seconds),
        )
        with self._lock:
            self._jobs[job.id] = job
            self._prune_locked()
        job.future = self._executor.submit(self._run, job, request, snapshot)
        logger.info("Queued generation job %s school_id=%s algorithm=%s", job.id, job.school_id, job.algorithm)
        return job

    def _run(self, job: GenerationJob, request: GenerateTimetableRequest, snapshot: SchedulingSnapshot) -> GenerationResult | None:
        with self._lock:
            if job.control.cancel_requested:
                job.status = "cancelled"
                job.finished_at = _utcnow()
                return None
            job.status = "running"
            job.started_at = _utcnow()

        try:
            result = self.generator.generate(request, snapshot, control=job.control)
        except AppError as exc:
            self._finish(job, status="failed", error=exc.message, details=exc.details)
            raise
        except Exception as exc:
            logger.exception("Generation job %s crashed", job.id)
            self._finish(job, status="failed", error=str(exc) or exc.__class__.__name__)
            raise

        status: JobStatus = "cancelled" if job.control.cancel_requested else "completed"
        self._finish(job, status=status, result=result)
        logger.info(
            "Generation job %s %s fitness=%.1f iterations=%s",
            job.id,
            status,
            result.fitness,
            result.iterations,
        )
        return result

    def _finish(
        self,
        job: GenerationJob,
        *,
        status: JobStatus,
        result: GenerationResult | None = None,
        error: str | None = None,
        details: dict | None = None,
    ) -> None:
        with self._lock:
            job.status = status
            job.result = result
            job.error = error
            job.error_details = details or {}
            job.finished_at = _utcnow()

    def _prune_locked(self) -> None:
        overflow = len(self._jobs) - self._max_retained_jobs
        if overflow <= 0:
            return
        finished = [job_id for job_id, job in self._jobs.items() if job.status in FINISHED_STATUSES]
        for job_id in finished[:overflow]:
            del self._jobs[job_id]

    def get(self, job_id: str) -> GenerationJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> GenerationJob | None:
        job = self.get(job_id)
        if job is None:
            return None
        job.control.cancel()
        if job.future is not None and job.future.cancel():
            self._finish(job, status="cancelled")
        logger.info("Cancellation requested for generation job %s", job_id)
        return job

    def wait(self, job: GenerationJob, timeout: float | None = None) -> GenerationResult | None:
        """Block until the job ends; re-raises the run's exception if it failed.

        Returns None when the job was cancelled before or during its run,
        including futures dropped by ``shutdown``.
        """
        if job.future is None:
            return job.result
        try:
            return job.future.result(timeout=timeout)
        except CancelledError:
            if job.status not in FINISHED_STATUSES:
                self._finish(job, status="cancelled")
            return None

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            if job.status not in FINISHED_STATUSES:
                job.control.cancel()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        if self._evaluation_executor is not None:
            self._evaluation_executor.shutdown(wait=wait, cancel_futures=True)
