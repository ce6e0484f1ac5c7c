"""In-process registry of pretranslation jobs, keyed by document id."""

import threading
from datetime import datetime
from typing import Any, Optional

import structlog

from tm_pretranslator.models import JobStatus, PretranslationJob, SegmentResult
from tm_pretranslator.services.events import EventBus, JobEvent

logger = structlog.get_logger()


class JobRegistry:
    """Holds one job record per document.

    The orchestrator writes to it while status readers and cancel requests
    arrive from other tasks or threads, so every access holds ``_lock``.
    Readers always get deep copies. Mutating a document without a job is
    a no-op.
    """

    def __init__(self, event_bus: Optional[EventBus] = None) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, PretranslationJob] = {}
        self._cancelled: set[str] = set()
        self._event_bus = event_bus

    def _emit(self, event_type: str, job: PretranslationJob) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(
            JobEvent(
                type=event_type,
                document_id=job.document_id,
                data=job.model_dump(mode="json", exclude={"results"}),
            )
        )

    def _touch(self, job: PretranslationJob) -> None:
        job.updated_at = datetime.now()

    def create(self, document_id: str, total_segments: int) -> PretranslationJob:
        """Start a fresh job, replacing any previous one for the document."""
        with self._lock:
            self._cancelled.discard(document_id)
            job = PretranslationJob(
                document_id=document_id,
                total_segments=total_segments,
                current_message="Starting",
            )
            self._jobs[document_id] = job
            snapshot = job.model_copy(deep=True)
        logger.info("job_created", document_id=document_id, total_segments=total_segments)
        self._emit("job_created", snapshot)
        return snapshot

    def update(self, document_id: str, **fields: Any) -> None:
        """Set job fields such as ``current_segment`` or ``current_message``."""
        with self._lock:
            job = self._jobs.get(document_id)
            if job is None:
                return
            for name, value in fields.items():
                setattr(job, name, value)
            self._touch(job)
            snapshot = job.model_copy(deep=True)
        self._emit("job_progress", snapshot)

    def append_result(self, document_id: str, result: SegmentResult) -> None:
        with self._lock:
            job = self._jobs.get(document_id)
            if job is None:
                return
            job.results.append(result.model_copy())
            self._touch(job)

    def complete(self, document_id: str) -> None:
        with self._lock:
            job = self._jobs.get(document_id)
            if job is None or job.status != JobStatus.RUNNING:
                return
            job.status = JobStatus.COMPLETED
            job.current_segment = job.total_segments
            job.current_message = (
                f"Completed: {job.tm_applied} from TM, {job.ai_applied} from AI"
            )
            self._touch(job)
            snapshot = job.model_copy(deep=True)
        logger.info(
            "job_completed",
            document_id=document_id,
            tm_applied=snapshot.tm_applied,
            ai_applied=snapshot.ai_applied,
        )
        self._emit("job_completed", snapshot)

    def cancel(self, document_id: str) -> bool:
        """Request cancellation. Returns False when no job is running."""
        with self._lock:
            job = self._jobs.get(document_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            self._cancelled.add(document_id)
            job.status = JobStatus.CANCELLED
            job.current_message = "Cancelled"
            self._touch(job)
            snapshot = job.model_copy(deep=True)
        logger.info("job_cancel_requested", document_id=document_id)
        self._emit("job_cancelled", snapshot)
        return True

    def is_cancelled(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._cancelled

    def set_error(self, document_id: str, message: str) -> None:
        with self._lock:
            job = self._jobs.get(document_id)
            if job is None:
                return
            job.status = JobStatus.ERROR
            job.error = message
            job.current_message = f"Error: {message}"
            self._touch(job)
            snapshot = job.model_copy(deep=True)
        logger.error("job_failed", document_id=document_id, error=message)
        self._emit("job_failed", snapshot)

    def get(self, document_id: str) -> Optional[PretranslationJob]:
        with self._lock:
            job = self._jobs.get(document_id)
            return job.model_copy(deep=True) if job else None

    def clear(self, document_id: str) -> None:
        with self._lock:
            self._jobs.pop(document_id, None)
            self._cancelled.discard(document_id)

    def active_jobs(self) -> list[PretranslationJob]:
        """Running jobs, oldest first."""
        with self._lock:
            running = [j for j in self._jobs.values() if j.status == JobStatus.RUNNING]
            return [j.model_copy(deep=True) for j in sorted(running, key=lambda j: j.started_at)]
