"""
Job manager

Tracks background publication jobs.  Each job is an immutable ``Job``
snapshot; every transition builds a new snapshot and swaps it into the
registry under a lock, so readers never observe a half-applied update.

Only the ``JobHandle`` returned by ``create()`` may move a job forward.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import uuid
from datetime import timedelta
from typing import Dict, List, Optional

from connectors.errors import ConnectorError
from utils.schemas import Job, JobError, JobStatus, PublishResult, utcnow

logger = logging.getLogger(__name__)

_ALLOWED = {
    JobStatus.PENDING: {JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.IN_PROGRESS: {JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobStateError(RuntimeError):
    """Illegal transition, or a handle that does not own the job."""


class JobHandle:
    """Write access to one job.  Handed to the task that runs it."""

    def __init__(self, manager: "JobManager", job_id: str, token: str) -> None:
        self._manager = manager
        self.job_id = job_id
        self._token = token

    def __repr__(self) -> str:
        return f"JobHandle({self.job_id})"

    @property
    def job(self) -> Job:
        return self._manager.get(self.job_id)

    def start(self) -> Job:
        return self._manager._transition(self, JobStatus.IN_PROGRESS, progress=0)

    def progress(self, percent: int) -> Job:
        return self._manager._transition(self, JobStatus.IN_PROGRESS, progress=percent)

    def log(self, message: str) -> Job:
        return self._manager._transition(self, None, message=message)

    def complete(self, result: PublishResult) -> Job:
        return self._manager._transition(self, JobStatus.COMPLETED, progress=100, result=result)

    def fail(self, error: ConnectorError) -> Job:
        return self._manager._transition(self, JobStatus.FAILED, error=error.to_job_error())


class JobManager:
    """In-memory registry of publication jobs."""

    def __init__(self, *, retention_seconds: int = 0, session_scoped: bool = True) -> None:
        self.retention_seconds = retention_seconds
        self.session_scoped = session_scoped
        self._jobs: Dict[str, Job] = {}
        self._owners: Dict[str, str] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    # ── Creation & reads ────────────────────────────────────────────────

    def create(self, session_id: str) -> JobHandle:
        job = Job(job_id=uuid.uuid4().hex, session_id=session_id)
        token = secrets.token_hex(16)
        with self._lock:
            self._jobs[job.job_id] = job
            self._owners[job.job_id] = token
        logger.info("Job %s created for session %s", job.job_id, session_id[:8])
        return JobHandle(self, job.job_id, token)

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def get_for_session(self, job_id: str, session_id: str) -> Optional[Job]:
        """``get`` filtered by the session-scoping policy."""
        job = self.get(job_id)
        if job is None:
            return None
        if self.session_scoped and job.session_id != session_id:
            return None
        return job

    def list(self, session_id: Optional[str] = None) -> List[Job]:
        jobs = list(self._jobs.values())
        if session_id is not None:
            jobs = [j for j in jobs if j.session_id == session_id]
        return sorted(jobs, key=lambda j: j.created_at)

    # ── Transitions ─────────────────────────────────────────────────────

    def _transition(
        self,
        handle: JobHandle,
        status: Optional[JobStatus],
        *,
        progress: Optional[int] = None,
        result: Optional[PublishResult] = None,
        error: Optional[JobError] = None,
        message: Optional[str] = None,
    ) -> Job:
        with self._lock:
            current = self._jobs.get(handle.job_id)
            if current is None or self._owners.get(handle.job_id) != handle._token:
                raise JobStateError(f"{handle!r} does not own a live job")
            if current.status.is_terminal:
                raise JobStateError(f"job {handle.job_id} is already {current.status.value}")
            if status is not None and status not in _ALLOWED[current.status]:
                raise JobStateError(f"job {handle.job_id}: {current.status.value} → {status.value}")

            update: Dict[str, object] = {"updated_at": utcnow()}
            if status is not None:
                update["status"] = status
            if progress is not None:
                update["progress"] = max(current.progress, min(max(int(progress), 0), 100))
            if result is not None:
                update["result"] = result
            if error is not None:
                update["error"] = error
            if message is not None:
                update["messages"] = [*current.messages, message]
            job = current.model_copy(update=update)
            self._jobs[handle.job_id] = job
            if job.status.is_terminal:
                self._owners.pop(handle.job_id, None)

        if job.status.is_terminal:
            logger.info("Job %s %s", job.job_id, job.status.value)
        return job

    # ── Retention ───────────────────────────────────────────────────────

    def reap(self, older_than: timedelta) -> int:
        """Drop terminal jobs last updated before ``now - older_than``."""
        cutoff = utcnow() - older_than
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status.is_terminal and job.updated_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            logger.debug("Reaped %d finished job(s)", len(stale))
        return len(stale)

    async def run_reaper(self, interval_seconds: float) -> None:
        """Reap forever; cancelled on shutdown."""
        if self.retention_seconds <= 0:
            return
        retention = timedelta(seconds=self.retention_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            self.reap(retention)
