"""Job orchestration for Comment Lens.

Jobs live in an in-memory arena keyed by job id. A separate heap of
(submission sequence, job id) pairs decides which PENDING job runs next, so
scheduling is FIFO by submission and a retried job keeps its place. The
scheduler loop wakes on submission, completion and cancellation, and also
re-checks every ``tick_interval`` seconds.

Every state transition is written to the job store so other processes can
read job status.
"""

import asyncio
import heapq
import itertools
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from commentlens.errors import ConcurrencyLimitReached, NotFoundError
from commentlens.models import (
    PIPELINE_STEPS,
    AnalysisJob,
    AnalysisResult,
    JobStatus,
)

logger = logging.getLogger(__name__)

# (step number 1..5, description) -> False once the job is no longer running
ProgressReporter = Callable[[int, str], bool]
PipelineFn = Callable[[AnalysisJob, ProgressReporter], Awaitable[AnalysisResult]]
JobListener = Callable[[AnalysisJob, AnalysisResult | None], None]

STEP_SIZE = 100 // len(PIPELINE_STEPS)


class JobStore(Protocol):
    """Persistence used by the orchestrator."""

    def save_job(self, job: AnalysisJob) -> None: ...

    def get_job(self, job_id: str) -> AnalysisJob | None: ...


def generate_job_id() -> str:
    """Generate a unique job ID."""
    return f"job_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


class JobOrchestrator:
    """Runs analysis jobs with a concurrency cap and bounded retries."""

    def __init__(
        self,
        store: JobStore | None = None,
        max_concurrent: int = 3,
        max_attempts: int = 3,
        tick_interval: float = 1.0,
        shutdown_timeout: float = 30.0,
    ):
        """Initialize the orchestrator.

        Args:
            store: Job persistence. None keeps jobs in memory only.
            max_concurrent: Maximum number of RUNNING jobs.
            max_attempts: Attempts per job before it is marked FAILED.
            tick_interval: Seconds between scheduler checks without a wake-up.
            shutdown_timeout: Seconds ``stop`` waits for running jobs.
        """
        self.store = store
        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self.tick_interval = tick_interval
        self.shutdown_timeout = shutdown_timeout

        self._jobs: dict[str, AnalysisJob] = {}
        self._sequence: dict[str, int] = {}
        self._pending: list[tuple[int, str]] = []
        self._queued: set[str] = set()
        self._counter = itertools.count()

        self._running: dict[str, asyncio.Task] = {}
        self._detached: set[asyncio.Task] = set()
        self._finished: dict[str, asyncio.Event] = {}
        self._listeners: list[JobListener] = []
        self._pipeline: PipelineFn | None = None

        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._stopping = False

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def register_pipeline(self, pipeline: PipelineFn) -> None:
        """Bind the work function run for every job."""
        if self._pipeline is not None:
            raise RuntimeError("A pipeline is already registered")
        self._pipeline = pipeline

    def add_listener(self, listener: JobListener) -> None:
        """Call ``listener(job, result)`` when a job completes or fails."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Public job operations
    # -------------------------------------------------------------------------

    def submit(self, post_id: str, user_id: str, comment_ids: list[str] | None = None) -> str:
        """Queue a new analysis job.

        Args:
            post_id: Post whose comments are analyzed.
            user_id: Requesting user.
            comment_ids: Specific comments to analyze. Empty means all.

        Returns:
            The new job ID.
        """
        job = AnalysisJob(
            job_id=generate_job_id(),
            post_id=post_id,
            user_id=user_id,
            comment_ids=list(comment_ids or []),
            max_attempts=self.max_attempts,
        )
        self._jobs[job.job_id] = job
        self._sequence[job.job_id] = next(self._counter)
        self._enqueue(job.job_id)
        self._persist(job)

        logger.info(f"[Jobs] Submitted {job.job_id} for post {post_id}")
        self._wake.set()
        return job.job_id

    def status(self, job_id: str) -> AnalysisJob:
        """Get a snapshot of a job.

        Jobs not in memory are read from the store.

        Raises:
            NotFoundError: If the job is unknown.
        """
        job = self._jobs.get(job_id)
        if job is not None:
            return job.snapshot()
        if self.store is not None:
            stored = self.store.get_job(job_id)
            if stored is not None:
                return stored
        raise NotFoundError(f"Job not found: {job_id}")

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not finished.

        A dispatched pipeline keeps running until its next progress report
        or until it returns; its result is discarded.

        Returns:
            True if the job was cancelled, False if it had already finished.

        Raises:
            NotFoundError: If the job is not managed by this orchestrator.
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        if job.status.is_terminal:
            return False

        self._queued.discard(job_id)
        task = self._running.pop(job_id, None)
        if task is not None:
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)

        job.status = JobStatus.CANCELLED
        job.step_description = "Cancelled"
        job.completed_at = datetime.now().timestamp()
        self._persist(job)
        self._signal_finished(job_id)

        logger.info(f"[Jobs] Cancelled {job_id}")
        self._wake.set()
        return True

    def update_progress(self, job_id: str, step: int, description: str) -> bool:
        """Record the start of pipeline step ``step`` (1-based).

        Progress only moves forward and stays below 100 until the job
        completes.

        Returns:
            False if the job is no longer running and the pipeline should stop.
        """
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False

        progress = min(100 - STEP_SIZE, STEP_SIZE * (step - 1))
        job.progress = max(job.progress, progress)
        job.current_step = max(job.current_step, step)
        job.step_description = description
        self._persist(job)
        logger.debug(f"[Jobs] {job_id} step {step}/{job.total_steps}: {description}")
        return True

    def find_active(self, post_id: str) -> AnalysisJob | None:
        """Return the oldest unfinished job for a post, if any."""
        active = [
            job for job in self._jobs.values()
            if job.post_id == post_id and not job.status.is_terminal
        ]
        if not active:
            return None
        return min(active, key=lambda j: self._sequence[j.job_id]).snapshot()

    def list_jobs(self, user_id: str | None = None) -> list[AnalysisJob]:
        """List in-memory jobs, newest first."""
        jobs = [
            job.snapshot() for job in self._jobs.values()
            if user_id is None or job.user_id == user_id
        ]
        jobs.sort(key=lambda j: self._sequence[j.job_id], reverse=True)
        return jobs

    async def wait_for(self, job_id: str, timeout: float | None = None) -> AnalysisJob:
        """Wait until a job reaches a terminal state.

        Raises:
            NotFoundError: If the job is unknown.
            asyncio.TimeoutError: If the timeout expires first.
        """
        job = self.status(job_id)
        if job.status.is_terminal or job_id not in self._jobs:
            return job
        event = self._finished.setdefault(job_id, asyncio.Event())
        await asyncio.wait_for(event.wait(), timeout)
        return self.status(job_id)

    def stats(self) -> dict:
        """Count jobs by state."""
        counts = {status.value.lower(): 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value.lower()] += 1
        return {
            **counts,
            "total": len(self._jobs),
            "max_concurrent": self.max_concurrent,
        }

    def purge_finished(self, max_age_seconds: float) -> int:
        """Drop terminal jobs finished more than ``max_age_seconds`` ago from memory."""
        cutoff = datetime.now().timestamp() - max_age_seconds
        stale = [
            job_id for job_id, job in self._jobs.items()
            if job.status.is_terminal and (job.completed_at or 0) < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
            self._sequence.pop(job_id, None)
            self._finished.pop(job_id, None)
        if stale:
            logger.info(f"[Jobs] Purged {len(stale)} finished jobs from memory")
        return len(stale)

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._loop_task is not None:
            return
        if self._pipeline is None:
            raise RuntimeError("No pipeline registered")
        self._stopping = False
        self._wake = asyncio.Event()
        self._loop_task = asyncio.create_task(self._loop(), name="job-scheduler")

    async def stop(self) -> None:
        """Stop scheduling and wait (bounded) for running jobs."""
        self._stopping = True
        self._wake.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        tasks = list(self._running.values())
        if tasks:
            logger.info(f"[Jobs] Waiting for {len(tasks)} running jobs")
            _, still_running = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
            if still_running:
                logger.warning(f"[Jobs] {len(still_running)} jobs still running at shutdown")

    async def _loop(self) -> None:
        logger.info("[Jobs] Scheduler started")
        while not self._stopping:
            self._wake.clear()
            self.tick()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.tick_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("[Jobs] Scheduler stopped")

    def tick(self) -> int:
        """Start pending jobs while slots are free.

        Returns:
            Number of jobs started.
        """
        started = 0
        while self._has_pending():
            try:
                self._claim_slot()
            except ConcurrencyLimitReached as e:
                logger.debug(f"[Jobs] {e}")
                break
            _, job_id = heapq.heappop(self._pending)
            if job_id not in self._queued:
                continue
            self._queued.discard(job_id)
            self._start(self._jobs[job_id])
            started += 1
        return started

    def _has_pending(self) -> bool:
        # Drop heap entries whose job was cancelled while queued
        while self._pending and self._pending[0][1] not in self._queued:
            heapq.heappop(self._pending)
        return bool(self._pending)

    def _claim_slot(self) -> None:
        if len(self._running) >= self.max_concurrent:
            raise ConcurrencyLimitReached(
                f"{len(self._running)}/{self.max_concurrent} jobs running, "
                f"{len(self._queued)} waiting"
            )

    def _enqueue(self, job_id: str) -> None:
        heapq.heappush(self._pending, (self._sequence[job_id], job_id))
        self._queued.add(job_id)

    def _start(self, job: AnalysisJob) -> None:
        job.status = JobStatus.RUNNING
        job.attempts += 1
        job.progress = 0
        job.current_step = 0
        job.step_description = "Starting analysis"
        job.started_at = datetime.now().timestamp()
        self._persist(job)

        logger.info(f"[Jobs] Starting {job.job_id} (attempt {job.attempts}/{job.max_attempts})")
        self._running[job.job_id] = asyncio.create_task(
            self._run(job.job_id), name=f"analysis-{job.job_id}"
        )

    async def _run(self, job_id: str) -> None:
        job = self._jobs[job_id]

        def report(step: int, description: str) -> bool:
            return self.update_progress(job_id, step, description)

        try:
            result = await self._pipeline(job.snapshot(), report)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_failure(job_id, e)
        else:
            self._on_success(job_id, result)
        finally:
            if self._running.get(job_id) is asyncio.current_task():
                del self._running[job_id]
            self._wake.set()

    def _on_success(self, job_id: str, result: AnalysisResult) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            logger.info(f"[Jobs] Discarding result of {job_id}, job is no longer running")
            return

        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.current_step = job.total_steps
        job.step_description = "Analysis complete"
        job.error_message = None
        job.result_id = result.result_id if result else None
        job.completed_at = datetime.now().timestamp()
        self._persist(job)

        logger.info(f"[Jobs] Completed {job_id}")
        self._notify(job, result)
        self._signal_finished(job_id)

    def _on_failure(self, job_id: str, error: Exception) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            logger.info(f"[Jobs] Ignoring error from {job_id}, job is no longer running")
            return

        job.error_message = str(error) or type(error).__name__

        if job.attempts >= job.max_attempts:
            job.status = JobStatus.FAILED
            job.step_description = "Analysis failed"
            job.completed_at = datetime.now().timestamp()
            self._persist(job)
            logger.error(
                f"[Jobs] {job_id} failed after {job.attempts} attempts: {job.error_message}"
            )
            self._notify(job, None)
            self._signal_finished(job_id)
            return

        job.status = JobStatus.PENDING
        job.step_description = f"Retrying (attempt {job.attempts + 1} of {job.max_attempts})"
        self._enqueue(job_id)
        self._persist(job)
        logger.warning(
            f"[Jobs] {job_id} attempt {job.attempts} failed, re-queued: {job.error_message}"
        )

    def _notify(self, job: AnalysisJob, result: AnalysisResult | None) -> None:
        snapshot = job.snapshot()
        for listener in self._listeners:
            try:
                listener(snapshot, result)
            except Exception as e:
                logger.exception(f"[Jobs] Listener failed for {job.job_id}: {e}")

    def _signal_finished(self, job_id: str) -> None:
        event = self._finished.get(job_id)
        if event is not None:
            event.set()

    def _persist(self, job: AnalysisJob) -> None:
        if self.store is None:
            return
        try:
            self.store.save_job(job)
        except Exception as e:
            # The in-memory arena stays authoritative for this process
            logger.exception(f"[Jobs] Failed to persist {job.job_id}: {e}")
