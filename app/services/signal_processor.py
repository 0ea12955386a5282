"""Background signal job queue.

A single asyncio worker drains a FIFO queue of recomputation jobs, one job at
a time, so two jobs never write signals concurrently. The worker starts when
a job is enqueued on an idle queue and exits once the queue is empty.
Companies are selected by id when a job starts and reloaded batch by batch,
so data edited while a job runs is evaluated as it is when its batch comes up.

Jobs move through ``pending -> processing -> completed | failed``. A queued
job can be cancelled; the active job always runs to the end.

Usage:
    processor = get_signal_processor()
    job_id = await processor.enqueue_job("incremental")
    await processor.wait_until_idle()
    state = await processor.get_job_status(job_id)
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections import deque
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from app.core.config import settings
from app.core.exceptions import AppException, JobError, ValidationError
from app.core.logging import get_logger, job_id_var
from app.formulas.expression.evaluator import MetricLoader
from app.repositories import companies_orm, formulas_orm, signals_orm
from app.schemas.signal_jobs import JobStatus, JobType, QueueStatus, SignalJobState

from .job_store import JobStore, get_job_store
from .signal_reconciler import load_companies, reconcile


logger = get_logger("services.signal_processor")

ProgressListener = Callable[[SignalJobState], None]


def _new_job_id() -> str:
    return f"job-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class SignalProcessor:
    """Single-worker FIFO processor for signal jobs."""

    def __init__(
        self,
        job_store: JobStore | None = None,
        batch_pause_seconds: float | None = None,
        default_batch_size: int | None = None,
        *,
        on_progress: ProgressListener | None = None,
        loader: MetricLoader | None = None,
    ):
        self._store = job_store if job_store is not None else get_job_store()
        self._batch_pause = (
            settings.signal_batch_pause_seconds
            if batch_pause_seconds is None
            else batch_pause_seconds
        )
        self._default_batch_size = default_batch_size or settings.signal_batch_size
        self._on_progress = on_progress
        self._loader = loader

        self._queue: deque[SignalJobState] = deque()
        self._active: SignalJobState | None = None
        self._worker: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    async def enqueue_job(
        self,
        job_type: JobType | str,
        company_ids: Sequence[str] | None = None,
        batch_size: int | None = None,
    ) -> str:
        """Queue a job and start the worker if idle.

        Raises:
            ValidationError: Unknown job type, bad batch size, or a company
                job without ids
        """
        try:
            kind = JobType(job_type)
        except ValueError:
            raise ValidationError(
                f"Unknown job type: {job_type}",
                details={"job_type": str(job_type)},
            ) from None

        size = self._default_batch_size if batch_size is None else batch_size
        if size < 1:
            raise ValidationError("batch_size must be at least 1", details={"batch_size": size})
        if kind is JobType.COMPANY and not company_ids:
            raise ValidationError("company jobs require company_ids")

        job = SignalJobState(
            id=_new_job_id(),
            job_type=kind,
            company_ids=list(company_ids) if company_ids else None,
            batch_size=size,
            status=JobStatus.PENDING,
            created_at=datetime.now(UTC),
        )
        await self._store.save(job)
        self._queue.append(job)
        logger.info(f"Queued {kind.value} job {job.id} (queue length {len(self._queue)})")

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return job.id

    async def get_job_status(self, job_id: str) -> SignalJobState | None:
        """Current state of a job, whether queued, active or finished."""
        if self._active is not None and self._active.id == job_id:
            return self._active.model_copy()
        for job in self._queue:
            if job.id == job_id:
                return job.model_copy()
        return await self._store.get(job_id)

    def get_queue_status(self) -> QueueStatus:
        active = self._active.model_copy() if self._active is not None else None
        return QueueStatus(
            queue_length=len(self._queue),
            active_job=active,
            is_processing=active is not None,
        )

    async def cancel_job(self, job_id: str) -> bool:
        """Remove a queued job. The active job cannot be cancelled.

        Returns:
            True if the job was waiting and is now cancelled
        """
        for job in self._queue:
            if job.id == job_id:
                self._queue.remove(job)
                job.status = JobStatus.CANCELLED
                job.completed_at = datetime.now(UTC)
                await self._store.save(job)
                logger.info(f"Cancelled queued job {job_id}")
                return True
        return False

    async def list_recent_jobs(self, limit: int = 50) -> list[SignalJobState]:
        return await self._store.list_recent(limit)

    async def wait_until_idle(self) -> None:
        """Block until the queue is drained."""
        while self._worker is not None and not self._worker.done():
            await self._worker

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    async def _drain(self) -> None:
        try:
            while self._queue:
                job = self._queue.popleft()
                self._active = job
                token = job_id_var.set(job.id)
                try:
                    await self._run(job)
                except Exception:
                    # Final state could not be stored; the next job still runs
                    logger.error(
                        f"Could not record final state of job {job.id} ({job.status.value})",
                        exc_info=True,
                    )
                finally:
                    job_id_var.reset(token)
                    self._active = None
        finally:
            self._worker = None

    async def _select_company_ids(self, job: SignalJobState) -> list[str]:
        if job.job_type is JobType.INCREMENTAL:
            companies = await signals_orm.find_stale_companies()
        elif job.job_type is JobType.FULL:
            companies = await load_companies()
        else:
            companies = await load_companies(job.company_ids or [])
        return [c.id for c in companies]

    async def _run(self, job: SignalJobState) -> None:
        def on_company(company: Any, inserted: bool) -> None:
            job.processed += 1
            if inserted:
                job.signals_generated += 1
            job.progress = round(job.processed / job.total * 100)
            if self._on_progress is not None:
                self._on_progress(job.model_copy())

        try:
            job.status = JobStatus.PROCESSING
            job.started_at = datetime.now(UTC)
            await self._store.save(job)
            logger.info(f"Starting {job.job_type.value} job")

            company_ids = await self._select_company_ids(job)
            job.total = len(company_ids)

            for start in range(0, job.total, job.batch_size):
                if start and self._batch_pause > 0:
                    await asyncio.sleep(self._batch_pause)
                batch_ids = company_ids[start:start + job.batch_size]

                # Reload per batch so edits made while the job runs are seen
                companies = await companies_orm.get_companies_by_ids(batch_ids)
                formulas = await formulas_orm.list_enabled_formulas()
                await reconcile(companies, formulas, on_company, loader=self._loader)

                # Deleted since selection
                for _ in range(len(batch_ids) - len(companies)):
                    on_company(None, False)

                await self._store.save(job)
                logger.debug(f"Batch done: {job.processed}/{job.total}")

            job.progress = 100
            job.status = JobStatus.COMPLETED
            logger.info(
                f"Job completed: {job.processed} companies, "
                f"{job.signals_generated} signals generated"
            )
        except Exception as e:
            error = e if isinstance(e, AppException) else JobError(str(e) or e.__class__.__name__)
            job.status = JobStatus.FAILED
            job.error = error.message
            logger.error(f"Job failed: {job.error}", exc_info=True)

        job.completed_at = datetime.now(UTC)
        await self._store.save(job)


_processor: SignalProcessor | None = None


def get_signal_processor() -> SignalProcessor:
    """Process-wide processor instance."""
    global _processor
    if _processor is None:
        _processor = SignalProcessor()
    return _processor
