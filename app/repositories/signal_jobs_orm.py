"""Repository for signal job history - SQLAlchemy ORM version."""

from __future__ import annotations

from sqlalchemy import select

from app.database.connection import get_session
from app.database.orm import SignalJob
from app.schemas.signal_jobs import SignalJobState


async def save_job(state: SignalJobState) -> None:
    """Insert or update a job record from its current state."""
    async with get_session() as session:
        job = await session.get(SignalJob, state.id)
        if job is None:
            job = SignalJob(id=state.id)
            session.add(job)

        job.job_type = state.job_type.value
        job.company_ids = list(state.company_ids) if state.company_ids is not None else None
        job.batch_size = state.batch_size
        job.status = state.status.value
        job.progress = state.progress
        job.processed = state.processed
        job.total = state.total
        job.signals_generated = state.signals_generated
        job.error = state.error[:1000] if state.error else None
        job.created_at = state.created_at
        job.started_at = state.started_at
        job.completed_at = state.completed_at

        await session.commit()


async def get_job(job_id: str) -> SignalJobState | None:
    """Fetch a single job."""
    async with get_session() as session:
        job = await session.get(SignalJob, job_id)
        return SignalJobState.model_validate(job) if job else None


async def list_recent_jobs(limit: int = 50) -> list[SignalJobState]:
    """Most recent jobs first."""
    async with get_session() as session:
        result = await session.execute(
            select(SignalJob).order_by(SignalJob.created_at.desc(), SignalJob.id.desc()).limit(limit)
        )
        return [SignalJobState.model_validate(job) for job in result.scalars().all()]
