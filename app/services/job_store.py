"""Where signal job states live once the processor has touched them.

The in-memory store keeps a bounded history and is the default for tests and
single-process use. The SQL store writes through to ``signal_jobs`` so job
outcomes survive a restart.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Protocol

from app.core.config import settings
from app.repositories import signal_jobs_orm
from app.schemas.signal_jobs import SignalJobState


class JobStore(Protocol):
    async def save(self, state: SignalJobState) -> None: ...

    async def get(self, job_id: str) -> SignalJobState | None: ...

    async def list_recent(self, limit: int = 50) -> list[SignalJobState]: ...


class InMemoryJobStore:
    """Bounded job history held in process memory."""

    def __init__(self, max_jobs: int | None = None):
        self._max_jobs = max_jobs or settings.signal_job_history_limit
        self._jobs: OrderedDict[str, SignalJobState] = OrderedDict()

    async def save(self, state: SignalJobState) -> None:
        self._jobs[state.id] = state.model_copy()
        self._jobs.move_to_end(state.id)
        while len(self._jobs) > self._max_jobs:
            self._jobs.popitem(last=False)

    async def get(self, job_id: str) -> SignalJobState | None:
        state = self._jobs.get(job_id)
        return state.model_copy() if state else None

    async def list_recent(self, limit: int = 50) -> list[SignalJobState]:
        jobs = sorted(self._jobs.values(), key=lambda s: s.created_at, reverse=True)
        return [s.model_copy() for s in jobs[:limit]]


class SqlJobStore:
    """Job history persisted in the ``signal_jobs`` table."""

    async def save(self, state: SignalJobState) -> None:
        await signal_jobs_orm.save_job(state)

    async def get(self, job_id: str) -> SignalJobState | None:
        return await signal_jobs_orm.get_job(job_id)

    async def list_recent(self, limit: int = 50) -> list[SignalJobState]:
        return await signal_jobs_orm.list_recent_jobs(limit)


def get_job_store() -> JobStore:
    """Build the store selected by ``JOB_STORE_BACKEND``."""
    if settings.job_store_backend == "database":
        return SqlJobStore()
    return InMemoryJobStore()
