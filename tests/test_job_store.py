"""
Tests for the in-memory and SQL job stores.
"""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.config import settings
from app.schemas.signal_jobs import JobStatus, JobType, SignalJobState
from app.services import job_store as job_store_module
from app.services.job_store import InMemoryJobStore, SqlJobStore, get_job_store


def make_state(job_id: str, minutes_ago: int = 0, **overrides) -> SignalJobState:
    data = {
        "id": job_id,
        "job_type": JobType.FULL,
        "batch_size": 50,
        "created_at": datetime.now(UTC) - timedelta(minutes=minutes_ago),
    }
    data.update(overrides)
    return SignalJobState(**data)


class TestInMemoryJobStore:
    """Bounded in-process history."""

    @pytest.mark.asyncio
    async def test_save_and_get(self):
        store = InMemoryJobStore()
        await store.save(make_state("job-1"))

        state = await store.get("job-1")
        assert state.id == "job-1"
        assert state.status is JobStatus.PENDING
        assert await store.get("job-2") is None

    @pytest.mark.asyncio
    async def test_returns_copies(self):
        store = InMemoryJobStore()
        state = make_state("job-1")
        await store.save(state)

        state.processed = 99
        assert (await store.get("job-1")).processed == 0

    @pytest.mark.asyncio
    async def test_evicts_oldest_beyond_limit(self):
        store = InMemoryJobStore(max_jobs=2)
        for i in range(3):
            await store.save(make_state(f"job-{i}"))

        assert await store.get("job-0") is None
        assert await store.get("job-2") is not None

    @pytest.mark.asyncio
    async def test_list_recent_newest_first(self):
        store = InMemoryJobStore()
        await store.save(make_state("old", minutes_ago=10))
        await store.save(make_state("new", minutes_ago=1))
        await store.save(make_state("mid", minutes_ago=5))

        assert [s.id for s in await store.list_recent()] == ["new", "mid", "old"]
        assert [s.id for s in await store.list_recent(limit=1)] == ["new"]


class TestSqlJobStore:
    """Durable history in the signal_jobs table."""

    @pytest.mark.asyncio
    async def test_insert_then_update(self, db_engine):
        store = SqlJobStore()
        state = make_state("job-sql", job_type=JobType.COMPANY, company_ids=["a", "b"])
        await store.save(state)

        state.status = JobStatus.FAILED
        state.error = "Companies not found: b"
        state.completed_at = datetime.now(UTC)
        await store.save(state)

        loaded = await store.get("job-sql")
        assert loaded.job_type is JobType.COMPANY
        assert loaded.company_ids == ["a", "b"]
        assert loaded.status is JobStatus.FAILED
        assert loaded.error == "Companies not found: b"
        assert loaded.completed_at is not None

    @pytest.mark.asyncio
    async def test_list_recent(self, db_engine):
        store = SqlJobStore()
        await store.save(make_state("older", minutes_ago=3))
        await store.save(make_state("newer", minutes_ago=1))

        assert [s.id for s in await store.list_recent()] == ["newer", "older"]
        assert await store.get("missing") is None


class TestGetJobStore:
    """Backend selection from settings."""

    def test_memory_default(self, monkeypatch):
        monkeypatch.setattr(settings, "job_store_backend", "memory")
        assert isinstance(get_job_store(), InMemoryJobStore)

    def test_database_backend(self, monkeypatch):
        monkeypatch.setattr(job_store_module.settings, "job_store_backend", "database")
        assert isinstance(get_job_store(), SqlJobStore)
