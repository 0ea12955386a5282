"""Signal job schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class JobType(str, Enum):
    """Which companies a job recomputes."""

    INCREMENTAL = "incremental"
    FULL = "full"
    COMPANY = "company"


class JobStatus(str, Enum):
    """Job lifecycle: pending -> processing -> completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class SignalJobState(BaseModel):
    """Snapshot of a signal recomputation job."""

    id: str = Field(..., description="Job id")
    job_type: JobType
    company_ids: list[str] | None = Field(None, description="Explicit ids for company jobs")
    batch_size: int = Field(..., ge=1)
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(0, ge=0, le=100, description="Percent of companies processed")
    processed: int = 0
    total: int = 0
    signals_generated: int = 0
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class QueueStatus(BaseModel):
    """Queue snapshot."""

    queue_length: int = Field(..., description="Jobs waiting behind the active one")
    active_job: SignalJobState | None = None
    is_processing: bool = False
