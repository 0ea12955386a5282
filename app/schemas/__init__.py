"""Pydantic schemas for formula authoring and job status snapshots."""

from .formulas import FormulaCreate, FormulaResponse
from .signal_jobs import JobStatus, JobType, QueueStatus, SignalJobState


__all__ = [
    "FormulaCreate",
    "FormulaResponse",
    "JobStatus",
    "JobType",
    "QueueStatus",
    "SignalJobState",
]
