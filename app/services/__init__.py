"""Business logic services."""

from . import job_store, signal_processor, signal_reconciler


__all__ = [
    "job_store",
    "signal_processor",
    "signal_reconciler",
]
