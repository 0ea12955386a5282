"""Data access layer repositories.

Each repository module provides async functions for database operations.
All code uses SQLAlchemy ORM models from `app.database.orm` with the
`get_session()` context manager.

ORM-based repositories:
- companies_orm: companies and sectors, including formula overrides
- formulas_orm: formula authoring and lookup
- quarterly_data_orm: per-quarter metric rows used by Excel formulas
- signals_orm: signal replacement, staleness and statistics
- signal_jobs_orm: durable signal job history
"""

from . import companies_orm
from . import formulas_orm
from . import quarterly_data_orm
from . import signals_orm
from . import signal_jobs_orm

__all__ = [
    "companies_orm",
    "formulas_orm",
    "quarterly_data_orm",
    "signals_orm",
    "signal_jobs_orm",
]
