"""Database module with SQLAlchemy async sessions and ORM models."""

from .connection import (
    bind_engine,
    close_database,
    close_sqlalchemy_engine,
    create_tables,
    get_async_database_url,
    get_engine,
    get_session,
    init_database,
    init_sqlalchemy_engine,
)
from .orm import (
    Base,
    Company,
    Formula,
    QuarterlyData,
    Sector,
    Signal,
    SignalJob,
)


__all__ = [
    "Base",
    "Company",
    "Formula",
    "QuarterlyData",
    "Sector",
    "Signal",
    "SignalJob",
    "bind_engine",
    "close_database",
    "close_sqlalchemy_engine",
    "create_tables",
    "get_async_database_url",
    "get_engine",
    "get_session",
    "init_database",
    "init_sqlalchemy_engine",
]
