"""Core infrastructure: settings, logging, exceptions."""

from .config import settings
from .exceptions import (
    AppException,
    CompanyNotFound,
    ExpressionEvaluationError,
    FormulaError,
    InvalidFormula,
    JobError,
    NotFoundError,
    UnknownField,
    ValidationError,
)


__all__ = [
    "AppException",
    "CompanyNotFound",
    "ExpressionEvaluationError",
    "FormulaError",
    "InvalidFormula",
    "JobError",
    "NotFoundError",
    "UnknownField",
    "ValidationError",
    "settings",
]
