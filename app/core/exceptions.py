"""Custom exceptions for the formula evaluation engine."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception with structured error payload."""

    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem+json style payload."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    error_code = "NOT_FOUND"
    message = "Resource not found"


class ValidationError(AppException):
    """Validation failed."""

    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class JobError(AppException):
    """Job execution failed."""

    error_code = "JOB_ERROR"
    message = "Job execution failed"


# =============================================================================
# FORMULA ERRORS
# =============================================================================


class FormulaError(AppException):
    """Base class for errors raised while parsing or evaluating a formula."""

    error_code = "FORMULA_ERROR"
    message = "Formula could not be evaluated"


class InvalidFormula(FormulaError):
    """Simple condition text is malformed or mixes AND/OR."""

    error_code = "INVALID_FORMULA"
    message = "Invalid formula"


class UnknownField(FormulaError):
    """Simple condition references a field with no canonical mapping."""

    error_code = "UNKNOWN_FIELD"
    message = "Unknown field"


class ExpressionEvaluationError(FormulaError):
    """Excel-style expression failed to parse or execute."""

    error_code = "EXPRESSION_EVALUATION_ERROR"
    message = "Expression evaluation failed"


class CompanyNotFound(NotFoundError):
    """One or more requested company ids do not exist."""

    error_code = "COMPANY_NOT_FOUND"
    message = "Companies not found"

    def __init__(self, missing_ids: list[str]):
        super().__init__(
            message=f"Companies not found: {', '.join(missing_ids)}",
            details={"missing_ids": list(missing_ids)},
        )
        self.missing_ids = list(missing_ids)
