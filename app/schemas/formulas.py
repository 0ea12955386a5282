"""Formula authoring schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.formulas.outcome import FormulaKind, classify_condition


class FormulaCreate(BaseModel):
    """Formula definition submitted by an operator.

    When ``formula_type`` is omitted the kind is decided here, once, from the
    condition text.
    """

    name: str = Field(..., min_length=1, max_length=200, description="Unique formula name")
    scope: str = Field(default="global", description="global, sector or company")
    scope_value: Optional[str] = Field(
        default=None, description="Sector or company id for scoped formulas"
    )
    condition: str = Field(..., min_length=1, description="Simple condition or Excel expression")
    signal: str = Field(..., min_length=1, max_length=100, description="Label emitted on a match")
    priority: int = Field(default=999, ge=0, description="Lower runs first among global formulas")
    enabled: bool = True
    formula_type: Optional[FormulaKind] = Field(
        default=None, description="simple or excel; inferred when omitted"
    )

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        lower = v.strip().lower()
        if lower not in {"global", "sector", "company"}:
            raise ValueError("scope must be one of: global, sector, company")
        return lower

    @field_validator("condition", "name", "signal")
    @classmethod
    def strip_text(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @model_validator(mode="after")
    def fill_kind_and_scope(self) -> FormulaCreate:
        if self.scope != "global" and not self.scope_value:
            raise ValueError(f"scope_value is required for {self.scope} formulas")
        if self.formula_type is None:
            self.formula_type = classify_condition(self.condition)
        return self


class FormulaResponse(BaseModel):
    """Stored formula."""

    id: str
    name: str
    scope: str
    scope_value: Optional[str] = None
    condition: str
    signal: str
    priority: int
    enabled: bool
    formula_type: Optional[FormulaKind] = None

    model_config = {"from_attributes": True}
