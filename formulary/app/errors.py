from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .validator import ValidationResult


class ErrorKind(str, Enum):
    SYNTAX_ERROR = "SyntaxError"
    UNKNOWN_VARIABLE = "UnknownVariable"
    MISSING_VARIABLE = "MissingVariable"
    DIVISION_BY_ZERO = "DivisionByZero"
    NUMERIC_ERROR = "NumericError"


class FormulaError(Exception):
    """Base class for every error raised by the formula engine."""


class ExpressionSyntaxError(FormulaError):
    def __init__(self, message: str, position: int | None = None, snippet: str | None = None):
        super().__init__(message)
        self.position = position
        self.snippet = snippet

    def describe(self) -> str:
        text = str(self)
        if self.position is not None:
            text = f"{text} at position {self.position}"
        if self.snippet:
            text = f"{text}: '{self.snippet}'"
        return text


class EvaluationFailure(FormulaError):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class FormulaNotFoundError(FormulaError, LookupError):
    def __init__(self, formula_id: str):
        super().__init__(f"Formula not found: {formula_id}")
        self.formula_id = formula_id


class ActivationConflictError(FormulaError):
    def __init__(self, scope_label: str, active_ids: list[str]):
        super().__init__(
            f"{len(active_ids)} active formulas found for {scope_label}: {', '.join(active_ids)}"
        )
        self.scope_label = scope_label
        self.active_ids = active_ids


class InvalidScopeError(FormulaError, ValueError):
    pass


class InvalidFormulaError(FormulaError, ValueError):
    def __init__(self, message: str, validation: "ValidationResult | None" = None):
        super().__init__(message)
        self.validation = validation
