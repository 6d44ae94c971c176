from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .errors import ErrorKind, ExpressionSyntaxError
from .expression import MAX_EXPRESSION_LENGTH, MAX_NESTING_DEPTH, free_variables, parse


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None
    used_variables: List[str] = field(default_factory=list)
    missing_variables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "errorKind": self.error_kind.value if self.error_kind else None,
            "usedVariables": list(self.used_variables),
            "missingVariables": list(self.missing_variables),
        }


def validate(
    expression: str,
    known_names: Iterable[str],
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_depth: int = MAX_NESTING_DEPTH,
) -> ValidationResult:
    """Statically check an expression without evaluating it.

    Every unknown name is reported, not only the first one.
    """
    try:
        tree = parse(expression, max_length=max_length, max_depth=max_depth)
    except ExpressionSyntaxError as exc:
        return ValidationResult(
            is_valid=False,
            errors=[f"Syntax error: {exc.describe()}"],
            error_kind=ErrorKind.SYNTAX_ERROR,
        )

    used = free_variables(tree)
    known = set(known_names)
    missing = [name for name in used if name not in known]
    if missing:
        return ValidationResult(
            is_valid=False,
            errors=[f"Unknown variable: {name}" for name in missing],
            error_kind=ErrorKind.UNKNOWN_VARIABLE,
            used_variables=used,
            missing_variables=missing,
        )
    return ValidationResult(is_valid=True, used_variables=used)
