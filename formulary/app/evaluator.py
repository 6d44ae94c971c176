from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

from .errors import ErrorKind, EvaluationFailure, ExpressionSyntaxError, InvalidFormulaError
from .expression import (
    MAX_EXPRESSION_LENGTH,
    MAX_NESTING_DEPTH,
    Call,
    Chain,
    Negate,
    Node,
    Number,
    Variable,
    format_number,
    free_variables,
    is_identifier,
    parse,
    render,
)

logger = logging.getLogger(__name__)

FormulaContext = Mapping[str, Any]


@dataclass(frozen=True)
class FormulaConstant:
    key: str
    label: str
    value: float
    description: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"key": self.key, "label": self.label, "value": self.value}
        if self.description:
            payload["description"] = self.description
        return payload

    @classmethod
    def from_value(cls, item: "FormulaConstant | Mapping[str, Any]") -> "FormulaConstant":
        if isinstance(item, FormulaConstant):
            return item
        if not isinstance(item, Mapping) or "key" not in item or "value" not in item:
            raise InvalidFormulaError("Constants need a 'key' and a 'value'")
        key = str(item["key"])
        if not is_identifier(key):
            raise InvalidFormulaError(f"Constant key is not a valid identifier: {key!r}")
        try:
            value = _as_number(key, item["value"])
        except EvaluationFailure as exc:
            raise InvalidFormulaError(f"Constant {key!r}: {exc}") from None
        return cls(
            key=key,
            label=str(item.get("label") or key),
            value=value,
            description=item.get("description"),
        )


def coerce_constants(items: Iterable["FormulaConstant | Mapping[str, Any]"] | None) -> List[FormulaConstant]:
    return [FormulaConstant.from_value(item) for item in (items or [])]


@dataclass(frozen=True)
class EvaluationStep:
    text: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "value": self.value}


@dataclass
class EvaluationResult:
    success: bool
    value: float | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    used_variables: List[str] = field(default_factory=list)
    missing_variables: List[str] = field(default_factory=list)
    details: Dict[str, float] = field(default_factory=dict)
    steps: List[EvaluationStep] = field(default_factory=list)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        used: Sequence[str] = (),
        missing: Sequence[str] = (),
    ) -> "EvaluationResult":
        return cls(
            success=False,
            error=message,
            error_kind=kind,
            used_variables=list(used),
            missing_variables=list(missing),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "value": self.value,
            "error": self.error,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "usedVariables": list(self.used_variables),
            "missingVariables": list(self.missing_variables),
            "details": dict(self.details),
            "steps": [step.to_dict() for step in self.steps],
        }


def _as_number(name: str, raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, numbers.Real):
        raise EvaluationFailure(ErrorKind.NUMERIC_ERROR, f"Value for '{name}' is not a number")
    value = float(raw)
    if not math.isfinite(value):
        raise EvaluationFailure(ErrorKind.NUMERIC_ERROR, f"Value for '{name}' is not finite")
    return value


def _round_half_away(value: float) -> float:
    if abs(value) >= 2 ** 52:
        return value
    return float(Decimal(repr(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


FUNCTIONS: Dict[str, Callable[..., float]] = {
    "min": lambda *args: min(args),
    "max": lambda *args: max(args),
    "abs": lambda x: abs(x),
    "round": _round_half_away,
    "floor": lambda x: float(math.floor(x)),
    "ceil": lambda x: float(math.ceil(x)),
}


class _Interpreter:
    def __init__(self, values: Mapping[str, float], trace: bool):
        self.values = values
        self.trace = trace
        self.steps: List[EvaluationStep] = []

    def _checked(self, value: float, text: str) -> float:
        if not math.isfinite(value):
            raise EvaluationFailure(ErrorKind.NUMERIC_ERROR, f"Numeric overflow in {text}")
        if self.trace:
            self.steps.append(EvaluationStep(text, value))
        return value

    def visit(self, node: Node) -> float:
        if isinstance(node, Number):
            if not math.isfinite(node.value):
                raise EvaluationFailure(ErrorKind.NUMERIC_ERROR, "Numeric literal out of range")
            return node.value
        if isinstance(node, Variable):
            return self.values[node.name]
        if isinstance(node, Negate):
            return -self.visit(node.operand)
        if isinstance(node, Chain):
            return self._chain(node)
        if isinstance(node, Call):
            args = [self.visit(arg) for arg in node.args]
            text = f"{node.name}({', '.join(format_number(arg) for arg in args)})"
            return self._checked(FUNCTIONS[node.name](*args), text)
        raise EvaluationFailure(ErrorKind.NUMERIC_ERROR, f"Unsupported node {type(node).__name__}")

    def _chain(self, node: Chain) -> float:
        acc = self.visit(node.first)
        for op, operand in node.rest:
            rhs = self.visit(operand)
            if op == "+":
                result = acc + rhs
            elif op == "-":
                result = acc - rhs
            elif op == "*":
                result = acc * rhs
            else:
                if rhs == 0:
                    raise EvaluationFailure(
                        ErrorKind.DIVISION_BY_ZERO,
                        f"Division by zero: '{render(operand)}' evaluated to 0",
                    )
                result = acc / rhs
            acc = self._checked(result, f"{format_number(acc)} {op} {format_number(rhs)}")
        return acc


def effective_scope(
    context: FormulaContext | None,
    constants: Iterable["FormulaConstant | Mapping[str, Any]"] | None,
) -> Dict[str, Any]:
    """Constants first, then the runtime context on top of them."""
    scope: Dict[str, Any] = {c.key: c.value for c in coerce_constants(constants)}
    scope.update(context or {})
    return scope


def evaluate(
    expression: str,
    context: FormulaContext | None = None,
    constants: Iterable["FormulaConstant | Mapping[str, Any]"] | None = None,
    trace: bool = False,
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_depth: int = MAX_NESTING_DEPTH,
) -> EvaluationResult:
    """Evaluate a formula against a context; failures come back as results, never raised."""
    try:
        tree = parse(expression, max_length=max_length, max_depth=max_depth)
    except ExpressionSyntaxError as exc:
        return EvaluationResult.failure(ErrorKind.SYNTAX_ERROR, f"Syntax error: {exc.describe()}")

    used = free_variables(tree)
    try:
        scope = effective_scope(context, constants)
    except InvalidFormulaError as exc:
        return EvaluationResult.failure(ErrorKind.NUMERIC_ERROR, str(exc), used=used)

    missing = [name for name in used if name not in scope]
    if missing:
        return EvaluationResult.failure(
            ErrorKind.MISSING_VARIABLE,
            f"Missing value for: {', '.join(missing)}",
            used=used,
            missing=missing,
        )

    try:
        values = {name: _as_number(name, scope[name]) for name in used}
        interpreter = _Interpreter(values, trace)
        value = interpreter.visit(tree)
    except EvaluationFailure as exc:
        logger.debug("Formula %r failed: %s", expression, exc)
        return EvaluationResult.failure(exc.kind, str(exc), used=used)

    return EvaluationResult(
        success=True,
        value=value + 0.0,
        used_variables=used,
        details=values,
        steps=interpreter.steps,
    )


def preview_formula(
    expression: str,
    context: FormulaContext | None = None,
    constants: Iterable["FormulaConstant | Mapping[str, Any]"] | None = None,
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_depth: int = MAX_NESTING_DEPTH,
) -> EvaluationResult:
    """Evaluate an unsaved draft and keep the step-by-step trace."""
    return evaluate(
        expression,
        context,
        constants,
        trace=True,
        max_length=max_length,
        max_depth=max_depth,
    )
