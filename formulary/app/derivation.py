from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from .errors import ErrorKind, ExpressionSyntaxError
from .evaluator import EvaluationResult, FormulaConstant, evaluate
from .expression import MAX_EXPRESSION_LENGTH, MAX_NESTING_DEPTH, free_variables, parse


@dataclass(frozen=True)
class FieldFormula:
    field_key: str
    expression: str
    constants: Sequence[FormulaConstant | Mapping[str, Any]] = field(default_factory=tuple)


def derivation_order(dependencies: Mapping[str, Iterable[str]]) -> Tuple[List[str], List[str]]:
    """Order fields so each one follows the fields it reads.

    A field reading itself takes its own value from the context and is not a
    dependency. Returns (ordered, unresolved); unresolved fields sit on or
    behind a cycle.
    """
    pending: Dict[str, set] = {
        key: {dep for dep in deps if dep in dependencies and dep != key}
        for key, deps in dependencies.items()
    }
    ordered: List[str] = []
    while True:
        ready = [key for key, deps in pending.items() if not deps]
        if not ready:
            break
        for key in ready:
            ordered.append(key)
            del pending[key]
        for deps in pending.values():
            deps.difference_update(ready)
    return ordered, list(pending)


def _reachable(start: str, dependencies: Mapping[str, Iterable[str]], within: Set[str]) -> Set[str]:
    """Fields reachable from `start` through dependencies, ignoring self references."""
    seen: Set[str] = set()
    stack = [dep for dep in dependencies[start] if dep in within and dep != start]
    while stack:
        key = stack.pop()
        if key in seen:
            continue
        seen.add(key)
        stack.extend(dep for dep in dependencies[key] if dep in within and dep != key)
    return seen


def derive_fields(
    formulas: Sequence[FieldFormula],
    context: Mapping[str, Any],
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_depth: int = MAX_NESTING_DEPTH,
) -> Dict[str, EvaluationResult]:
    """Evaluate calculated fields in dependency order, feeding each value forward.

    A failed field is removed from the working context so that every field
    depending on it fails as well instead of reading a stale value.
    """
    by_key = {item.field_key: item for item in formulas}
    results: Dict[str, EvaluationResult] = {}
    dependencies: Dict[str, List[str]] = {}
    for item in formulas:
        try:
            dependencies[item.field_key] = free_variables(
                parse(item.expression, max_length=max_length, max_depth=max_depth)
            )
        except ExpressionSyntaxError:
            dependencies[item.field_key] = []

    ordered, unresolved = derivation_order(dependencies)
    working: Dict[str, Any] = dict(context)
    for key in ordered:
        item = by_key[key]
        result = evaluate(
            item.expression,
            working,
            item.constants,
            max_length=max_length,
            max_depth=max_depth,
        )
        results[key] = result
        if result.success:
            working[key] = result.value
        else:
            working.pop(key, None)

    pending = set(unresolved)
    reach = {key: _reachable(key, dependencies, pending) for key in unresolved}
    for key in unresolved:
        if key in reach[key]:
            cycle = [other for other in unresolved if other in reach[key] and key in reach[other]]
            results[key] = EvaluationResult.failure(
                ErrorKind.NUMERIC_ERROR,
                f"Circular reference among calculated fields: {', '.join(cycle)}",
                used=dependencies[key],
            )
        else:
            blocked = [dep for dep in dependencies[key] if dep in pending and dep != key]
            results[key] = EvaluationResult.failure(
                ErrorKind.MISSING_VARIABLE,
                f"Missing value for: {', '.join(blocked)}",
                used=dependencies[key],
                missing=blocked,
            )
    return results
