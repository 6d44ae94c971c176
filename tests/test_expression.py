from __future__ import annotations

import re

import pytest

from formulary.app.errors import ErrorKind, ExpressionSyntaxError
from formulary.app.expression import (
    FUNCTION_ARITY,
    Call,
    Chain,
    Negate,
    Number,
    Variable,
    free_variables,
    is_identifier,
    parse,
    render,
)
from formulary.app.validator import validate


def _identifiers(expression: str) -> set[str]:
    names = re.findall(r"[A-Za-z_][A-Za-z0-9_]*", expression)
    return {name for name in names if name not in FUNCTION_ARITY}


def test_parse_builds_flat_chains_with_precedence() -> None:
    tree = parse("a + b * 2 - c")
    assert isinstance(tree, Chain)
    assert tree.first == Variable("a")
    assert [op for op, _ in tree.rest] == ["+", "-"]
    product = tree.rest[0][1]
    assert isinstance(product, Chain)
    assert product.rest == (("*", Number(2.0)),)


def test_parse_unary_minus_and_calls() -> None:
    tree = parse("-max(a, 0.5, .25)")
    assert isinstance(tree, Negate)
    assert tree.operand == Call("max", (Variable("a"), Number(0.5), Number(0.25)))


def test_free_variables_in_first_appearance_order() -> None:
    tree = parse("revenueBenefit + costBenefit * 2 - max(revenueBenefit, riskBenefit_2)")
    assert free_variables(tree) == ["revenueBenefit", "costBenefit", "riskBenefit_2"]


@pytest.mark.parametrize(
    "expression",
    [
        "revenueBenefit + costBenefit + cashFlowBenefit + riskBenefit",
        "(valueScore * weightValue / 100) + ((100 - effortScore) * weightEffort / 100)",
        "max(0, 100 - (timeToValueMonths * 10))",
        "round(abs(a - b) / ceil(c)) + floor(d)",
        "-x * -(y + 3.5)",
    ],
)
def test_validate_reports_exact_used_variables(expression: str) -> None:
    expected = _identifiers(expression)
    result = validate(expression, expected)
    assert result.is_valid is True
    assert result.errors == []
    assert set(result.used_variables) == expected
    assert result.missing_variables == []


def test_validate_lists_every_unknown_variable() -> None:
    result = validate("a + b * c", {"a"})
    assert result.is_valid is False
    assert result.error_kind is ErrorKind.UNKNOWN_VARIABLE
    assert result.missing_variables == ["b", "c"]
    assert result.errors == ["Unknown variable: b", "Unknown variable: c"]


@pytest.mark.parametrize(
    "expression, message",
    [
        ("", "Expression is empty"),
        ("   ", "Expression is empty"),
        ("(a + b", "Missing ')'"),
        ("a + b)", "Unbalanced ')'"),
        ("a +", "Unexpected end of expression"),
        ("a $ b", "Invalid character '$'"),
        ("2 3", "Unexpected '3'"),
        ("foo(a)", "Unknown function 'foo'"),
        ("min + 1", "Function 'min' must be called with parentheses"),
        ("abs(a, b)", "Function 'abs' expects 1 argument(s), got 2"),
        ("max()", "Function 'max' expects at least 1 argument(s), got 0"),
        ("a = 1", "Invalid character '='"),
        ("__import__(os)", "Unknown function '__import__'"),
    ],
)
def test_syntax_errors_are_returned_not_raised(expression: str, message: str) -> None:
    result = validate(expression, {"a", "b"})
    assert result.is_valid is False
    assert result.error_kind is ErrorKind.SYNTAX_ERROR
    assert len(result.errors) == 1
    assert result.errors[0].startswith(f"Syntax error: {message}")


def test_syntax_error_carries_position_and_snippet() -> None:
    with pytest.raises(ExpressionSyntaxError) as exc:
        parse("a $ b")
    assert exc.value.position == 2
    assert "a $ b" in exc.value.describe()


def test_deep_nesting_is_rejected() -> None:
    nested = "(" * 100 + "a" + ")" * 100
    with pytest.raises(ExpressionSyntaxError, match="nested deeper than 64"):
        parse(nested)
    with pytest.raises(ExpressionSyntaxError, match="nested deeper"):
        parse("-" * 200 + "a")
    assert parse("(" * 10 + "a" + ")" * 10) == Variable("a")


def test_long_flat_chains_parse_without_recursion() -> None:
    expression = " + ".join(["a"] * 900)
    tree = parse(expression, max_length=10_000)
    assert isinstance(tree, Chain)
    assert len(tree.rest) == 899


def test_length_limit() -> None:
    with pytest.raises(ExpressionSyntaxError, match="longer than 20 characters"):
        parse("a + b + c + d + e + f + g", max_length=20)


def test_function_names_are_reserved() -> None:
    assert is_identifier("revenueBenefit") is True
    assert is_identifier("min") is False
    assert is_identifier("2x") is False
    assert is_identifier("has-dash") is False


@pytest.mark.parametrize(
    "expression",
    ["(a + b) * c", "a - (b - c)", "-(a + b)", "a * b + c / 2", "max(a, -b) / 4.5"],
)
def test_render_round_trips(expression: str) -> None:
    assert render(parse(expression)) == expression


def test_configured_depth_cannot_exceed_ceiling() -> None:
    with pytest.raises(ExpressionSyntaxError, match="nested deeper than 100"):
        parse("(" * 3000 + "a" + ")" * 3000, max_length=10_000, max_depth=100_000)
    result = validate("-" * 500 + "a", {"a"}, max_depth=100_000)
    assert result.error_kind is ErrorKind.SYNTAX_ERROR
    assert parse("(" * 90 + "a" + ")" * 90, max_depth=100_000) == Variable("a")
