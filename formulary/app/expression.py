from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

from .errors import ExpressionSyntaxError

MAX_EXPRESSION_LENGTH = 4000
MAX_NESTING_DEPTH = 64
# configured depths are clamped to this; deeper trees would exhaust the interpreter stack
NESTING_DEPTH_CEILING = 100

# name -> (min args, max args); None means unbounded
FUNCTION_ARITY: Dict[str, Tuple[int, int | None]] = {
    "min": (1, None),
    "max": (1, None),
    "abs": (1, 1),
    "round": (1, 1),
    "floor": (1, 1),
    "ceil": (1, 1),
}
RESERVED_NAMES = frozenset(FUNCTION_ARITY)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TOKEN_RE = re.compile(
    r"(?P<number>[0-9]+\.[0-9]*|\.[0-9]+|[0-9]+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<op>[-+*/(),])"
)
_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Negate:
    operand: "Node"


@dataclass(frozen=True)
class Chain:
    """Left-associative run of operators sharing one precedence level."""

    first: "Node"
    rest: Tuple[Tuple[str, "Node"], ...]

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self.rest[0][0]]


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]


Node = Union[Number, Variable, Negate, Chain, Call]


def is_identifier(name: str) -> bool:
    return bool(IDENTIFIER_RE.match(name)) and name not in RESERVED_NAMES


def _snippet(expression: str, position: int, width: int = 12) -> str:
    start = max(position - width, 0)
    return expression[start : position + width].strip()


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    length = len(expression)
    while pos < length:
        if expression[pos].isspace():
            pos += 1
            continue
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ExpressionSyntaxError(
                f"Invalid character {expression[pos]!r}", pos, _snippet(expression, pos)
            )
        tokens.append(Token(match.lastgroup or "op", match.group(), pos))
        pos = match.end()
    tokens.append(Token("end", "", length))
    return tokens


class _Parser:
    def __init__(self, expression: str, max_depth: int):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0
        self.depth = 0
        self.max_depth = max_depth

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        if token.kind != "end":
            self.index += 1
        return token

    def _is_op(self, *values: str) -> bool:
        return self.current.kind == "op" and self.current.text in values

    def _error(self, message: str, token: Token | None = None) -> ExpressionSyntaxError:
        token = token or self.current
        return ExpressionSyntaxError(
            message, token.position, _snippet(self.expression, token.position)
        )

    def _unexpected(self) -> ExpressionSyntaxError:
        if self.current.kind == "end":
            return self._error("Unexpected end of expression")
        return self._error(f"Unexpected '{self.current.text}'")

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > self.max_depth:
            raise self._error(f"Expression nested deeper than {self.max_depth} levels")

    def _leave(self) -> None:
        self.depth -= 1

    def _expect(self, value: str) -> None:
        if not self._is_op(value):
            if self.current.kind == "end":
                raise self._error(f"Missing '{value}'")
            raise self._error(f"Expected '{value}' but found '{self.current.text}'")
        self._advance()

    def parse(self) -> Node:
        if self.current.kind == "end":
            raise ExpressionSyntaxError("Expression is empty", 0)
        node = self._expression()
        if self.current.kind != "end":
            if self._is_op(")"):
                raise self._error("Unbalanced ')'")
            raise self._unexpected()
        return node

    def _chain(self, operators: Tuple[str, ...], operand) -> Node:
        first = operand()
        rest: List[Tuple[str, Node]] = []
        while self._is_op(*operators):
            op = self._advance().text
            rest.append((op, operand()))
        if not rest:
            return first
        return Chain(first, tuple(rest))

    def _expression(self) -> Node:
        return self._chain(("+", "-"), self._term)

    def _term(self) -> Node:
        return self._chain(("*", "/"), self._unary)

    def _unary(self) -> Node:
        if self._is_op("-"):
            self._advance()
            self._enter()
            operand = self._unary()
            self._leave()
            return Negate(operand)
        return self._primary()

    def _primary(self) -> Node:
        token = self.current
        if token.kind == "number":
            self._advance()
            return Number(float(token.text))
        if token.kind == "name":
            self._advance()
            if token.text in FUNCTION_ARITY:
                return self._call(token)
            if self._is_op("("):
                raise self._error(f"Unknown function '{token.text}'", token)
            return Variable(token.text)
        if self._is_op("("):
            self._advance()
            self._enter()
            node = self._expression()
            self._leave()
            self._expect(")")
            return node
        raise self._unexpected()

    def _call(self, name_token: Token) -> Node:
        name = name_token.text
        if not self._is_op("("):
            raise self._error(f"Function '{name}' must be called with parentheses", name_token)
        self._advance()
        self._enter()
        args: List[Node] = []
        if not self._is_op(")"):
            args.append(self._expression())
            while self._is_op(","):
                self._advance()
                args.append(self._expression())
        self._leave()
        self._expect(")")
        low, high = FUNCTION_ARITY[name]
        if len(args) < low or (high is not None and len(args) > high):
            expected = str(low) if high == low else f"at least {low}"
            raise self._error(
                f"Function '{name}' expects {expected} argument(s), got {len(args)}", name_token
            )
        return Call(name, tuple(args))


def parse(
    expression: str,
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_depth: int = MAX_NESTING_DEPTH,
) -> Node:
    """Parse an arithmetic formula into an AST, raising ExpressionSyntaxError."""
    if not isinstance(expression, str):
        raise ExpressionSyntaxError("Expression must be a string")
    if len(expression) > max_length:
        raise ExpressionSyntaxError(f"Expression longer than {max_length} characters")
    return _Parser(expression, min(max_depth, NESTING_DEPTH_CEILING)).parse()


def free_variables(node: Node) -> List[str]:
    """Variable names referenced by the tree, in order of first appearance."""
    seen: Dict[str, None] = {}

    def walk(item: Node) -> None:
        if isinstance(item, Variable):
            seen.setdefault(item.name, None)
        elif isinstance(item, Negate):
            walk(item.operand)
        elif isinstance(item, Chain):
            walk(item.first)
            for _, operand in item.rest:
                walk(operand)
        elif isinstance(item, Call):
            for arg in item.args:
                walk(arg)

    walk(node)
    return list(seen)


def format_number(value: float) -> str:
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def render(node: Node) -> str:
    """Canonical text for a tree; used in evaluation traces."""
    if isinstance(node, Number):
        return format_number(node.value)
    if isinstance(node, Variable):
        return node.name
    if isinstance(node, Negate):
        inner = render(node.operand)
        return f"-({inner})" if isinstance(node.operand, Chain) else f"-{inner}"
    if isinstance(node, Call):
        return f"{node.name}({', '.join(render(arg) for arg in node.args)})"

    def wrap(child: Node) -> str:
        text = render(child)
        if isinstance(child, Chain) and child.precedence <= node.precedence:
            return f"({text})"
        return text

    parts = [wrap(node.first)]
    for op, operand in node.rest:
        parts.append(op)
        parts.append(wrap(operand))
    return " ".join(parts)
