"""Arithmetic formula parser and evaluator.

Formulas are parsed into a small expression tree and evaluated with Decimal
arithmetic. Nothing is ever executed as code.

Grammar:
    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | IDENT | IDENT "(" [expr ("," expr)*] ")" | "(" expr ")"

Identifiers are whole tokens, so a dependency named `income` can never match
inside `income_total`.

Null handling: a null operand makes the whole arithmetic result null, so a
failed upstream slot propagates as null rather than as a number.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, DecimalException
from functools import lru_cache
from typing import Any

from slotengine.errors import FormulaEvaluationError, MalformedExpressionError
from slotengine.models.values import MISSING, is_numeric, parse_numeric_text, to_decimal

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<number>\d+(?:\.\d*)?|\.\d+)
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<op>[-+*/(),])
    |(?P<space>\s+)
    """,
    re.VERBOSE,
)

MAX_FORMULA_LENGTH = 4096
MAX_NESTING_DEPTH = 100


@dataclass(frozen=True)
class Token:
    """Lexical token: kind is 'number', 'ident', 'op' or 'end'."""

    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class Number:
    value: Decimal


@dataclass(frozen=True)
class Name:
    name: str


@dataclass(frozen=True)
class Negate:
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    operator: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Call:
    function: str
    args: tuple[Node, ...]


Node = Number | Name | Negate | BinaryOp | Call


def tokenize(formula: str) -> list[Token]:
    """Split a formula into tokens.

    Raises:
        MalformedExpressionError: On any character outside the grammar.
    """
    tokens: list[Token] = []
    position = 0
    while position < len(formula):
        match = _TOKEN_PATTERN.match(formula, position)
        if match is None:
            raise MalformedExpressionError(
                f"Unexpected character {formula[position]!r} at position {position}"
            )
        kind = match.lastgroup or ""
        if kind != "space":
            tokens.append(Token(kind=kind, text=match.group(), position=position))
        position = match.end()
    tokens.append(Token(kind="end", text="", position=len(formula)))
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._index = 0
        self._depth = 0

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _expect(self, text: str) -> None:
        token = self._advance()
        if token.text != text:
            found = token.text or "end of formula"
            raise MalformedExpressionError(
                f"Expected {text!r} at position {token.position}, found {found!r}"
            )

    def parse(self) -> Node:
        node = self._expr()
        token = self._peek()
        if token.kind != "end":
            raise MalformedExpressionError(
                f"Unexpected {token.text!r} at position {token.position}"
            )
        return node

    def _expr(self) -> Node:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            raise MalformedExpressionError("Formula is nested too deeply")
        node = self._term()
        while self._peek().text in ("+", "-"):
            operator = self._advance().text
            node = BinaryOp(operator, node, self._term())
        self._depth -= 1
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._peek().text in ("*", "/"):
            operator = self._advance().text
            node = BinaryOp(operator, node, self._unary())
        return node

    def _unary(self) -> Node:
        token = self._peek()
        if token.text in ("+", "-"):
            self._advance()
            self._depth += 1
            if self._depth > MAX_NESTING_DEPTH:
                raise MalformedExpressionError("Formula is nested too deeply")
            operand = self._unary()
            self._depth -= 1
            return Negate(operand) if token.text == "-" else operand
        return self._primary()

    def _primary(self) -> Node:
        token = self._advance()
        if token.kind == "number":
            return Number(Decimal(token.text))
        if token.kind == "ident":
            if self._peek().text == "(":
                return self._call(token)
            return Name(token.text)
        if token.text == "(":
            node = self._expr()
            self._expect(")")
            return node
        found = token.text or "end of formula"
        raise MalformedExpressionError(f"Unexpected {found!r} at position {token.position}")

    def _call(self, name_token: Token) -> Node:
        function = name_token.text
        if function not in FUNCTIONS:
            raise MalformedExpressionError(
                f"Unknown function {function!r}. Allowed: {sorted(FUNCTIONS)}"
            )
        self._expect("(")
        args: list[Node] = []
        if self._peek().text != ")":
            args.append(self._expr())
            while self._peek().text == ",":
                self._advance()
                args.append(self._expr())
        self._expect(")")
        low, high = _ARITY[function]
        if not low <= len(args) <= high:
            raise MalformedExpressionError(
                f"{function}() takes {_arity_text(low, high)} argument(s), got {len(args)}"
            )
        return Call(function, tuple(args))


def _arity_text(low: int, high: int) -> str:
    if low == high:
        return str(low)
    if high == _VARIADIC:
        return f"at least {low}"
    return f"{low} to {high}"


@lru_cache(maxsize=1024)
def parse_formula(formula: str) -> Node:
    """Parse a formula into an expression tree (cached).

    Raises:
        MalformedExpressionError: If the formula does not match the grammar.
    """
    if not formula.strip():
        raise MalformedExpressionError("Formula is empty")
    if len(formula) > MAX_FORMULA_LENGTH:
        raise MalformedExpressionError(f"Formula exceeds {MAX_FORMULA_LENGTH} characters")
    return _Parser(tokenize(formula)).parse()


def formula_identifiers(formula: str) -> set[str]:
    """Variable names referenced by a formula (function names excluded)."""
    names: set[str] = set()
    stack: list[Node] = [parse_formula(formula)]
    while stack:
        node = stack.pop()
        if isinstance(node, Name):
            names.add(node.name)
        elif isinstance(node, Negate):
            stack.append(node.operand)
        elif isinstance(node, BinaryOp):
            stack.extend((node.left, node.right))
        elif isinstance(node, Call):
            stack.extend(node.args)
    return names


def _round_half_up(value: Decimal, places: Decimal | None = None) -> Decimal:
    digits = 0 if places is None else int(places)
    return value.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)


def _min(*args: Decimal) -> Decimal:
    return min(args)


def _max(*args: Decimal) -> Decimal:
    return max(args)


_VARIADIC = 1 << 16

FUNCTIONS: dict[str, Callable[..., Decimal]] = {
    "min": _min,
    "max": _max,
    "abs": lambda x: abs(x),
    "round": _round_half_up,
    "floor": lambda x: x.to_integral_value(rounding=ROUND_FLOOR),
    "ceil": lambda x: x.to_integral_value(rounding=ROUND_CEILING),
}

_ARITY: dict[str, tuple[int, int]] = {
    "min": (1, _VARIADIC),
    "max": (1, _VARIADIC),
    "abs": (1, 1),
    "round": (1, 2),
    "floor": (1, 1),
    "ceil": (1, 1),
}


def _operand(name: str, inputs: Mapping[str, Any]) -> Decimal | None:
    """Resolve an identifier to a Decimal (or None for null)."""
    value = inputs[name] if name in inputs else MISSING
    if value is MISSING:
        raise MalformedExpressionError(f"Unknown identifier {name!r} in formula")
    if value is None:
        return None
    if is_numeric(value):
        return to_decimal(value)
    if isinstance(value, str):
        parsed = parse_numeric_text(value)
        if parsed is not None:
            return parsed
    raise FormulaEvaluationError(
        f"Operand {name!r} is not numeric (got {type(value).__name__})"
    )


def _evaluate(node: Node, inputs: Mapping[str, Any]) -> Decimal | None:
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Name):
        return _operand(node.name, inputs)
    if isinstance(node, Negate):
        operand = _evaluate(node.operand, inputs)
        return None if operand is None else -operand
    if isinstance(node, BinaryOp):
        left = _evaluate(node.left, inputs)
        right = _evaluate(node.right, inputs)
        if left is None or right is None:
            return None
        if node.operator == "+":
            return left + right
        if node.operator == "-":
            return left - right
        if node.operator == "*":
            return left * right
        if right == 0:
            raise FormulaEvaluationError("Division by zero")
        return left / right
    args = [_evaluate(arg, inputs) for arg in node.args]
    if any(arg is None for arg in args):
        return None
    return FUNCTIONS[node.function](*args)


def evaluate_formula(formula: str, inputs: Mapping[str, Any]) -> Decimal | None:
    """Evaluate a formula against named inputs.

    Args:
        formula: Formula text, e.g. "min(24, years_of_service) * weekly_pay".
        inputs: Values for the identifiers used in the formula.

    Returns:
        The Decimal result, or None if a null operand propagated.

    Raises:
        MalformedExpressionError: If the formula is invalid or references an
            identifier not present in inputs.
        FormulaEvaluationError: On non-numeric operands or arithmetic failure.
    """
    node = parse_formula(formula)
    try:
        return _evaluate(node, inputs)
    except (DecimalException, OverflowError) as e:
        raise FormulaEvaluationError(f"Arithmetic error in formula: {type(e).__name__}") from e
