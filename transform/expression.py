"""Arithmetic formula evaluator for `calculate` rules.

Grammar (recursive descent, no code execution):

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | "{value}" | "(" expr ")"

Usage:
    Formula.compile("({value} + 5) * 2").evaluate("10")   # 30
"""

import math
import re
from decimal import Decimal
from functools import lru_cache
from typing import Any, List, Tuple, Union

from core.errors import TransformationWarning


Number = Union[int, float]

_TOKEN_RE = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(\{value\})|([-+*/()]))")
_INT_RE = re.compile(r"^[+-]?\d+$")


class FormulaError(TransformationWarning):
    """Formula failed to parse or evaluate."""
    pass


def _tokenize(formula: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise FormulaError(f"Unexpected character {text[pos:].lstrip()[:1]!r} in formula {formula!r}")
        number, variable, op = match.groups()
        if number is not None:
            tokens.append(("num", number))
        elif variable is not None:
            tokens.append(("var", variable))
        else:
            tokens.append(("op", op))
        pos = match.end()
    return tokens


def to_number(value: Any) -> Number:
    """Coerce a field value to a number for substitution into `{value}`."""
    if isinstance(value, bool):
        raise FormulaError(f"Boolean value {value!r} is not numeric")
    if isinstance(value, int):
        return value
    number = None
    try:
        if isinstance(value, (float, Decimal)):
            number = float(value)
        elif isinstance(value, str):
            text = value.strip()
            if _INT_RE.match(text):
                return int(text)
            number = float(text)
    except ValueError:
        pass
    if number is None or not math.isfinite(number):
        raise FormulaError(f"Value {value!r} is not numeric")
    return number


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]], formula: str):
        self.tokens = tokens
        self.formula = formula
        self.pos = 0

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else (None, None)

    def take(self):
        token = self.peek()
        self.pos += 1
        return token

    def parse(self):
        if not self.tokens:
            raise FormulaError("Empty formula")
        node = self.expr()
        if self.pos != len(self.tokens):
            raise FormulaError(f"Unexpected token {self.peek()[1]!r} in formula {self.formula!r}")
        return node

    def expr(self):
        node = self.term()
        while self.peek() in (("op", "+"), ("op", "-")):
            op = self.take()[1]
            node = (op, node, self.term())
        return node

    def term(self):
        node = self.unary()
        while self.peek() in (("op", "*"), ("op", "/")):
            op = self.take()[1]
            node = (op, node, self.unary())
        return node

    def unary(self):
        if self.peek() in (("op", "+"), ("op", "-")):
            op = self.take()[1]
            return ("neg" if op == "-" else "pos", self.unary())
        return self.primary()

    def primary(self):
        kind, text = self.take()
        if kind == "num":
            return ("num", float(text) if "." in text else int(text))
        if kind == "var":
            return ("var",)
        if (kind, text) == ("op", "("):
            node = self.expr()
            if self.take() != ("op", ")"):
                raise FormulaError(f"Missing ')' in formula {self.formula!r}")
            return node
        if kind is None:
            raise FormulaError(f"Formula ends unexpectedly: {self.formula!r}")
        raise FormulaError(f"Unexpected token {text!r} in formula {self.formula!r}")


def _evaluate(node, value: Number) -> Number:
    tag = node[0]
    if tag == "num":
        return node[1]
    if tag == "var":
        return value
    if tag == "neg":
        return -_evaluate(node[1], value)
    if tag == "pos":
        return _evaluate(node[1], value)

    left = _evaluate(node[1], value)
    right = _evaluate(node[2], value)
    if tag == "+":
        return left + right
    if tag == "-":
        return left - right
    if tag == "*":
        return left * right
    if right == 0:
        raise FormulaError("Division by zero")
    return left / right


class Formula:
    """A parsed formula, reusable across values."""

    def __init__(self, source: str, tree):
        self.source = source
        self._tree = tree

    @classmethod
    def compile(cls, source: str) -> "Formula":
        return _compile(source)

    @property
    def uses_value(self) -> bool:
        return "{value}" in self.source

    def evaluate(self, value: Any = None) -> Number:
        number = to_number(value) if self.uses_value else 0
        try:
            result = _evaluate(self._tree, number)
        except ArithmeticError as e:
            raise FormulaError(f"Cannot evaluate {self.source!r}: {e}")
        if isinstance(result, float) and not math.isfinite(result):
            raise FormulaError(f"Formula {self.source!r} overflowed")
        return result

    def __repr__(self) -> str:
        return f"Formula({self.source!r})"


@lru_cache(maxsize=256)
def _compile(source: str) -> Formula:
    return Formula(source, _Parser(_tokenize(source), source).parse())


def evaluate_formula(formula: str, value: Any) -> Number:
    """Parse (cached) and evaluate `formula` with `{value}` bound to value."""
    return Formula.compile(formula).evaluate(value)
