"""Recursive-descent parser producing an expression tree.

Grammar, lowest precedence first::

    expression     := comparison
    comparison     := additive (("=" | "<>" | "!=" | ">" | "<" | ">=" | "<=") additive)*
    additive       := multiplicative (("+" | "-") multiplicative)*
    multiplicative := unary (("*" | "/") unary)*
    unary          := "-" unary | "+" unary | primary "%"*
    primary        := NUMBER | STRING | "{" args "}" | "(" expression ")"
                    | IDENT "[" quarter "]" | IDENT "(" args ")" | IDENT

A leading ``=`` on the whole formula is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from app.core.exceptions import ExpressionEvaluationError

from .functions import FUNCTIONS
from .quarters import position_for_quarter_index
from .tokenizer import Token, TokenType, tokenize

COMPARISON_OPERATORS = frozenset({"=", "<>", "!=", ">", "<", ">=", "<="})

_QUARTER_REF_RE = re.compile(r"^([QP])(\d+)$", re.IGNORECASE)


# =============================================================================
# TREE NODES
# =============================================================================


class Node:
    """Base class for expression tree nodes."""


@dataclass(frozen=True)
class Literal(Node):
    value: object


@dataclass(frozen=True)
class ArrayLiteral(Node):
    items: tuple[Node, ...]


@dataclass(frozen=True)
class Name(Node):
    """Bare identifier: a LET/LAMBDA binding, else the newest value of a metric."""

    name: str
    start: int
    end: int


@dataclass(frozen=True)
class MetricRef(Node):
    """``Metric[Qn]``, ``Metric[Pn]`` or ``Metric[n]`` resolved to a position."""

    metric: str
    position: int
    start: int
    end: int


@dataclass(frozen=True)
class Invoke(Node):
    """``Name(args)`` where Name is not a library function.

    Calls a bound LAMBDA, or reads ``Metric(offset)`` relative to the newest
    quarter.
    """

    name: str
    args: tuple[Node, ...]
    start: int
    end: int


@dataclass(frozen=True)
class Call(Node):
    function: str
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Unary(Node):
    operator: str
    operand: Node


@dataclass(frozen=True)
class Percent(Node):
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    operator: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Compare(Node):
    operator: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Let(Node):
    bindings: tuple[tuple[str, Node], ...]
    body: Node


@dataclass(frozen=True)
class Lambda(Node):
    params: tuple[str, ...]
    body: Node


# =============================================================================
# PARSER
# =============================================================================


class Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def error(self, message: str, token: Token | None = None) -> ExpressionEvaluationError:
        token = token or self.peek()
        return ExpressionEvaluationError(
            f"{message} at position {token.start}",
            details={"position": token.start, "formula": self.text},
        )

    def peek(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type is not TokenType.EOF:
            self.index += 1
        return token

    def match(self, token_type: TokenType, value: str | None = None) -> Token | None:
        token = self.peek()
        if token.type is token_type and (value is None or token.value == value):
            return self.advance()
        return None

    def expect(self, token_type: TokenType, description: str) -> Token:
        token = self.match(token_type)
        if token is None:
            found = self.peek().value or "end of formula"
            raise self.error(f"Expected {description}, found '{found}'")
        return token

    def parse(self) -> Node:
        if self.peek().type is TokenType.EOF:
            raise self.error("Formula is empty")
        node = self.expression()
        if self.peek().type is not TokenType.EOF:
            raise self.error(f"Unexpected '{self.peek().value}'")
        return node

    def expression(self) -> Node:
        return self.comparison()

    def comparison(self) -> Node:
        node = self.additive()
        while self.peek().type is TokenType.OPERATOR and self.peek().value in COMPARISON_OPERATORS:
            operator = self.advance().value
            node = Compare(operator, node, self.additive())
        return node

    def additive(self) -> Node:
        node = self.multiplicative()
        while self.peek().type is TokenType.OPERATOR and self.peek().value in ("+", "-"):
            operator = self.advance().value
            node = Binary(operator, node, self.multiplicative())
        return node

    def multiplicative(self) -> Node:
        node = self.unary()
        while self.peek().type is TokenType.OPERATOR and self.peek().value in ("*", "/"):
            operator = self.advance().value
            node = Binary(operator, node, self.unary())
        return node

    def unary(self) -> Node:
        if self.match(TokenType.OPERATOR, "-"):
            return Unary("-", self.unary())
        if self.match(TokenType.OPERATOR, "+"):
            return self.unary()

        node = self.primary()
        while self.match(TokenType.OPERATOR, "%"):
            node = Percent(node)
        return node

    def arguments(self, closing: TokenType, description: str) -> tuple[Node, ...]:
        args: list[Node] = []
        if self.peek().type is not closing:
            args.append(self.expression())
            while self.match(TokenType.COMMA):
                args.append(self.expression())
        self.expect(closing, description)
        return tuple(args)

    def primary(self) -> Node:
        token = self.peek()

        if token.type is TokenType.NUMBER:
            self.advance()
            return Literal(float(token.value))

        if token.type is TokenType.STRING:
            self.advance()
            return Literal(token.value)

        if token.type is TokenType.LBRACE:
            self.advance()
            return ArrayLiteral(self.arguments(TokenType.RBRACE, "'}'"))

        if token.type is TokenType.LPAREN:
            self.advance()
            node = self.expression()
            self.expect(TokenType.RPAREN, "')'")
            return node

        if token.type is TokenType.IDENTIFIER:
            return self.identifier()

        raise self.error(f"Unexpected '{token.value or 'end of formula'}'")

    def identifier(self) -> Node:
        token = self.advance()
        name = token.value
        upper = name.upper()

        if self.match(TokenType.LBRACKET):
            position = self.quarter_position()
            closing = self.expect(TokenType.RBRACKET, "']'")
            return MetricRef(name, position, token.start, closing.end)

        if self.match(TokenType.LPAREN):
            if upper == "LET":
                return self.let(token)
            if upper == "LAMBDA":
                return self.lambda_(token)
            args = self.arguments(TokenType.RPAREN, "')'")
            spec = FUNCTIONS.get(upper)
            if spec is not None:
                try:
                    spec.check_arity(len(args))
                except ExpressionEvaluationError as e:
                    raise self.error(e.message, token) from None
                return Call(upper, args)
            return Invoke(name, args, token.start, self.tokens[self.index - 1].end)

        if upper in ("TRUE", "FALSE"):
            return Literal(upper == "TRUE")

        return Name(name, token.start, token.end)

    def quarter_position(self) -> int:
        token = self.advance()
        if token.type is TokenType.NUMBER and token.value.isdigit():
            return position_for_quarter_index(int(token.value))
        if token.type is TokenType.IDENTIFIER:
            match = _QUARTER_REF_RE.match(token.value)
            if match:
                index = int(match.group(2))
                if match.group(1).upper() == "P":
                    # Pn is the quarter before Qn
                    index -= 1
                return position_for_quarter_index(index)
        raise self.error("Expected quarter index (e.g. Q12, P12 or 12) inside []", token)

    def let(self, token: Token) -> Node:
        args = self.arguments(TokenType.RPAREN, "')' to close LET")
        if len(args) < 3 or len(args) % 2 == 0:
            raise self.error("LET requires name/value pairs followed by a body", token)

        bindings = []
        for i in range(0, len(args) - 1, 2):
            name_node = args[i]
            if not isinstance(name_node, Name):
                raise self.error("LET binding names must be plain identifiers", token)
            bindings.append((name_node.name, args[i + 1]))
        return Let(tuple(bindings), args[-1])

    def lambda_(self, token: Token) -> Node:
        args = self.arguments(TokenType.RPAREN, "')' to close LAMBDA")
        if len(args) < 2:
            raise self.error("LAMBDA requires at least one parameter and a body", token)

        params = []
        for param in args[:-1]:
            if not isinstance(param, Name):
                raise self.error("LAMBDA parameters must be plain identifiers", token)
            params.append(param.name)
        if len(set(params)) != len(params):
            raise self.error("LAMBDA parameter names must be unique", token)
        return Lambda(tuple(params), args[-1])


def strip_formula(text: str) -> str:
    text = (text or "").strip()
    if text.startswith("="):
        text = text[1:].strip()
    return text


def parse_expression(text: str) -> Node:
    """Parse formula text into a tree.

    Raises:
        ExpressionEvaluationError: The text is not a well-formed expression.
    """
    return Parser(strip_formula(text)).parse()
