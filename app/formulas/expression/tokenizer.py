"""Tokenizer for Excel-style formula text."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.core.exceptions import ExpressionEvaluationError


class TokenType(str, Enum):
    IDENTIFIER = "IDENTIFIER"
    NUMBER = "NUMBER"
    STRING = "STRING"
    OPERATOR = "OPERATOR"
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    LBRACE = "{"
    RBRACE = "}"
    COMMA = ","
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    start: int
    end: int


_PUNCTUATION = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    ",": TokenType.COMMA,
}

_TWO_CHAR_OPERATORS = {">=", "<=", "<>", "!=", "=="}
_ONE_CHAR_OPERATORS = set("+-*/%><=")
_DIGITS = set("0123456789")


def tokenize(text: str) -> list[Token]:
    """Split formula text into tokens, always ending with an EOF token.

    Raises:
        ExpressionEvaluationError: Unterminated string, malformed number, or
            a character outside the grammar.
    """
    tokens: list[Token] = []
    i = 0
    length = len(text)

    while i < length:
        char = text[i]

        if char.isspace():
            i += 1
            continue

        if char in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[char], char, i, i + 1))
            i += 1
            continue

        pair = text[i:i + 2]
        if pair in _TWO_CHAR_OPERATORS:
            tokens.append(Token(TokenType.OPERATOR, "=" if pair == "==" else pair, i, i + 2))
            i += 2
            continue

        if char in _ONE_CHAR_OPERATORS:
            tokens.append(Token(TokenType.OPERATOR, char, i, i + 1))
            i += 1
            continue

        if char in ("'", '"'):
            end = text.find(char, i + 1)
            if end == -1:
                raise ExpressionEvaluationError(
                    f"Unterminated string starting at position {i}",
                    details={"position": i},
                )
            tokens.append(Token(TokenType.STRING, text[i + 1:end], i, end + 1))
            i = end + 1
            continue

        if char in _DIGITS or (char == "." and i + 1 < length and text[i + 1] in _DIGITS):
            start = i
            while i < length and (text[i] in _DIGITS or text[i] == "."):
                i += 1
            literal = text[start:i]
            if literal.count(".") > 1:
                raise ExpressionEvaluationError(
                    f"Malformed number '{literal}' at position {start}",
                    details={"position": start},
                )
            tokens.append(Token(TokenType.NUMBER, literal, start, i))
            continue

        if char.isalpha() or char == "_":
            start = i
            while i < length and (text[i].isalnum() or text[i] == "_"):
                i += 1
            tokens.append(Token(TokenType.IDENTIFIER, text[start:i], start, i))
            continue

        raise ExpressionEvaluationError(
            f"Unexpected character '{char}' at position {i}",
            details={"position": i},
        )

    tokens.append(Token(TokenType.EOF, "", length, length))
    return tokens
