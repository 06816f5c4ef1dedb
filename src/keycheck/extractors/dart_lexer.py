# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Dart tokenizer used by the structural extractor.

Only the lexical shapes needed to find constructor calls and their literal
arguments are modelled: identifiers, numbers, single-character symbols and
string literals (raw, triple-quoted and interpolated). Comments, including
nested block comments, are dropped.
"""

import bisect
import logging
import re
from dataclasses import dataclass
from typing import Literal

from keycheck.errors import DartSyntaxError

logger = logging.getLogger(__name__)

TokenKind = Literal["identifier", "number", "string", "symbol"]

_IDENTIFIER_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F]+|\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_SIMPLE_ESCAPES: dict[str, str] = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "\\": "\\",
    "'": "'",
    '"': '"',
    "$": "$",
}
_UNICODE_ESCAPE_RE = re.compile(r"u\{([0-9a-fA-F]{1,6})\}|u([0-9a-fA-F]{4})|x([0-9a-fA-F]{2})")


@dataclass(frozen=True)
class Token:
    """Represent one Dart token.

    Attributes:
        kind: Token category.
        text: Identifier name, symbol character, or raw lexeme.
        line: 1-based line of the first character.
        column: 1-based column of the first character.
        value: Decoded value for static string literals; ``None`` for
            interpolated strings and non-string tokens.
    """

    kind: TokenKind
    text: str
    line: int
    column: int
    value: str | None = None


def decode_escapes(body: str) -> str | None:
    """Decode a non-raw Dart string body.

    Args:
        body: Text between the quotes.

    Returns:
        Decoded value, or ``None`` if the body interpolates (``$name`` or
        ``${...}``) and so has no static value.
    """
    out: list[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "$":
            return None
        if char != "\\":
            out.append(char)
            index += 1
            continue
        if index + 1 >= len(body):
            out.append("\\")
            break
        escaped = body[index + 1]
        if escaped in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[escaped])
            index += 2
            continue
        match = _UNICODE_ESCAPE_RE.match(body, index + 1)
        if match:
            digits = match.group(1) or match.group(2) or match.group(3)
            out.append(chr(int(digits, 16)))
            index = match.end()
            continue
        out.append(escaped)
        index += 2
    return "".join(out)


class _Lexer:
    def __init__(self, source: str) -> None:
        self._source = source
        self._line_starts = [0]
        for match in re.finditer("\n", source):
            self._line_starts.append(match.end())

    def position(self, offset: int) -> tuple[int, int]:
        line_index = bisect.bisect_right(self._line_starts, offset) - 1
        return line_index + 1, offset - self._line_starts[line_index] + 1

    def error(self, message: str, offset: int) -> DartSyntaxError:
        line, column = self.position(offset)
        return DartSyntaxError(message, line=line, column=column)

    def tokens(self) -> list[Token]:
        source = self._source
        tokens: list[Token] = []
        pos = 0
        length = len(source)
        while pos < length:
            char = source[pos]
            if char.isspace():
                pos += 1
                continue
            if source.startswith("//", pos):
                newline = source.find("\n", pos)
                pos = length if newline < 0 else newline + 1
                continue
            if source.startswith("/*", pos):
                pos = self._skip_block_comment(pos)
                continue
            if char in "'\"" or (
                char in "rR" and pos + 1 < length and source[pos + 1] in "'\""
            ):
                end, value = self._scan_string(pos)
                line, column = self.position(pos)
                tokens.append(
                    Token(
                        kind="string",
                        text=source[pos:end],
                        line=line,
                        column=column,
                        value=value,
                    )
                )
                pos = end
                continue
            match = _IDENTIFIER_RE.match(source, pos)
            if match:
                line, column = self.position(pos)
                tokens.append(
                    Token(kind="identifier", text=match.group(), line=line, column=column)
                )
                pos = match.end()
                continue
            match = _NUMBER_RE.match(source, pos)
            if match:
                line, column = self.position(pos)
                tokens.append(
                    Token(kind="number", text=match.group(), line=line, column=column)
                )
                pos = match.end()
                continue
            line, column = self.position(pos)
            tokens.append(Token(kind="symbol", text=char, line=line, column=column))
            pos += 1
        return tokens

    def _skip_block_comment(self, start: int) -> int:
        depth = 0
        pos = start
        while pos < len(self._source):
            if self._source.startswith("/*", pos):
                depth += 1
                pos += 2
            elif self._source.startswith("*/", pos):
                depth -= 1
                pos += 2
                if depth == 0:
                    return pos
            else:
                pos += 1
        raise self.error("unterminated block comment", start)

    def _scan_string(self, start: int) -> tuple[int, str | None]:
        """Scan a string literal starting at ``start``.

        Returns:
            Offset just past the closing quote and the decoded static value.
        """
        source = self._source
        pos = start
        raw = source[pos] in "rR"
        if raw:
            pos += 1
        quote = source[pos]
        triple = source.startswith(quote * 3, pos)
        delimiter = quote * 3 if triple else quote
        pos += len(delimiter)
        body_start = pos
        interpolated = False
        while pos < len(source):
            if source.startswith(delimiter, pos):
                body = source[body_start:pos]
                end = pos + len(delimiter)
                if raw:
                    return end, body
                if interpolated:
                    return end, None
                return end, decode_escapes(body)
            char = source[pos]
            if char == "\n" and not triple:
                break
            if char == "\\" and not raw:
                pos += 2
                continue
            if char == "$" and not raw:
                interpolated = True
                if source.startswith("${", pos):
                    pos = self._skip_interpolation(pos + 2)
                    continue
            pos += 1
        raise self.error("unterminated string literal", start)

    def _skip_interpolation(self, pos: int) -> int:
        """Skip a ``${...}`` body, honouring nested braces and strings."""
        source = self._source
        depth = 1
        start = pos
        while pos < len(source):
            char = source[pos]
            if char in "'\"" or (
                char in "rR" and pos + 1 < len(source) and source[pos + 1] in "'\""
            ):
                pos, _ = self._scan_string(pos)
                continue
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return pos + 1
            pos += 1
        raise self.error("unterminated string interpolation", start)


def tokenize(source: str) -> list[Token]:
    """Tokenize Dart source text.

    Args:
        source: Full file contents.

    Returns:
        Tokens in source order, comments removed.

    Raises:
        DartSyntaxError: On an unterminated string, interpolation or comment.
    """
    return _Lexer(source).tokens()


def match_brackets(tokens: list[Token]) -> dict[int, int]:
    """Pair every opening bracket token with its closing token.

    Args:
        tokens: Token list from ``tokenize``.

    Returns:
        Mapping from opener index to closer index and back.

    Raises:
        DartSyntaxError: If brackets are unbalanced or mismatched.
    """
    pairs = {"(": ")", "[": "]", "{": "}"}
    closers = {value: key for key, value in pairs.items()}
    stack: list[int] = []
    matches: dict[int, int] = {}
    for index, token in enumerate(tokens):
        if token.kind != "symbol":
            continue
        if token.text in pairs:
            stack.append(index)
        elif token.text in closers:
            if not stack or tokens[stack[-1]].text != closers[token.text]:
                raise DartSyntaxError(
                    f"unexpected '{token.text}'", line=token.line, column=token.column
                )
            opener = stack.pop()
            matches[opener] = index
            matches[index] = opener
    if stack:
        opener_token = tokens[stack[-1]]
        raise DartSyntaxError(
            f"unclosed '{opener_token.text}'",
            line=opener_token.line,
            column=opener_token.column,
        )
    return matches
