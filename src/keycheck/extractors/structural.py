# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Structural Dart key extractor built on a token-level invocation tree."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from keycheck.extractor import ExtractionResult
from keycheck.extractors.dart_lexer import Token, match_brackets, tokenize
from keycheck.extractors.widgets import (
    FINDER_KEY_METHODS,
    FINDER_SEMANTICS_METHODS,
    GLOBAL_KEY_CLASSES,
    LITERAL_KEY_CLASSES,
    is_custom_key_class,
    is_widget,
)
from keycheck.model import (
    DETECTOR_TAGS,
    DetectorKind,
    FileAnalysis,
    KeyFragment,
    KeyLocation,
    SourceFile,
    Strategy,
)

logger = logging.getLogger(__name__)

_DECLARATION_KEYWORDS = {"class", "mixin", "enum", "extension"}
_CONTROL_KEYWORDS = {
    "if",
    "for",
    "while",
    "switch",
    "catch",
    "return",
    "assert",
    "await",
    "super",
    "this",
}
_TYPE_ARGUMENT_TOKENS = {".", ",", "?", "<", ">"}
_MAX_TYPE_ARGUMENT_TOKENS = 64


@dataclass
class Argument:
    """Represent one call argument as a token span plus nested calls."""

    name: str | None
    start: int
    end: int
    calls: list["Invocation"] = field(default_factory=list)


@dataclass
class Invocation:
    """Represent one constructor or method call expression.

    Attributes:
        callee: Dotted callee name, e.g. ``find.byKey`` or ``ValueKey``.
        token: First token of the callee, used as the location.
        type_args: Raw type argument text, e.g. ``<String>``.
        is_const: Whether the call is preceded by ``const``.
        arguments: Arguments in source order.
    """

    callee: str
    token: Token
    type_args: str | None
    is_const: bool
    arguments: list[Argument]

    @property
    def base_name(self) -> str:
        return self.callee.rsplit(".", 1)[-1]

    def positional(self, index: int = 0) -> Argument | None:
        positional = [arg for arg in self.arguments if arg.name is None]
        return positional[index] if index < len(positional) else None

    def named(self, name: str) -> Argument | None:
        for argument in self.arguments:
            if argument.name == name:
                return argument
        return None


class DartUnit:
    """Hold the tokens, bracket pairs and invocation tree for one file."""

    def __init__(self, source: str) -> None:
        """Parse Dart source.

        Args:
            source: Full file contents.

        Raises:
            DartSyntaxError: If tokenizing or bracket matching fails.
        """
        self.tokens = tokenize(source)
        self.matches = match_brackets(self.tokens)
        self.invocations = self._collect(0, len(self.tokens))

    def iter_invocations(self) -> list[Invocation]:
        """Return every invocation in the tree, parents before children."""
        ordered: list[Invocation] = []
        stack = list(reversed(self.invocations))
        while stack:
            invocation = stack.pop()
            ordered.append(invocation)
            for argument in reversed(invocation.arguments):
                stack.extend(reversed(argument.calls))
        return ordered

    def constants(self) -> dict[str, str]:
        """Collect ``const``/``final`` string declarations.

        Returns:
            Values by bare name and, inside a class body, by
            ``Class.name`` as well.
        """
        class_ranges = self._class_ranges()
        constants: dict[str, str] = {}
        tokens = self.tokens
        for index, token in enumerate(tokens):
            if token.kind != "identifier" or token.text not in {"const", "final"}:
                continue
            declaration = self._read_declaration(index)
            if declaration is None:
                continue
            name, value = declaration
            constants[name] = value
            owner = self._innermost_class(class_ranges, index)
            if owner is not None:
                constants[f"{owner}.{name}"] = value
        return constants

    def static_value(
        self, argument: Argument, constants: dict[str, str]
    ) -> tuple[str | None, str | None]:
        """Evaluate an argument when its value is statically known.

        Args:
            argument: Argument to evaluate.
            constants: Known constant values.

        Returns:
            ``(value, None)`` for literals and resolved constants,
            ``(None, reference)`` for an unresolved identifier reference, and
            ``(None, None)`` for anything else.
        """
        start, end = argument.start, argument.end
        while (
            start < end
            and self.tokens[start].text == "("
            and self.matches.get(start) == end - 1
        ):
            start += 1
            end -= 1
        span = self.tokens[start:end]
        if not span:
            return None, None
        if all(token.kind == "string" for token in span):
            if any(token.value is None for token in span):
                return None, None
            return "".join(token.value or "" for token in span), None
        reference = _dotted_name(span)
        if reference is None:
            return None, None
        if reference in constants:
            return constants[reference], None
        return None, reference

    def _collect(self, start: int, end: int) -> list[Invocation]:
        tokens = self.tokens
        calls: list[Invocation] = []
        index = start
        while index < end:
            token = tokens[index]
            if token.kind != "identifier" or token.text in _CONTROL_KEYWORDS:
                index += 1
                continue
            name_end = index + 1
            while (
                name_end + 1 < end
                and tokens[name_end].text == "."
                and tokens[name_end + 1].kind == "identifier"
            ):
                name_end += 2
            cursor = name_end
            type_args = None
            if cursor < end and tokens[cursor].text == "<":
                close = self._type_argument_end(cursor, end)
                if close is not None:
                    type_args = "".join(t.text for t in tokens[cursor : close + 1])
                    cursor = close + 1
            if cursor < end and tokens[cursor].text == "(":
                close = self.matches[cursor]
                calls.append(
                    Invocation(
                        callee="".join(t.text for t in tokens[index:name_end]),
                        token=token,
                        type_args=type_args,
                        is_const=index > 0 and tokens[index - 1].text == "const",
                        arguments=self._arguments(cursor + 1, close),
                    )
                )
                index = close + 1
                continue
            index = name_end
        return calls

    def _arguments(self, start: int, end: int) -> list[Argument]:
        tokens = self.tokens
        arguments: list[Argument] = []
        arg_start = start
        index = start
        while index <= end:
            if index < end and tokens[index].text in "([{" and tokens[index].kind == "symbol":
                index = self.matches[index] + 1
                continue
            if index == end or tokens[index].text == ",":
                if arg_start < index:
                    arguments.append(self._argument(arg_start, index))
                arg_start = index + 1
            index += 1
        return arguments

    def _argument(self, start: int, end: int) -> Argument:
        tokens = self.tokens
        name = None
        expr_start = start
        if (
            end - start >= 2
            and tokens[start].kind == "identifier"
            and tokens[start + 1].text == ":"
        ):
            name = tokens[start].text
            expr_start = start + 2
        return Argument(
            name=name,
            start=expr_start,
            end=end,
            calls=self._collect(expr_start, end),
        )

    def _type_argument_end(self, start: int, end: int) -> int | None:
        depth = 0
        limit = min(end, start + _MAX_TYPE_ARGUMENT_TOKENS)
        for index in range(start, limit):
            token = self.tokens[index]
            if token.kind == "symbol" and token.text not in _TYPE_ARGUMENT_TOKENS:
                return None
            if token.kind in {"string", "number"}:
                return None
            if token.text == "<":
                depth += 1
            elif token.text == ">":
                depth -= 1
                if depth == 0:
                    return index
        return None

    def _class_ranges(self) -> list[tuple[int, int, str]]:
        ranges: list[tuple[int, int, str]] = []
        tokens = self.tokens
        for index, token in enumerate(tokens[:-1]):
            if token.kind != "identifier" or token.text not in _DECLARATION_KEYWORDS:
                continue
            name_token = tokens[index + 1]
            if name_token.kind != "identifier":
                continue
            cursor = index + 2
            while cursor < len(tokens) and tokens[cursor].text not in {"{", ";"}:
                cursor += 1
            if cursor < len(tokens) and tokens[cursor].text == "{":
                ranges.append((cursor, self.matches[cursor], name_token.text))
        return ranges

    @staticmethod
    def _innermost_class(
        ranges: list[tuple[int, int, str]], index: int
    ) -> str | None:
        owner = None
        owner_start = -1
        for start, end, name in ranges:
            if start < index < end and start > owner_start:
                owner = name
                owner_start = start
        return owner

    def _read_declaration(self, index: int) -> tuple[str, str] | None:
        tokens = self.tokens
        cursor = index + 1
        names: list[str] = []
        while cursor < len(tokens) and len(names) < 4:
            token = tokens[cursor]
            if token.kind == "identifier":
                names.append(token.text)
            elif token.text != "?":
                break
            cursor += 1
        if not names or cursor >= len(tokens) or tokens[cursor].text != "=":
            return None
        value_start = cursor + 1
        value_end = value_start
        while value_end < len(tokens) and tokens[value_end].kind == "string":
            value_end += 1
        if value_end == value_start or value_end >= len(tokens):
            return None
        if tokens[value_end].text not in {";", ","}:
            return None
        values = [token.value for token in tokens[value_start:value_end]]
        if any(value is None for value in values):
            return None
        return names[-1], "".join(value or "" for value in values)


def _dotted_name(span: list[Token]) -> str | None:
    if len(span) % 2 == 0:
        return None
    for position, token in enumerate(span):
        if position % 2 == 0 and token.kind != "identifier":
            return None
        if position % 2 == 1 and token.text != ".":
            return None
    return "".join(token.text for token in span)


class StructuralExtractor:
    """Extract keys by visiting call expressions in a parsed Dart unit."""

    name: Strategy = "structural"

    def extract_file(self, source_file: SourceFile) -> ExtractionResult:
        """Extract key fragments from one file.

        Args:
            source_file: File to read and parse.

        Returns:
            Extraction result with ``strategy == "structural"``.

        Raises:
            OSError: If the file cannot be read.
            UnicodeDecodeError: If the file is not UTF-8.
            DartSyntaxError: If the file cannot be parsed.
        """
        source = Path(source_file.absolute_path).read_text(encoding="utf-8")
        return self.extract_source(source_file, source)

    def extract_source(self, source_file: SourceFile, source: str) -> ExtractionResult:
        """Extract key fragments from already loaded source text."""
        unit = DartUnit(source)
        constants = unit.constants()
        visitor = _KeyVisitor(unit=unit, source_file=source_file, constants=constants)
        visitor.visit()
        logger.debug(
            f"Structural extraction done (file_path={source_file.path} "
            f"fragments={len(visitor.fragments)} widgets={visitor.widget_count})"
        )
        return ExtractionResult(
            fragments=tuple(visitor.fragments),
            analysis=FileAnalysis(
                path=source_file.path,
                widget_count=visitor.widget_count,
                widgets_with_keys=visitor.widgets_with_keys,
                matched_keys=len(visitor.fragments),
                strategy="structural",
            ),
            constants=constants,
        )


class _KeyVisitor:
    def __init__(
        self, unit: DartUnit, source_file: SourceFile, constants: dict[str, str]
    ) -> None:
        self._unit = unit
        self._source_file = source_file
        self._constants = constants
        self._consumed: set[int] = set()
        self.fragments: list[KeyFragment] = []
        self.widget_count = 0
        self.widgets_with_keys = 0

    def visit(self) -> None:
        for invocation in self._unit.iter_invocations():
            if id(invocation) in self._consumed:
                continue
            self._visit_invocation(invocation)

    def _visit_invocation(self, invocation: Invocation) -> None:
        base = invocation.base_name
        if "." in invocation.callee and invocation.callee.split(".")[0] == "find":
            self._visit_finder(invocation)
            return
        if base in LITERAL_KEY_CLASSES:
            kind: DetectorKind = "typed_key" if invocation.type_args else "literal_key"
            self._record_argument(invocation, invocation.positional(), kind)
            return
        if base in GLOBAL_KEY_CLASSES:
            argument = (
                invocation.named("debugLabel")
                if base == "GlobalKey"
                else invocation.positional()
            )
            self._record_argument(invocation, argument, "global_key")
            return
        if is_custom_key_class(base):
            self._record_argument(
                invocation, invocation.positional(), "string_literal_fallback"
            )
            return
        if is_widget(base):
            self.widget_count += 1
            if invocation.named("key") is not None:
                self.widgets_with_keys += 1
            if base == "Semantics":
                self._record_argument(
                    invocation, invocation.named("identifier"), "semantics_label"
                )

    def _visit_finder(self, invocation: Invocation) -> None:
        method = invocation.base_name
        argument = invocation.positional()
        if argument is None:
            return
        if method in FINDER_SEMANTICS_METHODS:
            self._record_argument(invocation, argument, "semantics_label")
            return
        if method not in FINDER_KEY_METHODS:
            return
        inner = _sole_call(self._unit, argument)
        if inner is not None and (
            inner.base_name in LITERAL_KEY_CLASSES or is_custom_key_class(inner.base_name)
        ):
            self._consumed.add(id(inner))
            self._record_argument(invocation, inner.positional(), "finder_key")
            return
        self._record_argument(invocation, argument, "finder_key")

    def _record_argument(
        self,
        invocation: Invocation,
        argument: Argument | None,
        kind: DetectorKind,
    ) -> None:
        if argument is None:
            return
        value, reference = self._unit.static_value(argument, self._constants)
        if value is None and reference is None:
            return
        resolved_via_constant = value is not None and _is_reference(
            self._unit, argument
        )
        if reference is not None or resolved_via_constant:
            if kind in {"literal_key", "typed_key"}:
                kind = "constant_key"
        if value is not None and not value:
            return
        tags = set(DETECTOR_TAGS[kind])
        if invocation.is_const:
            tags.add("const")
        self.fragments.append(
            KeyFragment(
                key=value or "",
                detector=kind,
                location=KeyLocation(
                    file=self._source_file.path,
                    line=invocation.token.line,
                    column=invocation.token.column,
                    detector=kind,
                ),
                tags=frozenset(tags),
                provenance=self._source_file.provenance,
                reference=reference,
            )
        )


def _sole_call(unit: DartUnit, argument: Argument) -> Invocation | None:
    """Return the call when an argument is exactly one call expression."""
    if len(argument.calls) != 1:
        return None
    start = argument.start
    if unit.tokens[start].text == "const":
        start += 1
    call = argument.calls[0]
    if unit.tokens[start] is not call.token:
        return None
    return call


def _is_reference(unit: DartUnit, argument: Argument) -> bool:
    return any(token.kind == "identifier" for token in unit.tokens[argument.start : argument.end])
