# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Line-streaming Dart key extractor for large files and parse fallbacks.

Only single-line shapes are recognised, except for ``Semantics(...)`` where
the ``identifier:`` argument is searched for in a short window of following
lines. Memory use is bounded by the longest line.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from keycheck.extractor import ExtractionResult
from keycheck.extractors.dart_lexer import decode_escapes
from keycheck.extractors.widgets import (
    FINDER_KEY_METHODS,
    GLOBAL_KEY_CLASSES,
    LITERAL_KEY_CLASSES,
    NON_STRING_KEY_CLASSES,
    WIDGET_MENTION_RE,
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

_STRING = r"""(?:r'[^'\n]*'|r"[^"\n]*"|'(?:[^'\\$\n]|\\.)*'|"(?:[^"\\$\n]|\\.)*")"""
_REFERENCE = r"[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*"
_VALUE = rf"(?P<string>{_STRING})|(?P<ref>{_REFERENCE})\s*[,)]"
_TYPE_ARGS = r"<[\w\s,.?<>]*>"

FINDER_RE = re.compile(
    r"\bfind\.(?P<method>byKey|byValueKey|bySemanticsLabel)\(\s*"
    rf"(?:(?:const\s+)?(?P<inner>(?:[A-Z]\w*)?Key)(?:{_TYPE_ARGS})?\(\s*)?"
    rf"(?:{_VALUE})"
)
KEY_CTOR_RE = re.compile(
    r"(?P<const>\bconst\s+)?\b(?P<callee>(?:[A-Z]\w*)?Key)"
    rf"(?P<targs>{_TYPE_ARGS})?\(\s*(?P<label>debugLabel\s*:\s*)?"
    rf"(?:{_VALUE})"
)
SEMANTICS_OPEN_RE = re.compile(r"\bSemantics\s*\(")
SEMANTICS_IDENTIFIER_RE = re.compile(rf"\bidentifier\s*:\s*(?:{_VALUE})")
CONST_DECL_RE = re.compile(
    r"\b(?:const|final)\s+(?:[\w<>?]+\s+)?(?P<name>[A-Za-z_]\w*)\s*=\s*"
    rf"(?P<value>{_STRING}(?:\s*{_STRING})*)\s*;"
)
CLASS_DECL_RE = re.compile(r"\b(?:class|enum|mixin|extension)\s+(?P<name>[A-Za-z_]\w*)")
KEY_ARGUMENT_RE = re.compile(r"\bkey\s*:")
_STRING_PART_RE = re.compile(_STRING)
# Like _STRING but also spans interpolation; literals are only skipped.
_CODE_MARK_RE = re.compile(
    r"""(?P<string>r'[^'\n]*'|r"[^"\n]*"|'(?:[^'\\\n]|\\.)*'|"(?:[^"\\\n]|\\.)*")"""
    r"|(?P<block>/\*)|(?P<line>//)"
)

SEMANTICS_WINDOW_LINES = 6


@dataclass
class _PendingSemantics:
    line: int
    column: int
    remaining: int


def _string_value(literal: str) -> str | None:
    parts = [part.group() for part in _STRING_PART_RE.finditer(literal)]
    values: list[str] = []
    for part in parts:
        if part[0] in "rR":
            values.append(part[2:-1])
            continue
        value = decode_escapes(part[1:-1])
        if value is None:
            return None
        values.append(value)
    return "".join(values)


def _strip_comments(line: str, in_block: bool) -> tuple[str, bool]:
    """Blank out comment text outside string literals, keeping columns stable."""
    out: list[str] = []
    pos = 0
    while pos < len(line):
        if in_block:
            end = line.find("*/", pos)
            if end < 0:
                out.append(" " * (len(line) - pos))
                return "".join(out), True
            out.append(" " * (end + 2 - pos))
            pos = end + 2
            in_block = False
            continue
        mark = _CODE_MARK_RE.search(line, pos)
        if mark is None:
            out.append(line[pos:])
            break
        if mark.group("string") is not None:
            out.append(line[pos : mark.end()])
            pos = mark.end()
            continue
        out.append(line[pos : mark.start()])
        if mark.group("line") is not None:
            out.append(" " * (len(line) - mark.start()))
            break
        out.append("  ")
        pos = mark.end()
        in_block = True
    return "".join(out), in_block


class LexicalExtractor:
    """Extract keys with precompiled line patterns."""

    name: Strategy = "lexical"

    def extract_file(self, source_file: SourceFile) -> ExtractionResult:
        """Extract key fragments by streaming one file line by line.

        Args:
            source_file: File to scan.

        Returns:
            Extraction result with ``strategy == "lexical"``.

        Raises:
            OSError: If the file cannot be read.
            UnicodeDecodeError: If the file is not UTF-8.
        """
        state = _LineState(source_file)
        in_block = False
        with open(Path(source_file.absolute_path), encoding="utf-8") as handle:
            for line_number, raw_line in enumerate(handle, start=1):
                line, in_block = _strip_comments(raw_line.rstrip("\n"), in_block)
                state.feed(line_number, line)
        fragments = state.finish()
        logger.debug(
            f"Lexical extraction done (file_path={source_file.path} fragments={len(fragments)})"
        )
        return ExtractionResult(
            fragments=tuple(fragments),
            analysis=FileAnalysis(
                path=source_file.path,
                widget_count=state.widget_count,
                widgets_with_keys=state.widgets_with_keys,
                matched_keys=len(fragments),
                strategy="lexical",
            ),
            constants=state.constants,
        )


class _LineState:
    def __init__(self, source_file: SourceFile) -> None:
        self._source_file = source_file
        self._fragments: list[KeyFragment] = []
        self._pending_semantics: list[_PendingSemantics] = []
        self._class_stack: list[tuple[str, int]] = []
        self._depth = 0
        self.constants: dict[str, str] = {}
        self.widget_count = 0
        self.widgets_with_keys = 0

    def feed(self, line_number: int, line: str) -> None:
        self.widget_count += len(WIDGET_MENTION_RE.findall(line))
        self.widgets_with_keys += len(KEY_ARGUMENT_RE.findall(line))
        self._collect_constants(line)
        consumed: list[tuple[int, int]] = []
        for match in FINDER_RE.finditer(line):
            consumed.append(match.span())
            if match.group("method") in FINDER_KEY_METHODS:
                kind: DetectorKind = "finder_key"
            else:
                kind = "semantics_label"
            self._add(match, kind, line_number, match.start() + 1, is_const=False)
        for match in KEY_CTOR_RE.finditer(line):
            callee_start = match.start("callee")
            if any(start <= callee_start < end for start, end in consumed):
                continue
            kind = self._key_kind(match)
            if kind is None:
                continue
            self._add(
                match,
                kind,
                line_number,
                callee_start + 1,
                is_const=match.group("const") is not None,
            )
        self._scan_semantics(line_number, line)
        self._track_classes(line)

    def finish(self) -> list[KeyFragment]:
        """Resolve same-file constant references and return fragments."""
        resolved: list[KeyFragment] = []
        for fragment in self._fragments:
            if fragment.reference is not None and fragment.reference in self.constants:
                value = self.constants[fragment.reference]
                if not value:
                    continue
                fragment = KeyFragment(
                    key=value,
                    detector=fragment.detector,
                    location=fragment.location,
                    tags=fragment.tags,
                    provenance=fragment.provenance,
                )
            resolved.append(fragment)
        return resolved

    @staticmethod
    def _key_kind(match: re.Match[str]) -> DetectorKind | None:
        callee = match.group("callee")
        if callee in NON_STRING_KEY_CLASSES:
            return None
        if callee in GLOBAL_KEY_CLASSES:
            if callee == "GlobalKey" and match.group("label") is None:
                return None
            return "global_key"
        if match.group("label") is not None:
            return None
        if callee in LITERAL_KEY_CLASSES:
            if match.group("ref") is not None:
                return "constant_key"
            return "typed_key" if match.group("targs") else "literal_key"
        return "string_literal_fallback"

    def _add(
        self,
        match: re.Match[str],
        kind: DetectorKind,
        line_number: int,
        column: int,
        is_const: bool,
    ) -> None:
        reference = match.group("ref")
        value = ""
        if reference is None:
            decoded = _string_value(match.group("string"))
            if not decoded:
                return
            value = decoded
        tags = set(DETECTOR_TAGS[kind])
        if is_const:
            tags.add("const")
        self._fragments.append(
            KeyFragment(
                key=value,
                detector=kind,
                location=KeyLocation(
                    file=self._source_file.path,
                    line=line_number,
                    column=column,
                    detector=kind,
                ),
                tags=frozenset(tags),
                provenance=self._source_file.provenance,
                reference=reference,
            )
        )

    def _scan_semantics(self, line_number: int, line: str) -> None:
        for match in SEMANTICS_OPEN_RE.finditer(line):
            self._pending_semantics.append(
                _PendingSemantics(
                    line=line_number,
                    column=match.start() + 1,
                    remaining=SEMANTICS_WINDOW_LINES,
                )
            )
        if not self._pending_semantics:
            return
        identifier = SEMANTICS_IDENTIFIER_RE.search(line)
        if identifier is not None:
            pending = self._pending_semantics.pop()
            self._add(identifier, "semantics_label", pending.line, pending.column, False)
        for pending in self._pending_semantics:
            pending.remaining -= 1
        self._pending_semantics = [
            pending for pending in self._pending_semantics if pending.remaining > 0
        ]

    def _collect_constants(self, line: str) -> None:
        for match in CONST_DECL_RE.finditer(line):
            value = _string_value(match.group("value"))
            if value is None:
                continue
            name = match.group("name")
            self.constants[name] = value
            if self._class_stack:
                self.constants[f"{self._class_stack[-1][0]}.{name}"] = value

    def _track_classes(self, line: str) -> None:
        declared = CLASS_DECL_RE.search(line)
        depth_before = self._depth
        self._depth += line.count("{") - line.count("}")
        if declared is not None and self._depth > depth_before:
            self._class_stack.append((declared.group("name"), depth_before))
        while self._class_stack and self._depth <= self._class_stack[-1][1]:
            self._class_stack.pop()
