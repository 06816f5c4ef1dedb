# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Extractor interfaces, DTOs and strategy selection."""

import logging
from dataclasses import dataclass, field, replace
from typing import Protocol

from keycheck.errors import ConfigurationError, DartSyntaxError
from keycheck.model import FileAnalysis, KeyFragment, SourceFile, Strategy

logger = logging.getLogger(__name__)

DEFAULT_LARGE_FILE_THRESHOLD = 2 * 1024 * 1024


@dataclass(frozen=True)
class ExtractionResult:
    """Represent everything extracted from one source file.

    Attributes:
        fragments: Key occurrences in source order.
        analysis: Per-file statistics.
        constants: String constants declared in the file, by bare and
            class-qualified name, used for cross-file reference resolution.
        parse_error: Structural parse failure message, if the file had to be
            retried with the lexical strategy.
    """

    fragments: tuple[KeyFragment, ...]
    analysis: FileAnalysis
    constants: dict[str, str] = field(default_factory=dict)
    parse_error: str | None = None

    @property
    def strategy(self) -> Strategy:
        return self.analysis.strategy


class ExtractionStrategy(Protocol):
    """Source-text extraction contract shared by both strategies."""

    name: Strategy

    def extract_file(self, source_file: SourceFile) -> ExtractionResult:
        """Extract key fragments from one file.

        Raises:
            OSError: If the file cannot be read.
            UnicodeDecodeError: If the file is not UTF-8.
            DartSyntaxError: If a structural parse fails.
        """


class Extractor:
    """Pick a strategy per file and fall back to lexical on parse failure."""

    def __init__(
        self,
        structural: ExtractionStrategy,
        lexical: ExtractionStrategy,
        large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD,
    ) -> None:
        """Initialize extractor.

        Args:
            structural: Syntax-aware strategy for normal files.
            lexical: Bounded-memory strategy for large files and fallbacks.
            large_file_threshold: Size in bytes at or above which the lexical
                strategy is used directly.

        Raises:
            ConfigurationError: If ``large_file_threshold`` is not positive.
        """
        if large_file_threshold <= 0:
            raise ConfigurationError("large_file_threshold must be > 0")
        self._structural = structural
        self._lexical = lexical
        self._large_file_threshold = large_file_threshold

    def select(self, source_file: SourceFile) -> ExtractionStrategy:
        """Return the strategy used first for a file."""
        if source_file.size >= self._large_file_threshold:
            return self._lexical
        return self._structural

    def extract(self, source_file: SourceFile) -> ExtractionResult:
        """Extract key fragments from one file.

        Args:
            source_file: File to extract from.

        Returns:
            Extraction result. ``parse_error`` is set when the structural parse
            failed and the lexical strategy produced the result instead.

        Raises:
            OSError: If the file cannot be read.
            UnicodeDecodeError: If the file is not valid UTF-8.
        """
        strategy = self.select(source_file)
        if strategy is self._lexical:
            return self._lexical.extract_file(source_file)
        try:
            return self._structural.extract_file(source_file)
        except DartSyntaxError as exc:
            logger.warning(
                f"Structural parse failed; retrying lexically (file_path={source_file.path} error={exc})"
            )
            result = self._lexical.extract_file(source_file)
            return replace(result, parse_error=str(exc))
