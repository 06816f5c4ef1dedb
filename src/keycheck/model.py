# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Domain models for scan artifacts."""

from dataclasses import dataclass, field
from typing import Literal, get_args

DetectorKind = Literal[
    "literal_key",
    "typed_key",
    "global_key",
    "semantics_label",
    "finder_key",
    "constant_key",
    "string_literal_fallback",
]
KeyStatus = Literal["active", "deprecated", "reserved", "removed"]
Strategy = Literal["structural", "lexical"]
ErrorType = Literal["stat", "read", "parse", "chunk", "timeout"]

DETECTOR_KINDS: tuple[DetectorKind, ...] = get_args(DetectorKind)
KEY_STATUSES: tuple[KeyStatus, ...] = get_args(KeyStatus)

WORKSPACE = "workspace"
DEPENDENCY = "dependency"
PACKAGE_PREFIX = "package:"

SCHEMA_VERSION = "1.0"

# Tags attached to every usage found by a detector kind.
DETECTOR_TAGS: dict[DetectorKind, frozenset[str]] = {
    "literal_key": frozenset(),
    "typed_key": frozenset({"typed"}),
    "global_key": frozenset({"global"}),
    "semantics_label": frozenset({"semantic", "accessibility"}),
    "finder_key": frozenset({"test", "e2e"}),
    "constant_key": frozenset({"constant"}),
    "string_literal_fallback": frozenset({"fallback"}),
}


def is_dependency_provenance(provenance: str) -> bool:
    """Return whether a provenance label points outside the workspace."""
    return provenance == DEPENDENCY or provenance.startswith(PACKAGE_PREFIX)


@dataclass(frozen=True)
class SourceFile:
    """Represent one file discovered by the file index.

    Attributes:
        path: Project-relative POSIX path; unique within a scan.
        absolute_path: Absolute filesystem path used for reading.
        size: Size in bytes at index time.
        content_hash: SHA-256 hex digest, or ``None`` when hashing is disabled.
        mtime_ns: Last-modified timestamp in nanoseconds.
        provenance: ``workspace``, ``dependency`` or ``package:<name>``.
    """

    path: str
    absolute_path: str
    size: int
    content_hash: str | None
    mtime_ns: int
    provenance: str = WORKSPACE


@dataclass(frozen=True, order=True)
class KeyLocation:
    """Represent one place a key appears in source (1-based line and column)."""

    file: str
    line: int
    column: int
    detector: DetectorKind = "literal_key"


@dataclass(frozen=True)
class KeyFragment:
    """Represent one key occurrence extracted from a single file.

    Attributes:
        key: Key value. Empty when ``reference`` still needs resolution.
        detector: Detector kind that matched.
        location: Source location of the matching expression.
        tags: Detector tags.
        provenance: Provenance of the owning file.
        reference: Unresolved constant reference such as ``Keys.login``.
    """

    key: str
    detector: DetectorKind
    location: KeyLocation
    tags: frozenset[str] = frozenset()
    provenance: str = WORKSPACE
    reference: str | None = None


@dataclass(frozen=True)
class KeyUsage:
    """Represent a merged key with every location it was seen at."""

    id: str
    detector: DetectorKind
    locations: tuple[KeyLocation, ...]
    tags: frozenset[str] = frozenset()
    status: KeyStatus = "active"
    provenance: str = WORKSPACE
    sources: frozenset[str] = frozenset({WORKSPACE})

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("KeyUsage id must be non-empty")
        if not self.locations:
            raise ValueError(f"KeyUsage {self.id!r} must have at least one location")

    @property
    def usage_count(self) -> int:
        return len(self.locations)


@dataclass(frozen=True)
class FileAnalysis:
    """Represent per-file scan statistics."""

    path: str
    widget_count: int = 0
    widgets_with_keys: int = 0
    matched_keys: int = 0
    strategy: Strategy = "structural"


@dataclass(frozen=True)
class ScanError:
    """Represent a recoverable scan error for one file or chunk."""

    file: str
    message: str
    type: ErrorType


@dataclass(frozen=True)
class ScanMetrics:
    """Represent aggregate scan metrics.

    Attributes:
        files_total: Files handed to the orchestrator.
        files_scanned: Files that produced an extraction result.
        parse_failures: Files whose structural parse failed.
        cache_hits: Files served from the cache.
        cache_misses: Files extracted from source.
        lexical_files: Files processed by the lexical strategy.
        phase_ms: Elapsed milliseconds per phase.
        memory_peak_kb: Process memory high-water mark in KiB.
        workers: Worker pool size.
        chunks: Number of chunks dispatched.
        partial: True when the scan timed out or lost a chunk.
    """

    files_total: int = 0
    files_scanned: int = 0
    parse_failures: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    lexical_files: int = 0
    phase_ms: dict[str, float] = field(default_factory=dict)
    memory_peak_kb: int = 0
    workers: int = 0
    chunks: int = 0
    partial: bool = False

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0


@dataclass(frozen=True)
class ScanResult:
    """Represent one scan snapshot. Read-only once returned."""

    schema_version: str
    timestamp: str
    keys: dict[str, KeyUsage]
    files: tuple[FileAnalysis, ...] = ()
    dependencies_scanned: int = 0
    metrics: ScanMetrics = field(default_factory=ScanMetrics)
    errors: tuple[ScanError, ...] = ()

    @property
    def total_keys(self) -> int:
        return len(self.keys)

    @property
    def files_scanned(self) -> int:
        return len(self.files)

    @property
    def partial(self) -> bool:
        return self.metrics.partial

    def provenances(self) -> list[str]:
        """Return the sorted distinct provenances seen in this snapshot."""
        seen: set[str] = set()
        for usage in self.keys.values():
            seen.update(usage.sources)
        return sorted(seen)
