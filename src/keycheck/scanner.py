# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Scan orchestration: chunk planning, worker pool dispatch and merging."""

import concurrent.futures
import logging
import math
import os
import sys
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

from keycheck.cache import CacheStore
from keycheck.errors import CacheError, ConfigurationError
from keycheck.extractor import DEFAULT_LARGE_FILE_THRESHOLD, ExtractionResult, Extractor
from keycheck.extractors import build_extractor
from keycheck.file_index import IndexOptions, build_file_index
from keycheck.model import (
    SCHEMA_VERSION,
    WORKSPACE,
    FileAnalysis,
    KeyFragment,
    KeyUsage,
    ScanError,
    ScanMetrics,
    ScanResult,
    SourceFile,
    is_dependency_provenance,
)

logger = logging.getLogger(__name__)

CHUNKS_PER_WORKER = 4
MAX_CHUNK_SIZE = 64
LARGE_AVERAGE_FILE_BYTES = 256 * 1024


@dataclass(frozen=True)
class ScanOptions:
    """Configure one scan run.

    Attributes:
        max_workers: Worker pool size. ``None`` uses ``os.cpu_count()``.
        timeout_seconds: Optional wall-clock limit for the extraction phase.
            Workers stop at the next file boundary once it elapses.
        chunk_size: Fixed chunk size. ``None`` lets ``plan_chunks`` decide.
        large_file_threshold: Size in bytes at or above which files are
            scanned lexically. Used by ``scan_project`` to build the extractor.
        index: File index options used by ``scan_project``.
    """

    max_workers: int | None = None
    timeout_seconds: float | None = None
    chunk_size: int | None = None
    large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD
    index: IndexOptions = field(default_factory=IndexOptions)

    def __post_init__(self) -> None:
        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigurationError("max_workers must be > 0")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be > 0")
        if self.chunk_size is not None and self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be > 0")
        if self.large_file_threshold <= 0:
            raise ConfigurationError("large_file_threshold must be > 0")

    def resolved_workers(self) -> int:
        return self.max_workers or os.cpu_count() or 1


@dataclass
class _ChunkOutcome:
    results: list[tuple[SourceFile, ExtractionResult]] = field(default_factory=list)
    errors: list[ScanError] = field(default_factory=list)
    cache_hits: int = 0
    cache_misses: int = 0


def plan_chunks(
    files: list[SourceFile] | tuple[SourceFile, ...],
    workers: int,
    chunk_size: int | None = None,
) -> list[tuple[SourceFile, ...]]:
    """Partition files into chunks for the worker pool.

    Many small files are grouped (about ``CHUNKS_PER_WORKER`` chunks per
    worker, capped at ``MAX_CHUNK_SIZE`` files) to keep per-task overhead
    low. When the average file is large every file gets its own chunk.

    Args:
        files: Files to partition.
        workers: Worker pool size.
        chunk_size: Fixed chunk size overriding the heuristic.

    Returns:
        Chunks ordered by path. Every file appears in exactly one chunk.

    Raises:
        ConfigurationError: If ``workers`` or ``chunk_size`` is not positive.
    """
    if workers <= 0:
        raise ConfigurationError("workers must be > 0")
    if chunk_size is not None and chunk_size <= 0:
        raise ConfigurationError("chunk_size must be > 0")
    if not files:
        return []
    ordered = sorted(files, key=lambda source_file: source_file.path)
    if chunk_size is None:
        average_size = sum(source_file.size for source_file in ordered) / len(ordered)
        if average_size > LARGE_AVERAGE_FILE_BYTES:
            chunk_size = 1
        else:
            target_chunks = workers * CHUNKS_PER_WORKER
            chunk_size = min(MAX_CHUNK_SIZE, max(1, math.ceil(len(ordered) / target_chunks)))
    return [
        tuple(ordered[start : start + chunk_size])
        for start in range(0, len(ordered), chunk_size)
    ]


def resolve_constants(results: list[tuple[SourceFile, ExtractionResult]]) -> dict[str, str]:
    """Merge per-file constant tables into one project table.

    A name declared with different values in different files is ambiguous
    and left out.
    """
    values: dict[str, set[str]] = {}
    for _, result in results:
        for name, value in result.constants.items():
            values.setdefault(name, set()).add(value)
    return {name: next(iter(found)) for name, found in values.items() if len(found) == 1}


def merge_fragments(
    fragments: list[KeyFragment], constants: dict[str, str]
) -> dict[str, KeyUsage]:
    """Reduce key fragments into the identifier to usage mapping.

    The reduction is associative and commutative: the same fragments in any
    order give the same mapping.

    Args:
        fragments: Fragments from every scanned file.
        constants: Project-wide constant table for unresolved references.

    Returns:
        Usages keyed by identifier.
    """
    grouped: dict[str, list[KeyFragment]] = {}
    for fragment in fragments:
        key = fragment.key
        if fragment.reference is not None:
            key = constants.get(fragment.reference, "")
            if not key:
                logger.debug(
                    f"Dropping unresolved key reference (reference={fragment.reference} "
                    f"file_path={fragment.location.file} line={fragment.location.line})"
                )
                continue
        if not key:
            continue
        grouped.setdefault(key, []).append(fragment)

    usages: dict[str, KeyUsage] = {}
    for key in sorted(grouped):
        group = grouped[key]
        locations = tuple(sorted({fragment.location for fragment in group}))
        tags: set[str] = set()
        sources: set[str] = set()
        for fragment in group:
            tags.update(fragment.tags)
            sources.add(fragment.provenance)
        usages[key] = KeyUsage(
            id=key,
            detector=locations[0].detector,
            locations=locations,
            tags=frozenset(tags),
            provenance=WORKSPACE if WORKSPACE in sources else min(sources),
            sources=frozenset(sources),
        )
    return usages


def memory_peak_kb() -> int:
    """Return the process memory high-water mark in KiB, or 0 when unknown."""
    try:
        import resource
    except ImportError:
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux reports KiB.
    if sys.platform == "darwin":
        return int(peak // 1024)
    return int(peak)


class ScanOrchestrator:
    """Run extraction over a file list on a bounded worker pool."""

    def __init__(self, extractor: Extractor, cache: CacheStore | None = None) -> None:
        """Initialize orchestrator.

        Args:
            extractor: Per-file extractor shared by all workers.
            cache: Optional cache store. Workers only touch entries for the
                files in their own chunk.
        """
        self._extractor = extractor
        self._cache = cache

    def scan(
        self,
        files: list[SourceFile] | tuple[SourceFile, ...],
        options: ScanOptions | None = None,
    ) -> ScanResult:
        """Scan files and merge their keys into one snapshot.

        Args:
            files: Indexed files to scan.
            options: Worker, chunking and timeout options.

        Returns:
            Snapshot. ``partial`` is set when the timeout elapsed or a chunk
            failed; results of completed chunks are still merged.
        """
        options = options or ScanOptions()
        workers = options.resolved_workers()
        phase_ms: dict[str, float] = {}

        started = time.perf_counter()
        chunks = plan_chunks(files, workers=workers, chunk_size=options.chunk_size)
        phase_ms["plan"] = _elapsed_ms(started)

        started = time.perf_counter()
        outcomes, errors, partial = self._dispatch(chunks, workers, options.timeout_seconds)
        phase_ms["extract"] = _elapsed_ms(started)

        started = time.perf_counter()
        results = [pair for outcome in outcomes for pair in outcome.results]
        results.sort(key=lambda pair: pair[0].path)
        for outcome in outcomes:
            errors.extend(outcome.errors)
        for source_file, result in results:
            if result.parse_error is not None:
                errors.append(
                    ScanError(file=source_file.path, message=result.parse_error, type="parse")
                )
        constants = resolve_constants(results)
        keys = merge_fragments(
            [fragment for _, result in results for fragment in result.fragments],
            constants,
        )
        analyses: tuple[FileAnalysis, ...] = tuple(result.analysis for _, result in results)
        phase_ms["merge"] = _elapsed_ms(started)

        if self._cache is not None:
            started = time.perf_counter()
            try:
                self._cache.flush()
            except CacheError as exc:
                logger.warning(f"Cache flush failed; scan result kept (error={exc})")
            phase_ms["cache_flush"] = _elapsed_ms(started)

        dependencies = {
            source_file.provenance
            for source_file, _ in results
            if is_dependency_provenance(source_file.provenance)
        }
        metrics = ScanMetrics(
            files_total=len(files),
            files_scanned=len(results),
            parse_failures=sum(1 for _, result in results if result.parse_error is not None),
            cache_hits=sum(outcome.cache_hits for outcome in outcomes),
            cache_misses=sum(outcome.cache_misses for outcome in outcomes),
            lexical_files=sum(1 for _, result in results if result.strategy == "lexical"),
            phase_ms=phase_ms,
            memory_peak_kb=memory_peak_kb(),
            workers=workers,
            chunks=len(chunks),
            partial=partial,
        )
        logger.info(
            f"Scan completed (files={metrics.files_scanned}/{metrics.files_total} "
            f"keys={len(keys)} chunks={metrics.chunks} workers={workers} "
            f"cache_hits={metrics.cache_hits} parse_failures={metrics.parse_failures} "
            f"partial={partial})"
        )
        return ScanResult(
            schema_version=SCHEMA_VERSION,
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            keys=keys,
            files=analyses,
            dependencies_scanned=len(dependencies),
            metrics=metrics,
            errors=tuple(errors),
        )

    def _dispatch(
        self,
        chunks: list[tuple[SourceFile, ...]],
        workers: int,
        timeout_seconds: float | None,
    ) -> tuple[list[_ChunkOutcome], list[ScanError], bool]:
        if not chunks:
            return [], [], False
        errors: list[ScanError] = []
        outcomes: list[_ChunkOutcome] = []
        partial = False
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="keycheck-scan"
        )
        stop = threading.Event()
        future_to_index = {
            executor.submit(self._process_chunk, chunk, stop): index
            for index, chunk in enumerate(chunks)
        }
        done, not_done = concurrent.futures.wait(future_to_index, timeout=timeout_seconds)
        if not_done:
            partial = True
            # Running workers stop at their next file boundary and are joined
            # before the cache flush.
            stop.set()
            executor.shutdown(wait=True, cancel_futures=True)
            for future in sorted(not_done, key=future_to_index.__getitem__):
                chunk = chunks[future_to_index[future]]
                logger.warning(
                    f"Scan chunk did not finish before timeout (first_file={chunk[0].path} "
                    f"files={len(chunk)} timeout_seconds={timeout_seconds})"
                )
                errors.append(
                    ScanError(
                        file=chunk[0].path,
                        message=f"chunk of {len(chunk)} files timed out",
                        type="timeout",
                    )
                )
        else:
            executor.shutdown(wait=True)

        for future in sorted(done, key=future_to_index.__getitem__):
            chunk = chunks[future_to_index[future]]
            try:
                outcomes.append(future.result())
            except Exception as exc:
                partial = True
                logger.warning(
                    f"Scan chunk failed (first_file={chunk[0].path} files={len(chunk)} error={exc})"
                )
                errors.append(ScanError(file=chunk[0].path, message=str(exc), type="chunk"))
        return outcomes, errors, partial

    def _process_chunk(
        self, chunk: tuple[SourceFile, ...], stop: threading.Event
    ) -> _ChunkOutcome:
        """Extract every file of one chunk, consulting the cache first.

        Stops between files once ``stop`` is set; a result finished after that
        point is dropped rather than cached.
        """
        outcome = _ChunkOutcome()
        for source_file in chunk:
            if stop.is_set():
                break
            if self._cache is not None:
                cached = self._cache.lookup(source_file)
                if cached is not None:
                    outcome.cache_hits += 1
                    outcome.results.append((source_file, cached.result))
                    continue
                outcome.cache_misses += 1
            try:
                result = self._extractor.extract(source_file)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(
                    f"Skipping unreadable file (file_path={source_file.path} error={exc})"
                )
                outcome.errors.append(
                    ScanError(file=source_file.path, message=str(exc), type="read")
                )
                continue
            if stop.is_set():
                break
            if self._cache is not None:
                self._cache.store(source_file, result)
            outcome.results.append((source_file, result))
        return outcome


def scan_project(
    root: Path,
    options: ScanOptions | None = None,
    cache: CacheStore | None = None,
    extractor: Extractor | None = None,
) -> ScanResult:
    """Index a project tree and scan it.

    Args:
        root: Workspace root directory.
        options: Scan options, including the file index options.
        cache: Optional cache store.
        extractor: Extractor override. Defaults to ``build_extractor``.

    Returns:
        Snapshot including soft errors from the file index.

    Raises:
        ConfigurationError: If the root is not a directory.
    """
    options = options or ScanOptions()
    started = time.perf_counter()
    index = build_file_index(root, options.index)
    index_ms = _elapsed_ms(started)
    orchestrator = ScanOrchestrator(
        extractor=extractor or build_extractor(options.large_file_threshold),
        cache=cache,
    )
    result = orchestrator.scan(index.files, options)
    metrics = replace(result.metrics, phase_ms={"index": index_ms, **result.metrics.phase_ms})
    return replace(result, metrics=metrics, errors=index.errors + result.errors)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
