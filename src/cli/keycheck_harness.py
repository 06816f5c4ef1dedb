# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""CLI harness for scanning, diffing, validating and scoring automation keys."""

import argparse
import json
import logging
import sys
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table

from keycheck.cache import CacheStore
from keycheck.database import DEFAULT_CACHE_FILE, SQLiteCacheStore
from keycheck.diff import DEFAULT_RENAME_THRESHOLD, DiffResult, diff_snapshots
from keycheck.duplication import DuplicateAnalysis, DuplicateDetector
from keycheck.errors import CacheError, ConfigurationError
from keycheck.file_index import DEFAULT_EXCLUDE, DEFAULT_INCLUDE, DependencyRoot, IndexOptions
from keycheck.model import ScanResult
from keycheck.policy import RULE_MODES, PolicyConfig, PolicyEngine, ValidationResult
from keycheck.quality import QualityBreakdown, QualityScorer
from keycheck.scanner import ScanOptions, scan_project
from keycheck.snapshot import (
    load_snapshot,
    report_to_dict,
    snapshot_to_dict,
    usage_to_dict,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_POLICY_FAILED = 1
EXIT_CONFIGURATION = 2

TABLE_COLUMN_RATIOS: dict[str, int] = {
    "id": 3,
    "type": 2,
    "locations": 1,
    "first_location": 4,
    "tags": 2,
    "provenance": 2,
}


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="keycheck")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan")
    _add_scan_arguments(scan_parser, required=True)
    _add_output_arguments(scan_parser)

    diff_parser = subparsers.add_parser("diff")
    diff_parser.add_argument("--baseline", required=True, help="Baseline snapshot JSON.")
    diff_parser.add_argument("--current", required=True, help="Current snapshot JSON.")
    diff_parser.add_argument(
        "--rename-threshold",
        type=float,
        default=DEFAULT_RENAME_THRESHOLD,
        help="Token similarity a lost/added pair must exceed to count as a rename.",
    )
    _add_output_arguments(diff_parser)

    validate_parser = subparsers.add_parser("validate")
    validate_parser.add_argument("--baseline", required=True, help="Baseline snapshot JSON.")
    validate_parser.add_argument(
        "--current",
        required=False,
        help="Current snapshot JSON. When omitted, --path is scanned.",
    )
    _add_scan_arguments(validate_parser, required=False)
    validate_parser.add_argument("--fail-on-lost", action="store_true")
    validate_parser.add_argument("--fail-on-rename", action="store_true")
    validate_parser.add_argument("--fail-on-extra", action="store_true")
    validate_parser.add_argument(
        "--protected-tag",
        action="append",
        default=[],
        help="Tag whose keys must not be lost or renamed. Repeatable.",
    )
    validate_parser.add_argument("--max-drift", type=float, default=100.0)
    validate_parser.add_argument("--package-missing", choices=RULE_MODES, default="warn")
    validate_parser.add_argument("--collision", choices=RULE_MODES, default="warn")
    validate_parser.add_argument(
        "--rename-threshold", type=float, default=DEFAULT_RENAME_THRESHOLD
    )
    _add_output_arguments(validate_parser)

    duplicates_parser = subparsers.add_parser("duplicates")
    duplicates_parser.add_argument("--snapshot", required=True, help="Snapshot JSON.")
    duplicates_parser.add_argument("--threshold", type=float, default=0.8)
    duplicates_parser.add_argument(
        "--ignore",
        action="append",
        default=[],
        help="Regular expression of keys to skip. Repeatable.",
    )
    _add_output_arguments(duplicates_parser)

    quality_parser = subparsers.add_parser("quality")
    quality_parser.add_argument("--snapshot", required=True, help="Snapshot JSON.")
    quality_parser.add_argument(
        "--expected-keys",
        required=False,
        help="Text file with one expected key per line.",
    )
    _add_output_arguments(quality_parser)

    cache_clear_parser = subparsers.add_parser("cache-clear")
    cache_clear_parser.add_argument("--path", required=True, help="Project root path.")
    cache_clear_parser.add_argument("--cache-file", required=False)
    return parser


def _add_scan_arguments(parser: argparse.ArgumentParser, required: bool) -> None:
    parser.add_argument("--path", required=required, help="Project root path to scan.")
    parser.add_argument(
        "--include", action="append", default=None, help="Include glob. Repeatable."
    )
    parser.add_argument(
        "--exclude", action="append", default=None, help="Exclude glob. Repeatable."
    )
    parser.add_argument(
        "--dependency",
        action="append",
        default=[],
        help="Dependency root as NAME=PATH or PATH. Repeatable.",
    )
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--timeout", type=float, default=None, help="Seconds.")
    parser.add_argument("--large-file-threshold", type=int, default=2 * 1024 * 1024)
    parser.add_argument("--no-cache", action="store_true")
    parser.add_argument(
        "--cache-file",
        required=False,
        help=f"Cache database path (default: <path>/{DEFAULT_CACHE_FILE}).",
    )


def _add_output_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=("table", "json"),
        default="table",
        help="Output format.",
    )
    parser.add_argument(
        "--output",
        required=False,
        help="Optional output file path for raw JSON.",
    )


def run(argv: list[str], stdout: TextIO, stderr: TextIO) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code: 0 on success, 1 when validation failed, 2 on a
        configuration error.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return EXIT_CONFIGURATION
    handlers = {
        "scan": _run_scan,
        "diff": _run_diff,
        "validate": _run_validate,
        "duplicates": _run_duplicates,
        "quality": _run_quality,
        "cache-clear": _run_cache_clear,
    }
    handler = handlers.get(args.command)
    if handler is None:
        logger.warning(f"Unsupported command (command={args.command})")
        stderr.write(f"Unsupported command: {args.command}\n")
        return EXIT_CONFIGURATION
    try:
        return handler(args, stdout, stderr)
    except ConfigurationError as exc:
        logger.warning(f"Configuration error (command={args.command} error={exc})")
        stderr.write(f"Configuration error: {exc}\n")
        return EXIT_CONFIGURATION


def parse_dependency(value: str) -> DependencyRoot:
    """Parse a ``NAME=PATH`` or ``PATH`` dependency argument.

    Raises:
        ConfigurationError: If the name or path part is empty.
    """
    name, separator, path = value.partition("=")
    if not separator:
        return DependencyRoot(path=Path(value))
    if not name or not path:
        raise ConfigurationError(f"Invalid dependency argument: {value!r}")
    return DependencyRoot(path=Path(path), name=name)


def build_scan_options(args: argparse.Namespace) -> ScanOptions:
    """Map scan arguments onto scan options.

    Raises:
        ConfigurationError: If any option is invalid.
    """
    index = IndexOptions(
        include=tuple(args.include) if args.include else DEFAULT_INCLUDE,
        exclude=tuple(args.exclude) if args.exclude else DEFAULT_EXCLUDE,
        dependencies=tuple(parse_dependency(value) for value in args.dependency),
    )
    return ScanOptions(
        max_workers=args.workers,
        timeout_seconds=args.timeout,
        large_file_threshold=args.large_file_threshold,
        index=index,
    )


def build_cache(args: argparse.Namespace, root_path: Path) -> CacheStore | None:
    if args.no_cache:
        return None
    cache_file = Path(args.cache_file) if args.cache_file else root_path / DEFAULT_CACHE_FILE
    return SQLiteCacheStore(cache_file)


def _scan(args: argparse.Namespace) -> ScanResult:
    root_path = Path(args.path)
    if not root_path.is_dir():
        raise ConfigurationError(f"Path is not a directory: {root_path}")
    options = build_scan_options(args)
    return scan_project(root_path, options=options, cache=build_cache(args, root_path))


def _run_scan(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run scan command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    snapshot = _scan(args)
    _write_scan_errors(snapshot=snapshot, stderr=stderr)
    return _emit(
        payload=snapshot_to_dict(snapshot),
        args=args,
        stdout=stdout,
        stderr=stderr,
        table_writer=lambda console: _write_keys_table(snapshot, console),
    )


def _run_diff(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    baseline = load_snapshot(Path(args.baseline))
    current = load_snapshot(Path(args.current))
    diff = diff_snapshots(baseline, current, rename_threshold=args.rename_threshold)
    return _emit(
        payload=_diff_to_dict(diff),
        args=args,
        stdout=stdout,
        stderr=stderr,
        table_writer=lambda console: _write_diff_table(diff, console),
    )


def _run_validate(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run validate command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        0 when the policy passed, 1 when it failed.

    Raises:
        ConfigurationError: If the baseline is missing or an option is invalid.
    """
    config = PolicyConfig(
        fail_on_lost=args.fail_on_lost,
        fail_on_rename=args.fail_on_rename,
        fail_on_extra=args.fail_on_extra,
        protected_tags=frozenset(args.protected_tag),
        max_drift=args.max_drift,
        package_missing=args.package_missing,
        collision=args.collision,
    )
    baseline = load_snapshot(Path(args.baseline))
    if args.current:
        current = load_snapshot(Path(args.current))
    elif args.path:
        current = _scan(args)
        _write_scan_errors(snapshot=current, stderr=stderr)
    else:
        raise ConfigurationError("validate needs --current or --path")

    result = PolicyEngine().validate(
        baseline, current, config, rename_threshold=args.rename_threshold
    )
    exit_code = _emit(
        payload=report_to_dict(result),
        args=args,
        stdout=stdout,
        stderr=stderr,
        table_writer=lambda console: _write_validation_table(result, console),
    )
    if exit_code != EXIT_OK:
        return exit_code
    return EXIT_OK if result.passed else EXIT_POLICY_FAILED


def _run_duplicates(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    snapshot = load_snapshot(Path(args.snapshot))
    detector = DuplicateDetector(
        similarity_threshold=args.threshold, ignored_patterns=tuple(args.ignore)
    )
    analysis = detector.analyze(snapshot)
    return _emit(
        payload=_duplicates_to_dict(analysis),
        args=args,
        stdout=stdout,
        stderr=stderr,
        table_writer=lambda console: _write_duplicates_table(analysis, console),
    )


def _run_quality(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    snapshot = load_snapshot(Path(args.snapshot))
    expected_keys = None
    if args.expected_keys:
        expected_path = Path(args.expected_keys)
        try:
            lines = expected_path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise ConfigurationError(f"Expected keys file not readable: {expected_path}") from exc
        expected_keys = {line.strip() for line in lines if line.strip()}
    breakdown = QualityScorer().score(snapshot, expected_keys=expected_keys)
    return _emit(
        payload=asdict(breakdown),
        args=args,
        stdout=stdout,
        stderr=stderr,
        table_writer=lambda console: _write_quality_table(breakdown, console),
    )


def _run_cache_clear(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    root_path = Path(args.path)
    cache_file = Path(args.cache_file) if args.cache_file else root_path / DEFAULT_CACHE_FILE
    try:
        SQLiteCacheStore(cache_file).clear()
    except CacheError as exc:
        stderr.write(f"Failed to clear cache: {exc}\n")
        return EXIT_CONFIGURATION
    stdout.write(f"Cache cleared: {cache_file}\n")
    return EXIT_OK


def _emit(
    payload: dict[str, Any],
    args: argparse.Namespace,
    stdout: TextIO,
    stderr: TextIO,
    table_writer: Callable[[Console], None],
) -> int:
    """Write a command result as JSON (stdout or file) or as a table."""
    if args.output:
        try:
            _write_json_file(payload=payload, output_path=Path(args.output))
        except OSError as exc:
            logger.warning(
                f"Failed to write JSON output file (output_path={args.output} error={exc})"
            )
            stderr.write(f"Failed to write JSON output file: {args.output}\n")
            return EXIT_CONFIGURATION
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    if args.format == "json":
        if not args.output:
            _write_json(payload=payload, console=console)
    else:
        table_writer(console)
    return EXIT_OK


def _write_scan_errors(snapshot: ScanResult, stderr: TextIO) -> None:
    for error in snapshot.errors:
        stderr.write(f"scan_error: {error.type} {error.file}: {error.message}\n")


def _write_json(payload: dict[str, Any], console: Console) -> None:
    console.print(
        json.dumps(payload, indent=2, sort_keys=True),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _write_json_file(payload: dict[str, Any], output_path: Path) -> None:
    """Write raw JSON payload to an output file.

    Args:
        payload: JSON-serializable payload.
        output_path: Target file path.

    Raises:
        OSError: If directory creation or file writing fails.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def _diff_to_dict(diff: DiffResult) -> dict[str, Any]:
    return {
        "lost": [usage_to_dict(usage) for usage in diff.lost],
        "added": [usage_to_dict(usage) for usage in diff.added],
        "renamed": [
            {"from": pair.old.id, "to": pair.new.id, "similarity": round(pair.similarity, 4)}
            for pair in diff.renamed
        ],
        "unchanged": list(diff.unchanged),
        "driftPercentage": round(diff.drift_percentage, 4),
    }


def _duplicates_to_dict(analysis: DuplicateAnalysis) -> dict[str, Any]:
    return {
        "exactDuplicates": {key: list(others) for key, others in analysis.exact_duplicates.items()},
        "similarKeys": {
            key: [
                {
                    "key": candidate.key,
                    "similarity": round(candidate.similarity, 4),
                    "type": candidate.type,
                    "reason": candidate.reason,
                }
                for candidate in candidates
            ]
            for key, candidates in analysis.similar_keys.items()
        },
        "totalDuplicates": analysis.total_duplicates,
        "potentialDuplicates": analysis.potential_duplicates,
        "duplicateRatio": round(analysis.duplicate_ratio, 4),
        "recommendations": [asdict(item) for item in analysis.recommendations],
    }


def _write_keys_table(snapshot: ScanResult, console: Console) -> None:
    console.rule(
        f"{snapshot.total_keys} keys in {snapshot.files_scanned} files",
        style=Style(color="cyan"),
        characters="-",
    )
    table = Table(show_header=True, show_lines=False, expand=True)
    for column, ratio in TABLE_COLUMN_RATIOS.items():
        table.add_column(
            column,
            ratio=ratio,
            overflow="fold",
            justify="right" if column == "locations" else "left",
        )
    for key_id in sorted(snapshot.keys):
        usage = snapshot.keys[key_id]
        first = usage.locations[0]
        table.add_row(
            usage.id,
            usage.detector,
            str(usage.usage_count),
            f"{first.file}:{first.line}:{first.column}",
            ", ".join(sorted(usage.tags)),
            usage.provenance,
        )
    console.print(table)
    if snapshot.partial:
        console.print("Scan is partial: some chunks did not complete.", style="yellow")


def _write_diff_table(diff: DiffResult, console: Console) -> None:
    table = Table(show_header=True, expand=True)
    table.add_column("change", ratio=1)
    table.add_column("key", ratio=3, overflow="fold")
    table.add_column("detail", ratio=3, overflow="fold")
    for usage in diff.lost:
        table.add_row("lost", usage.id, ", ".join(sorted(usage.tags)))
    for usage in diff.added:
        table.add_row("added", usage.id, ", ".join(sorted(usage.tags)))
    for pair in diff.renamed:
        table.add_row("renamed", pair.old.id, f"-> {pair.new.id} ({pair.similarity:.2f})")
    console.print(table)
    console.print(f"Drift: {diff.drift_percentage:.1f}%")


def _write_validation_table(result: ValidationResult, console: Console) -> None:
    table = Table(show_header=True, show_lines=True, expand=True)
    table.add_column("severity", ratio=1)
    table.add_column("type", ratio=1)
    table.add_column("key", ratio=2, overflow="fold")
    table.add_column("message", ratio=4, overflow="fold")
    table.add_column("remediation", ratio=3, overflow="fold")
    for violation in result.violations:
        table.add_row(
            violation.severity,
            violation.type,
            violation.key.id if violation.key is not None else "",
            violation.message,
            violation.remediation,
        )
    console.print(table)
    for warning in result.warnings:
        console.print(f"warning: {warning}", markup=False, highlight=False)
    summary = result.summary
    console.print(
        f"{'PASSED' if result.passed else 'FAILED'} "
        f"(keys={summary.total_keys} lost={summary.lost} added={summary.added} "
        f"renamed={summary.renamed} drift={summary.drift_percentage:.1f}%)",
        style="green" if result.passed else "red",
        markup=False,
    )


def _write_duplicates_table(analysis: DuplicateAnalysis, console: Console) -> None:
    table = Table(show_header=True, expand=True)
    table.add_column("key", ratio=3, overflow="fold")
    table.add_column("candidate", ratio=3, overflow="fold")
    table.add_column("similarity", ratio=1, justify="right")
    table.add_column("type", ratio=1)
    for key, others in analysis.exact_duplicates.items():
        for other in others:
            table.add_row(key, other, "1.00", "exact")
    for key, candidates in analysis.similar_keys.items():
        for candidate in candidates:
            table.add_row(key, candidate.key, f"{candidate.similarity:.2f}", candidate.type)
    console.print(table)
    for recommendation in analysis.recommendations:
        console.print(
            f"[{recommendation.priority}] {recommendation.description}: {recommendation.action}",
            markup=False,
        )


def _write_quality_table(breakdown: QualityBreakdown, console: Console) -> None:
    table = Table(show_header=True)
    table.add_column("score")
    table.add_column("value", justify="right")
    for name in ("coverage", "organization", "consistency", "efficiency", "maintainability"):
        table.add_row(name, f"{getattr(breakdown, name):.1f}")
    table.add_row("overall", f"{breakdown.overall:.1f}")
    console.print(table)
    for recommendation in breakdown.recommendations:
        console.print(f"- {recommendation}", markup=False)


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
