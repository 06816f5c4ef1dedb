# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""JSON codecs for scan snapshots, validation reports and cached extractions."""

import json
import logging
from pathlib import Path
from typing import Any

from keycheck.errors import ConfigurationError
from keycheck.extractor import ExtractionResult
from keycheck.model import (
    DETECTOR_KINDS,
    KEY_STATUSES,
    SCHEMA_VERSION,
    FileAnalysis,
    KeyFragment,
    KeyLocation,
    KeyUsage,
    ScanError,
    ScanMetrics,
    ScanResult,
)
from keycheck.policy import ValidationResult, Violation

logger = logging.getLogger(__name__)

_STRATEGIES = ("structural", "lexical")
_ERROR_TYPES = ("stat", "read", "parse", "chunk", "timeout")


def location_to_dict(location: KeyLocation) -> dict[str, Any]:
    return {
        "file": location.file,
        "line": location.line,
        "column": location.column,
        "detector": location.detector,
    }


def usage_to_dict(usage: KeyUsage) -> dict[str, Any]:
    return {
        "id": usage.id,
        "type": usage.detector,
        "locations": [location_to_dict(location) for location in usage.locations],
        "tags": sorted(usage.tags),
        "status": usage.status,
        "provenance": usage.provenance,
        "sources": sorted(usage.sources),
    }


def metrics_to_dict(metrics: ScanMetrics) -> dict[str, Any]:
    return {
        "filesTotal": metrics.files_total,
        "filesScanned": metrics.files_scanned,
        "parseFailures": metrics.parse_failures,
        "cacheHits": metrics.cache_hits,
        "cacheMisses": metrics.cache_misses,
        "cacheHitRate": round(metrics.cache_hit_rate, 4),
        "lexicalFiles": metrics.lexical_files,
        "phaseMs": {name: round(value, 3) for name, value in metrics.phase_ms.items()},
        "memoryPeakKb": metrics.memory_peak_kb,
        "workers": metrics.workers,
        "chunks": metrics.chunks,
    }


def snapshot_to_dict(result: ScanResult) -> dict[str, Any]:
    """Serialize a snapshot to its JSON document shape.

    Keys are emitted ordered by identifier so that equal snapshots produce
    byte-identical documents.
    """
    return {
        "schemaVersion": result.schema_version,
        "timestamp": result.timestamp,
        "keys": [usage_to_dict(result.keys[key_id]) for key_id in sorted(result.keys)],
        "files": [
            {
                "path": analysis.path,
                "widgetCount": analysis.widget_count,
                "widgetsWithKeys": analysis.widgets_with_keys,
                "matchedKeys": analysis.matched_keys,
                "strategy": analysis.strategy,
            }
            for analysis in result.files
        ],
        "metadata": {
            "totalKeys": result.total_keys,
            "filesScanned": result.files_scanned,
            "dependenciesScanned": result.dependencies_scanned,
            "partial": result.partial,
        },
        "metrics": metrics_to_dict(result.metrics),
        "errors": [
            {"file": error.file, "message": error.message, "type": error.type}
            for error in result.errors
        ],
    }


def snapshot_from_dict(data: Any) -> ScanResult:
    """Deserialize a snapshot document.

    Documents written by older tools may omit ``files``, ``metrics``,
    ``errors``, per-location ``detector`` and per-key ``sources``; defaults
    are filled in.

    Args:
        data: Parsed JSON document.

    Returns:
        Snapshot value.

    Raises:
        ConfigurationError: If the document is not a valid snapshot.
    """
    try:
        return _snapshot_from_dict(data)
    except ConfigurationError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ConfigurationError(f"Malformed snapshot: {exc}") from exc


def _snapshot_from_dict(data: Any) -> ScanResult:
    if not isinstance(data, dict):
        raise ConfigurationError("Malformed snapshot: expected a JSON object")
    keys: dict[str, KeyUsage] = {}
    for entry in data["keys"]:
        usage = _usage_from_dict(entry)
        if usage.id in keys:
            raise ConfigurationError(f"Malformed snapshot: duplicate key id {usage.id!r}")
        keys[usage.id] = usage
    metadata = data.get("metadata") or {}
    metrics_data = data.get("metrics") or {}
    metrics = ScanMetrics(
        files_total=int(metrics_data.get("filesTotal", 0)),
        files_scanned=int(metrics_data.get("filesScanned", metadata.get("filesScanned", 0))),
        parse_failures=int(metrics_data.get("parseFailures", 0)),
        cache_hits=int(metrics_data.get("cacheHits", 0)),
        cache_misses=int(metrics_data.get("cacheMisses", 0)),
        lexical_files=int(metrics_data.get("lexicalFiles", 0)),
        phase_ms={str(k): float(v) for k, v in (metrics_data.get("phaseMs") or {}).items()},
        memory_peak_kb=int(metrics_data.get("memoryPeakKb", 0)),
        workers=int(metrics_data.get("workers", 0)),
        chunks=int(metrics_data.get("chunks", 0)),
        partial=bool(metadata.get("partial", False)),
    )
    files = tuple(_analysis_from_dict(entry) for entry in data.get("files") or [])
    errors = tuple(
        ScanError(
            file=str(entry["file"]),
            message=str(entry["message"]),
            type=_choice(entry["type"], _ERROR_TYPES, "error type"),
        )
        for entry in data.get("errors") or []
    )
    return ScanResult(
        schema_version=str(data.get("schemaVersion", SCHEMA_VERSION)),
        timestamp=str(data["timestamp"]),
        keys=keys,
        files=files,
        dependencies_scanned=int(metadata.get("dependenciesScanned", 0)),
        metrics=metrics,
        errors=errors,
    )


def _usage_from_dict(entry: dict[str, Any]) -> KeyUsage:
    detector = _choice(entry["type"], DETECTOR_KINDS, "detector type")
    provenance = str(entry.get("provenance", "workspace"))
    locations = tuple(
        KeyLocation(
            file=str(location["file"]),
            line=int(location["line"]),
            column=int(location["column"]),
            detector=_choice(location.get("detector", detector), DETECTOR_KINDS, "detector type"),
        )
        for location in entry["locations"]
    )
    return KeyUsage(
        id=str(entry["id"]),
        detector=detector,
        locations=locations,
        tags=frozenset(str(tag) for tag in entry.get("tags") or []),
        status=_choice(entry.get("status", "active"), KEY_STATUSES, "status"),
        provenance=provenance,
        sources=frozenset(str(source) for source in entry.get("sources") or [provenance]),
    )


def _analysis_from_dict(entry: dict[str, Any]) -> FileAnalysis:
    return FileAnalysis(
        path=str(entry["path"]),
        widget_count=int(entry.get("widgetCount", 0)),
        widgets_with_keys=int(entry.get("widgetsWithKeys", 0)),
        matched_keys=int(entry.get("matchedKeys", 0)),
        strategy=_choice(entry.get("strategy", "structural"), _STRATEGIES, "strategy"),
    )


def _expect(value: Any, expected: type, label: str) -> Any:
    if not isinstance(value, expected):
        raise TypeError(f"Malformed cache payload: {label} is {type(value).__name__}")
    return value


def _choice(value: Any, allowed: tuple[str, ...], label: str) -> Any:
    if value not in allowed:
        raise ConfigurationError(f"Malformed snapshot: unknown {label} {value!r}")
    return value


def write_snapshot(result: ScanResult, path: Path) -> None:
    """Write a snapshot as pretty-printed JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot_to_dict(result), indent=2) + "\n", encoding="utf-8")
    logger.info(f"Snapshot written (path={path} keys={result.total_keys})")


def load_snapshot(path: Path) -> ScanResult:
    """Load a snapshot (typically a baseline) from disk.

    Args:
        path: JSON file path.

    Returns:
        Snapshot value.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning(f"Snapshot could not be read (path={path} error={exc})")
        raise ConfigurationError(f"Snapshot not readable: {path}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning(f"Snapshot is not valid JSON (path={path} error={exc})")
        raise ConfigurationError(f"Snapshot is not valid JSON: {path}") from exc
    return snapshot_from_dict(data)


def violation_to_dict(violation: Violation) -> dict[str, Any]:
    key = None
    if violation.key is not None:
        location = violation.key.last_location
        key = {
            "id": violation.key.id,
            "provenance": violation.key.provenance,
            "tags": sorted(violation.key.tags),
            "status": violation.key.status,
            "lastLocation": location_to_dict(location) if location is not None else None,
        }
    return {
        "type": violation.type,
        "severity": violation.severity,
        "key": key,
        "message": violation.message,
        "remediation": violation.remediation,
        "policy": violation.policy,
    }


def report_to_dict(result: ValidationResult) -> dict[str, Any]:
    """Serialize a validation result to the report document shape."""
    summary = result.summary
    return {
        "summary": {
            "totalKeys": summary.total_keys,
            "lost": summary.lost,
            "added": summary.added,
            "renamed": summary.renamed,
            "deprecatedInUse": summary.deprecated_in_use,
            "driftPercentage": round(summary.drift_percentage, 4),
            "scannedProvenances": list(summary.scanned_provenances),
        },
        "violations": [violation_to_dict(violation) for violation in result.violations],
        "warnings": list(result.warnings),
        "timestamp": result.timestamp,
        "passed": result.passed,
    }


def extraction_to_dict(result: ExtractionResult) -> dict[str, Any]:
    """Serialize one file's extraction result for the cache store."""
    return {
        "fragments": [
            {
                "key": fragment.key,
                "detector": fragment.detector,
                "location": location_to_dict(fragment.location),
                "tags": sorted(fragment.tags),
                "provenance": fragment.provenance,
                "reference": fragment.reference,
            }
            for fragment in result.fragments
        ],
        "analysis": {
            "path": result.analysis.path,
            "widgetCount": result.analysis.widget_count,
            "widgetsWithKeys": result.analysis.widgets_with_keys,
            "matchedKeys": result.analysis.matched_keys,
            "strategy": result.analysis.strategy,
        },
        "constants": dict(sorted(result.constants.items())),
        "parseError": result.parse_error,
    }


def extraction_from_dict(data: dict[str, Any]) -> ExtractionResult:
    """Deserialize a cached extraction result.

    Raises:
        KeyError, TypeError, ValueError: If the payload is malformed.
    """
    _expect(data, dict, "payload")
    entries = _expect(data["fragments"], list, "fragments")
    constants = _expect(data["constants"], dict, "constants")
    return ExtractionResult(
        fragments=tuple(_fragment_from_dict(entry) for entry in entries),
        analysis=_analysis_from_dict(_expect(data["analysis"], dict, "analysis")),
        constants={str(k): str(v) for k, v in constants.items()},
        parse_error=data["parseError"],
    )


def _fragment_from_dict(entry: Any) -> KeyFragment:
    _expect(entry, dict, "fragment")
    location = _expect(entry["location"], dict, "location")
    return KeyFragment(
        key=str(entry["key"]),
        detector=_choice(entry["detector"], DETECTOR_KINDS, "detector type"),
        location=KeyLocation(
            file=str(location["file"]),
            line=int(location["line"]),
            column=int(location["column"]),
            detector=_choice(location["detector"], DETECTOR_KINDS, "detector type"),
        ),
        tags=frozenset(_expect(entry["tags"], list, "tags")),
        provenance=str(entry["provenance"]),
        reference=entry["reference"],
    )
