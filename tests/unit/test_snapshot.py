import json
from pathlib import Path

import pytest

from keycheck.errors import ConfigurationError
from keycheck.model import (
    FileAnalysis,
    KeyLocation,
    KeyUsage,
    ScanError,
    ScanMetrics,
    ScanResult,
)
from keycheck.policy import PolicyConfig, PolicyEngine
from keycheck.snapshot import (
    load_snapshot,
    report_to_dict,
    snapshot_from_dict,
    snapshot_to_dict,
    write_snapshot,
)


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _snapshot() -> ScanResult:
    keys = {
        "login_button": KeyUsage(
            id="login_button",
            detector="constant_key",
            locations=(
                KeyLocation(file="lib/login.dart", line=12, column=9, detector="constant_key"),
                KeyLocation(file="test/login_test.dart", line=4, column=16, detector="finder_key"),
            ),
            tags=frozenset({"constant", "critical", "test", "e2e"}),
        ),
        "kit_header": KeyUsage(
            id="kit_header",
            detector="semantics_label",
            locations=(
                KeyLocation(
                    file="package:ui_kit/lib/header.dart",
                    line=3,
                    column=5,
                    detector="semantics_label",
                ),
            ),
            tags=frozenset({"semantic", "accessibility"}),
            status="deprecated",
            provenance="package:ui_kit",
            sources=frozenset({"package:ui_kit"}),
        ),
    }
    return ScanResult(
        schema_version="1.0",
        timestamp="2026-01-02T03:04:05+00:00",
        keys=keys,
        files=(
            FileAnalysis(path="lib/login.dart", widget_count=4, widgets_with_keys=1, matched_keys=1),
            FileAnalysis(path="package:ui_kit/lib/header.dart", matched_keys=1, strategy="lexical"),
        ),
        dependencies_scanned=1,
        metrics=ScanMetrics(
            files_total=3,
            files_scanned=2,
            cache_hits=1,
            cache_misses=1,
            phase_ms={"index": 1.5, "extract": 3.25},
            workers=2,
            chunks=1,
            partial=True,
        ),
        errors=(ScanError(file="lib/broken.dart", message="bad", type="read"),),
    )


def test_kc_snap_001_write_then_load_gives_identical_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "out" / "baseline.json"
    snapshot = _snapshot()

    write_snapshot(snapshot, path)
    loaded = load_snapshot(path)

    assert loaded.keys == snapshot.keys
    assert loaded.files == snapshot.files
    assert loaded.errors == snapshot.errors
    assert loaded.dependencies_scanned == 1
    assert loaded.partial is True
    assert loaded.metrics.phase_ms == {"index": 1.5, "extract": 3.25}
    assert snapshot_to_dict(loaded) == snapshot_to_dict(snapshot)


def test_kc_snap_002_document_shape_is_camel_case_and_sorted(tmp_path: Path) -> None:
    document = snapshot_to_dict(_snapshot())

    assert [entry["id"] for entry in document["keys"]] == ["kit_header", "login_button"]
    assert document["keys"][1]["type"] == "constant_key"
    assert document["keys"][1]["tags"] == ["constant", "critical", "e2e", "test"]
    assert document["metadata"] == {
        "totalKeys": 2,
        "filesScanned": 2,
        "dependenciesScanned": 1,
        "partial": True,
    }
    assert document["metrics"]["cacheHitRate"] == 0.5
    assert document["files"][1]["strategy"] == "lexical"


def test_kc_snap_003_missing_and_malformed_files_are_configuration_errors(
    tmp_path: Path,
) -> None:
    with pytest.raises(ConfigurationError):
        load_snapshot(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    _write_file(broken, "{not json")
    with pytest.raises(ConfigurationError):
        load_snapshot(broken)

    not_object = tmp_path / "list.json"
    _write_file(not_object, "[]")
    with pytest.raises(ConfigurationError):
        load_snapshot(not_object)


def test_kc_snap_004_unknown_detector_and_duplicate_ids_are_rejected() -> None:
    entry = {
        "id": "a",
        "type": "magic_key",
        "locations": [{"file": "lib/a.dart", "line": 1, "column": 1}],
    }
    with pytest.raises(ConfigurationError, match="unknown detector type"):
        snapshot_from_dict({"timestamp": "t", "keys": [entry]})

    entry = {
        "id": "a",
        "type": "literal_key",
        "locations": [{"file": "lib/a.dart", "line": 1, "column": 1}],
    }
    with pytest.raises(ConfigurationError, match="duplicate key id"):
        snapshot_from_dict({"timestamp": "t", "keys": [entry, entry]})

    with pytest.raises(ConfigurationError):
        snapshot_from_dict({"timestamp": "t", "keys": [{"id": "a", "type": "literal_key"}]})


def test_kc_snap_005_minimal_legacy_document_loads_with_defaults() -> None:
    snapshot = snapshot_from_dict(
        {
            "timestamp": "2025-06-01T00:00:00Z",
            "keys": [
                {
                    "id": "home_button",
                    "type": "literal_key",
                    "locations": [{"file": "lib/home.dart", "line": 8, "column": 3}],
                }
            ],
        }
    )

    usage = snapshot.keys["home_button"]
    assert usage.status == "active"
    assert usage.provenance == "workspace"
    assert usage.sources == frozenset({"workspace"})
    assert usage.locations[0].detector == "literal_key"
    assert snapshot.files == ()
    assert snapshot.errors == ()
    assert snapshot.partial is False
    assert snapshot.schema_version == "1.0"


def test_kc_snap_006_report_document_shape() -> None:
    baseline = _snapshot()
    current = ScanResult(
        schema_version="1.0",
        timestamp="2026-01-03T00:00:00+00:00",
        keys={"kit_header": baseline.keys["kit_header"]},
    )

    result = PolicyEngine().validate(baseline, current, PolicyConfig(fail_on_lost=True))
    report = report_to_dict(result)

    assert set(report) == {"summary", "violations", "warnings", "timestamp", "passed"}
    assert report["passed"] is False
    assert report["summary"]["lost"] == 1
    assert report["summary"]["driftPercentage"] == 50.0
    assert report["summary"]["scannedProvenances"] == ["package:ui_kit"]
    lost = report["violations"][0]
    assert lost["type"] == "lost"
    assert lost["severity"] == "error"
    assert lost["policy"] == "fail_on_lost"
    assert lost["key"]["id"] == "login_button"
    assert lost["key"]["lastLocation"] == {
        "file": "lib/login.dart",
        "line": 12,
        "column": 9,
        "detector": "constant_key",
    }
    json.dumps(report)
