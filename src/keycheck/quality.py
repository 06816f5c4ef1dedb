# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Weighted composite quality score for a snapshot's keys."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from keycheck.model import ScanResult

logger = logging.getLogger(__name__)

COVERAGE_WEIGHT = 0.35
ORGANIZATION_WEIGHT = 0.20
CONSISTENCY_WEIGHT = 0.20
EFFICIENCY_WEIGHT = 0.15
MAINTAINABILITY_WEIGHT = 0.10

# (max missing keys, score floor), checked in order.
COVERAGE_FLOORS: tuple[tuple[int, float], ...] = ((2, 85.0), (5, 70.0), (10, 50.0))

_CAMEL_CASE_RE = re.compile(r"[a-z][A-Z]")
_CLEAR_NAME_RE = re.compile(r"[A-Z]|_")
_SEMANTIC_NAME_RE = re.compile(r"button|field|text|icon|screen|form|menu|item")
_SEMANTIC_METRIC_RE = re.compile(r"button|field|text|icon|screen|form|menu|item|widget|dialog")


@dataclass(frozen=True)
class QualityBreakdown:
    """Represent the five sub-scores and their weighted total (all 0 to 100)."""

    coverage: float
    organization: float
    consistency: float
    efficiency: float
    maintainability: float
    overall: float
    recommendations: tuple[str, ...]
    metrics: dict[str, Any]


class QualityScorer:
    """Score a snapshot against an optional set of expected keys."""

    def score(
        self, snapshot: ScanResult, expected_keys: set[str] | None = None
    ) -> QualityBreakdown:
        """Compute the quality breakdown.

        Args:
            snapshot: Snapshot to score.
            expected_keys: Keys that should be present. When omitted the
                snapshot's own keys are expected, so nothing is missing or
                extra.

        Returns:
            Sub-scores, weighted overall score, recommendations and metrics.
        """
        found = set(snapshot.keys)
        expected = set(found) if expected_keys is None else set(expected_keys)
        missing = expected - found
        extra = found - expected
        usage_counts = {key: usage.usage_count for key, usage in snapshot.keys.items()}
        keys_by_file: dict[str, int] = {}
        for usage in snapshot.keys.values():
            for location in usage.locations:
                keys_by_file[location.file] = keys_by_file.get(location.file, 0) + 1
        scanned_files = [analysis.path for analysis in snapshot.files]

        coverage = self._coverage(expected, missing)
        organization = self._organization(found, keys_by_file, scanned_files)
        consistency = self._consistency(found, usage_counts)
        efficiency = self._efficiency(expected, found, extra, usage_counts)
        maintainability = self._maintainability(found, keys_by_file)
        overall = (
            coverage * COVERAGE_WEIGHT
            + organization * ORGANIZATION_WEIGHT
            + consistency * CONSISTENCY_WEIGHT
            + efficiency * EFFICIENCY_WEIGHT
            + maintainability * MAINTAINABILITY_WEIGHT
        )
        breakdown = QualityBreakdown(
            coverage=coverage,
            organization=organization,
            consistency=consistency,
            efficiency=efficiency,
            maintainability=maintainability,
            overall=overall,
            recommendations=tuple(
                _recommendations(
                    coverage=coverage,
                    organization=organization,
                    consistency=consistency,
                    efficiency=efficiency,
                    maintainability=maintainability,
                    missing=missing,
                    extra=extra,
                    usage_counts=usage_counts,
                )
            ),
            metrics=_metrics(
                snapshot, expected, found, missing, extra, usage_counts, keys_by_file, scanned_files
            ),
        )
        logger.info(
            f"Quality scored (overall={overall:.1f} coverage={coverage:.1f} "
            f"organization={organization:.1f} consistency={consistency:.1f} "
            f"efficiency={efficiency:.1f} maintainability={maintainability:.1f})"
        )
        return breakdown

    @staticmethod
    def _coverage(expected: set[str], missing: set[str]) -> float:
        """Scale with the covered fraction, floored for small absolute misses."""
        if not expected or not missing:
            return 100.0
        base = (len(expected) - len(missing)) / len(expected) * 100.0
        for max_missing, floor in COVERAGE_FLOORS:
            if len(missing) <= max_missing:
                return max(base, floor)
        return base

    @staticmethod
    def _organization(
        found: set[str], keys_by_file: dict[str, int], scanned_files: list[str]
    ) -> float:
        if not found:
            return 0.0
        score = 70.0
        if scanned_files:
            distribution = len(keys_by_file) / len(scanned_files)
            if distribution > 0.8:
                score += 15.0
            elif distribution > 0.5:
                score += 10.0
            elif distribution > 0.3:
                score += 5.0
        if naming_is_consistent(found):
            score += 15.0
        return min(score, 100.0)

    @staticmethod
    def _consistency(found: set[str], usage_counts: dict[str, int]) -> float:
        if not found:
            return 0.0
        score = 60.0
        multi_use = sum(1 for count in usage_counts.values() if count > 1)
        if multi_use == 0:
            score += 20.0
        else:
            ratio = multi_use / len(usage_counts)
            if ratio < 0.1:
                score += 15.0
            elif ratio < 0.2:
                score += 10.0
            elif ratio < 0.3:
                score += 5.0
        score += naming_pattern_score(found) * 0.2
        return min(score, 100.0)

    @staticmethod
    def _efficiency(
        expected: set[str], found: set[str], extra: set[str], usage_counts: dict[str, int]
    ) -> float:
        score = 70.0
        if extra:
            extra_ratio = len(extra) / (len(found) + len(extra))
            if extra_ratio > 0.3:
                score -= 30.0
            elif extra_ratio > 0.2:
                score -= 20.0
            elif extra_ratio > 0.1:
                score -= 10.0
            else:
                score -= 5.0
        else:
            score += 10.0
        expected_found = expected & found
        if expected_found:
            average_usage = sum(usage_counts.get(key, 0) for key in expected_found) / len(
                expected_found
            )
            if average_usage > 2.0:
                score += 15.0
            elif average_usage > 1.5:
                score += 10.0
            elif average_usage > 1.0:
                score += 5.0
        return min(max(score, 0.0), 100.0)

    @staticmethod
    def _maintainability(found: set[str], keys_by_file: dict[str, int]) -> float:
        score = 60.0
        if keys_by_file:
            counts = list(keys_by_file.values())
            spread = max(counts) / (sum(counts) / len(counts))
            if spread < 3.0:
                score += 20.0
            elif spread < 5.0:
                score += 10.0
        if found:
            clear = sum(1 for key in found if len(key) > 3 and _CLEAR_NAME_RE.search(key))
            clarity = clear / len(found)
            if clarity > 0.8:
                score += 20.0
            elif clarity > 0.6:
                score += 15.0
            elif clarity > 0.4:
                score += 10.0
        return min(score, 100.0)


def _case_counts(keys: set[str]) -> tuple[int, int, int]:
    camel = sum(1 for key in keys if _CAMEL_CASE_RE.search(key))
    snake = sum(1 for key in keys if "_" in key)
    kebab = sum(1 for key in keys if "-" in key)
    return camel, snake, kebab


def naming_is_consistent(keys: set[str]) -> bool:
    """Return whether one casing style covers more than 70% of the keys."""
    if len(keys) < 3:
        return True
    return max(_case_counts(keys)) / len(keys) > 0.7


def naming_pattern_score(keys: set[str]) -> float:
    """Score descriptive, consistently cased, UI-semantic names (0 to 100)."""
    if not keys:
        return 0.0
    total = len(keys)
    descriptive = sum(1 for key in keys if len(key) > 3)
    camel, snake, _ = _case_counts(keys)
    semantic = sum(1 for key in keys if _SEMANTIC_NAME_RE.search(key.lower()))
    score = descriptive / total * 30.0 + max(camel, snake) / total * 40.0 + semantic / total * 30.0
    return min(score, 100.0)


def _recommendations(
    coverage: float,
    organization: float,
    consistency: float,
    efficiency: float,
    maintainability: float,
    missing: set[str],
    extra: set[str],
    usage_counts: dict[str, int],
) -> list[str]:
    recommendations: list[str] = []
    if coverage < 80.0:
        recommendations.append(
            f"Add missing keys to improve test coverage ({len(missing)} missing)"
        )
    if len(missing) > 5:
        recommendations.append("Focus on critical missing keys first for immediate impact")
    if organization < 70.0:
        recommendations.append("Improve key organization by grouping related keys together")
        recommendations.append("Consider using a KeyConstants class for better organization")
    if consistency < 70.0:
        recommendations.append("Establish consistent naming patterns for all keys")
        duplicates = sum(1 for count in usage_counts.values() if count > 1)
        if duplicates:
            recommendations.append(
                f"Review {duplicates} duplicate keys for potential consolidation"
            )
    if efficiency < 70.0:
        if extra:
            recommendations.append(f"Remove {len(extra)} unused/extra keys to reduce noise")
        recommendations.append("Optimize key usage patterns for better automation efficiency")
    if maintainability < 70.0:
        recommendations.append("Improve key naming for better maintainability")
        recommendations.append("Add documentation for key usage patterns")
    if not recommendations:
        recommendations.append("Excellent key organization! Continue monitoring for consistency")
    return recommendations


def _metrics(
    snapshot: ScanResult,
    expected: set[str],
    found: set[str],
    missing: set[str],
    extra: set[str],
    usage_counts: dict[str, int],
    keys_by_file: dict[str, int],
    scanned_files: list[str],
) -> dict[str, Any]:
    metrics: dict[str, Any] = {
        "expectedCount": len(expected),
        "foundCount": len(found),
        "missingCount": len(missing),
        "extraCount": len(extra),
        "coveragePercentage": (
            (len(expected) - len(missing)) / len(expected) * 100.0 if expected else 100.0
        ),
    }
    if usage_counts:
        counts = list(usage_counts.values())
        metrics["averageUsage"] = sum(counts) / len(counts)
        metrics["maxUsage"] = max(counts)
        metrics["duplicateKeys"] = sum(1 for count in counts if count > 1)
    if scanned_files:
        metrics["filesWithKeys"] = len(keys_by_file)
        metrics["totalFiles"] = len(scanned_files)
        metrics["keyDistribution"] = len(keys_by_file) / len(scanned_files)
    scan_ms = sum(snapshot.metrics.phase_ms.values())
    if scan_ms > 0:
        metrics["scanTimeMs"] = round(scan_ms, 3)
        metrics["keysPerSecond"] = len(found) * 1000.0 / scan_ms

    camel, snake, kebab = _case_counts(found)
    metrics["camelCaseCount"] = camel
    metrics["snakeCaseCount"] = snake
    metrics["kebabCaseCount"] = kebab
    metrics["avgLength"] = sum(len(key) for key in found) / len(found) if found else 0.0
    metrics["semanticCount"] = sum(
        1 for key in found if _SEMANTIC_METRIC_RE.search(key.lower())
    )
    if found:
        if camel >= snake and camel >= kebab:
            metrics["consistencyPattern"] = "camelCase"
        elif snake >= kebab:
            metrics["consistencyPattern"] = "snake_case"
        else:
            metrics["consistencyPattern"] = "kebab-case"
    return metrics
