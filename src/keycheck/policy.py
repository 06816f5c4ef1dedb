# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Policy rules that turn a snapshot diff into a pass/fail validation result."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, get_args

from keycheck.diff import DEFAULT_RENAME_THRESHOLD, DiffResult, diff_snapshots
from keycheck.errors import ConfigurationError
from keycheck.model import (
    WORKSPACE,
    KeyLocation,
    KeyStatus,
    KeyUsage,
    ScanResult,
    is_dependency_provenance,
)

logger = logging.getLogger(__name__)

ViolationType = Literal["lost", "renamed", "extra", "drift", "collision", "package-missing"]
Severity = Literal["error", "warning"]
RuleMode = Literal["off", "warn", "fail"]

RULE_MODES: tuple[RuleMode, ...] = get_args(RuleMode)
CRITICAL_TAG = "critical"

REMEDIATIONS: dict[ViolationType, str] = {
    "lost": "Restore key or update registry",
    "renamed": "Update tests and documentation",
    "extra": "Add to registry or remove from code",
    "drift": "Review changes and update baseline",
    "package-missing": "Declare the key in the app or stop relying on the dependency's key",
    "collision": "Use a distinct key per source or remove the duplicate declaration",
}


@dataclass(frozen=True)
class PolicyConfig:
    """Configure which rules run and how strict they are.

    Attributes:
        fail_on_lost: Report lost keys as violations instead of warnings.
        fail_on_rename: Report renamed keys as violations instead of warnings.
        fail_on_extra: Report added keys as warning violations.
        protected_tags: Tags whose keys fail validation when lost or renamed.
            ``critical`` is always protected.
        max_drift: Maximum drift percentage. Strictly greater fails.
        package_missing: Mode for keys seen only in dependencies.
        collision: Mode for keys seen under more than one provenance.
    """

    fail_on_lost: bool = False
    fail_on_rename: bool = False
    fail_on_extra: bool = False
    protected_tags: frozenset[str] = frozenset()
    max_drift: float = 100.0
    package_missing: RuleMode = "warn"
    collision: RuleMode = "warn"

    def __post_init__(self) -> None:
        if self.max_drift < 0:
            raise ConfigurationError("max_drift must be >= 0")
        if self.package_missing not in RULE_MODES:
            raise ConfigurationError(
                f"package_missing must be one of {', '.join(RULE_MODES)}"
            )
        if self.collision not in RULE_MODES:
            raise ConfigurationError(f"collision must be one of {', '.join(RULE_MODES)}")

    def is_protected(self, usage: KeyUsage) -> bool:
        return CRITICAL_TAG in usage.tags or bool(usage.tags & self.protected_tags)


@dataclass(frozen=True)
class KeyInfo:
    """Describe the key a violation refers to."""

    id: str
    provenance: str
    tags: frozenset[str]
    last_location: KeyLocation | None
    status: KeyStatus

    @classmethod
    def from_usage(cls, usage: KeyUsage) -> "KeyInfo":
        return cls(
            id=usage.id,
            provenance=usage.provenance,
            tags=usage.tags,
            last_location=usage.locations[0],
            status=usage.status,
        )


@dataclass(frozen=True)
class Violation:
    """Represent one policy rule hit."""

    type: ViolationType
    severity: Severity
    key: KeyInfo | None
    message: str
    remediation: str
    policy: str


@dataclass(frozen=True)
class ValidationSummary:
    total_keys: int
    lost: int
    added: int
    renamed: int
    deprecated_in_use: int
    drift_percentage: float
    scanned_provenances: tuple[str, ...]


@dataclass(frozen=True)
class ValidationResult:
    """Represent the outcome of one validation run. Never mutated."""

    summary: ValidationSummary
    violations: tuple[Violation, ...]
    warnings: tuple[str, ...]
    timestamp: str = field(default_factory=lambda: datetime.now(tz=timezone.utc).isoformat())

    @property
    def passed(self) -> bool:
        return not self.errors

    @property
    def errors(self) -> tuple[Violation, ...]:
        return tuple(violation for violation in self.violations if violation.severity == "error")


class PolicyEngine:
    """Apply policy rules to a diff."""

    def evaluate(self, diff: DiffResult, config: PolicyConfig) -> ValidationResult:
        """Evaluate every enabled rule.

        Args:
            diff: Classified change set between baseline and current snapshot.
            config: Rule configuration.

        Returns:
            Validation result. ``passed`` is false when any violation has
            error severity.
        """
        violations: list[Violation] = []
        warnings: list[str] = []

        for usage in diff.lost:
            if config.fail_on_lost:
                protected = config.is_protected(usage)
                violations.append(
                    Violation(
                        type="lost",
                        severity="error" if protected else "warning",
                        key=KeyInfo.from_usage(usage),
                        message=(
                            f"Critical key '{usage.id}' not found"
                            if protected
                            else f"Key '{usage.id}' not found in scan"
                        ),
                        remediation=REMEDIATIONS["lost"],
                        policy="fail_on_lost",
                    )
                )
            else:
                warnings.append(f"Key '{usage.id}' was removed")

        for pair in diff.renamed:
            if config.fail_on_rename:
                violations.append(
                    Violation(
                        type="renamed",
                        severity="error" if config.is_protected(pair.old) else "warning",
                        key=KeyInfo.from_usage(pair.old),
                        message=f"Key '{pair.old.id}' renamed to '{pair.new.id}'",
                        remediation=REMEDIATIONS["renamed"],
                        policy="fail_on_rename",
                    )
                )
            else:
                warnings.append(f"Key '{pair.old.id}' appears renamed to '{pair.new.id}'")

        if config.fail_on_extra:
            for usage in diff.added:
                violations.append(
                    Violation(
                        type="extra",
                        severity="warning",
                        key=KeyInfo.from_usage(usage),
                        message=f"Extra key '{usage.id}' found",
                        remediation=REMEDIATIONS["extra"],
                        policy="fail_on_extra",
                    )
                )

        deprecated_in_use = 0
        for key in diff.unchanged:
            if (
                diff.baseline.keys[key].status == "deprecated"
                or diff.current.keys[key].status == "deprecated"
            ):
                deprecated_in_use += 1
                warnings.append(f"Deprecated key '{key}' is still in use")

        drift = diff.drift_percentage
        if drift > config.max_drift:
            violations.append(
                Violation(
                    type="drift",
                    severity="error",
                    key=None,
                    message=f"Key drift {drift:.1f}% exceeds maximum {config.max_drift}%",
                    remediation=REMEDIATIONS["drift"],
                    policy="max_drift",
                )
            )

        violations.extend(self._source_violations(diff.current, config))

        result = ValidationResult(
            summary=ValidationSummary(
                total_keys=len(diff.current.keys),
                lost=len(diff.lost),
                added=len(diff.added),
                renamed=len(diff.renamed),
                deprecated_in_use=deprecated_in_use,
                drift_percentage=drift,
                scanned_provenances=tuple(diff.current.provenances()),
            ),
            violations=tuple(violations),
            warnings=tuple(warnings),
        )
        logger.info(
            f"Policy evaluated (passed={result.passed} violations={len(result.violations)} "
            f"errors={len(result.errors)} warnings={len(result.warnings)} drift={drift:.2f})"
        )
        return result

    def validate(
        self,
        baseline: ScanResult,
        current: ScanResult,
        config: PolicyConfig,
        rename_threshold: float = DEFAULT_RENAME_THRESHOLD,
    ) -> ValidationResult:
        """Diff two snapshots and evaluate the policy on the result."""
        diff = diff_snapshots(baseline, current, rename_threshold=rename_threshold)
        return self.evaluate(diff, config)

    def _source_violations(
        self, current: ScanResult, config: PolicyConfig
    ) -> list[Violation]:
        violations: list[Violation] = []
        for key in sorted(current.keys):
            usage = current.keys[key]
            if config.package_missing != "off" and WORKSPACE not in usage.sources and any(
                is_dependency_provenance(source) for source in usage.sources
            ):
                violations.append(
                    Violation(
                        type="package-missing",
                        severity="error" if config.package_missing == "fail" else "warning",
                        key=KeyInfo.from_usage(usage),
                        message=(
                            f"Key '{key}' is declared in {', '.join(sorted(usage.sources))} "
                            "but not used in the app"
                        ),
                        remediation=REMEDIATIONS["package-missing"],
                        policy="package_missing",
                    )
                )
            if config.collision != "off" and len(usage.sources) > 1:
                violations.append(
                    Violation(
                        type="collision",
                        severity="error" if config.collision == "fail" else "warning",
                        key=KeyInfo.from_usage(usage),
                        message=(
                            f"Key '{key}' is declared in multiple sources: "
                            f"{', '.join(sorted(usage.sources))}"
                        ),
                        remediation=REMEDIATIONS["collision"],
                        policy="collision",
                    )
                )
        return violations
