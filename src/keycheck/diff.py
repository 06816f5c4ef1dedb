# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Baseline comparison: lost, added and unchanged keys plus rename pairing."""

import logging
import re
from dataclasses import dataclass

from keycheck.errors import ConfigurationError
from keycheck.model import KeyUsage, ScanResult

logger = logging.getLogger(__name__)

DEFAULT_RENAME_THRESHOLD = 0.6

_SEPARATOR_RE = re.compile(r"[_\-./:\s]+")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")

# Common UI abbreviations mapped to the word they stand for.
ABBREVIATIONS: dict[str, str] = {
    "btn": "button",
    "txt": "text",
    "img": "image",
    "lbl": "label",
    "nav": "navigation",
    "pwd": "password",
    "pass": "password",
    "usr": "user",
    "msg": "message",
    "dlg": "dialog",
    "fld": "field",
    "ico": "icon",
    "cfg": "config",
    "cb": "checkbox",
}


def tokenize_key(identifier: str) -> frozenset[str]:
    """Split an identifier into canonical lowercase tokens.

    Splits on ``_ - . / :`` and whitespace, then on camelCase boundaries,
    and expands common abbreviations.

    Args:
        identifier: Key identifier.

    Returns:
        Token set.
    """
    tokens: set[str] = set()
    for part in _SEPARATOR_RE.split(identifier):
        for word in _CAMEL_RE.findall(part) or ([part] if part else []):
            lowered = word.lower()
            tokens.add(ABBREVIATIONS.get(lowered, lowered))
    return frozenset(tokens)


def token_similarity(left: str, right: str) -> float:
    """Return the Jaccard index of the two identifiers' token sets."""
    left_tokens = tokenize_key(left)
    right_tokens = tokenize_key(right)
    union = left_tokens | right_tokens
    if not union:
        return 0.0
    return len(left_tokens & right_tokens) / len(union)


@dataclass(frozen=True)
class RenamePair:
    """Represent a lost key paired with the added key that likely replaced it."""

    old: KeyUsage
    new: KeyUsage
    similarity: float


@dataclass(frozen=True)
class DiffResult:
    """Represent the classified change set between two snapshots.

    Attributes:
        baseline: Baseline snapshot.
        current: Current snapshot.
        lost: Baseline keys absent from the current snapshot, by identifier.
        added: Current keys absent from the baseline, by identifier.
        unchanged: Identifiers present in both snapshots.
        renamed: Rename pairs removed from ``lost`` and ``added``.
    """

    baseline: ScanResult
    current: ScanResult
    lost: tuple[KeyUsage, ...]
    added: tuple[KeyUsage, ...]
    unchanged: tuple[str, ...]
    renamed: tuple[RenamePair, ...]

    @property
    def change_count(self) -> int:
        return len(self.lost) + len(self.added) + len(self.renamed)

    @property
    def drift_percentage(self) -> float:
        """Return changed keys as a percentage of the baseline size."""
        if not self.baseline.keys:
            return 0.0
        return self.change_count / len(self.baseline.keys) * 100.0

    @property
    def is_empty(self) -> bool:
        return self.change_count == 0


def pair_renames(
    lost: list[KeyUsage],
    added: list[KeyUsage],
    threshold: float = DEFAULT_RENAME_THRESHOLD,
) -> list[RenamePair]:
    """Greedily pair lost and added keys whose token similarity exceeds the threshold.

    Candidates are taken by descending similarity, then by added identifier,
    then by lost identifier. Each identifier is used at most once.

    Args:
        lost: Lost keys.
        added: Added keys.
        threshold: Similarity a pair must strictly exceed.

    Returns:
        Rename pairs in acceptance order.
    """
    candidates: list[tuple[float, str, str]] = []
    for old in lost:
        for new in added:
            similarity = token_similarity(old.id, new.id)
            if similarity > threshold:
                candidates.append((similarity, new.id, old.id))
    candidates.sort(key=lambda item: (-item[0], item[1], item[2]))

    lost_by_id = {usage.id: usage for usage in lost}
    added_by_id = {usage.id: usage for usage in added}
    paired_old: set[str] = set()
    paired_new: set[str] = set()
    pairs: list[RenamePair] = []
    for similarity, new_id, old_id in candidates:
        if old_id in paired_old or new_id in paired_new:
            continue
        paired_old.add(old_id)
        paired_new.add(new_id)
        pairs.append(
            RenamePair(old=lost_by_id[old_id], new=added_by_id[new_id], similarity=similarity)
        )
    return pairs


def diff_snapshots(
    baseline: ScanResult,
    current: ScanResult,
    rename_threshold: float = DEFAULT_RENAME_THRESHOLD,
) -> DiffResult:
    """Compare a current snapshot against a baseline.

    Args:
        baseline: Trusted earlier snapshot.
        current: Newly produced snapshot.
        rename_threshold: Token similarity a lost/added pair must exceed to
            be reported as a rename.

    Returns:
        Classified change set.

    Raises:
        ConfigurationError: If ``rename_threshold`` is outside ``[0, 1]``.
    """
    if not 0.0 <= rename_threshold <= 1.0:
        raise ConfigurationError("rename_threshold must be within [0, 1]")
    lost = [baseline.keys[key] for key in sorted(baseline.keys.keys() - current.keys.keys())]
    added = [current.keys[key] for key in sorted(current.keys.keys() - baseline.keys.keys())]
    unchanged = tuple(sorted(baseline.keys.keys() & current.keys.keys()))

    renamed = pair_renames(lost, added, threshold=rename_threshold)
    renamed_old = {pair.old.id for pair in renamed}
    renamed_new = {pair.new.id for pair in renamed}
    result = DiffResult(
        baseline=baseline,
        current=current,
        lost=tuple(usage for usage in lost if usage.id not in renamed_old),
        added=tuple(usage for usage in added if usage.id not in renamed_new),
        unchanged=unchanged,
        renamed=tuple(renamed),
    )
    logger.info(
        f"Snapshot diff computed (lost={len(result.lost)} added={len(result.added)} "
        f"renamed={len(result.renamed)} unchanged={len(unchanged)} "
        f"drift={result.drift_percentage:.2f})"
    )
    return result
