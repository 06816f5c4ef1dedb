# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Exact and near-duplicate key detection."""

import logging
import re
from dataclasses import dataclass
from typing import Literal

import Levenshtein

from keycheck.diff import tokenize_key
from keycheck.errors import ConfigurationError
from keycheck.model import KeyLocation, ScanResult

logger = logging.getLogger(__name__)

SimilarityType = Literal["levenshtein", "prefix", "suffix", "semantic"]
Priority = Literal["high", "medium", "info"]

HIGH_DUPLICATE_RATIO = 20.0

# Domain vocabulary. Each group holds synonym clusters: words in one cluster
# mean the same thing, words in sibling clusters are related but distinct.
VOCABULARY_GROUPS: dict[str, tuple[frozenset[str], ...]] = {
    "authentication": (
        frozenset({"login", "signin", "logon"}),
        frozenset({"logout", "signout", "logoff"}),
        frozenset({"auth", "authenticate", "authentication"}),
        frozenset({"password", "passcode", "pin"}),
        frozenset({"username", "user", "email"}),
    ),
    "navigation": (
        frozenset({"menu", "drawer"}),
        frozenset({"navigation", "navbar"}),
        frozenset({"back", "previous", "prev"}),
        frozenset({"next", "forward"}),
        frozenset({"home"}),
        frozenset({"profile", "account"}),
    ),
    "actions": (
        frozenset({"submit", "send", "confirm", "ok"}),
        frozenset({"cancel", "dismiss", "close"}),
        frozenset({"save", "store"}),
        frozenset({"delete", "remove"}),
        frozenset({"edit", "modify"}),
        frozenset({"update", "refresh"}),
    ),
    "input": (
        frozenset({"field", "input"}),
        frozenset({"text"}),
        frozenset({"form"}),
        frozenset({"search", "query", "find"}),
    ),
    "display": (
        frozenset({"label", "caption"}),
        frozenset({"title", "heading"}),
        frozenset({"header"}),
        frozenset({"footer"}),
        frozenset({"content", "body"}),
    ),
}

_CONCEPTS: dict[str, str] = {
    word: f"{group}:{min(cluster)}"
    for group, clusters in VOCABULARY_GROUPS.items()
    for cluster in clusters
    for word in cluster
}

_REASONS: dict[SimilarityType, str] = {
    "levenshtein": "Similar character sequence",
    "prefix": "Similar prefix pattern",
    "suffix": "Similar suffix pattern",
    "semantic": "Similar semantic meaning",
}


@dataclass(frozen=True)
class SimilarKey:
    """Represent one candidate similar to a key."""

    key: str
    similarity: float
    type: SimilarityType
    reason: str


@dataclass(frozen=True)
class DuplicateRecommendation:
    type: str
    description: str
    affected_keys: tuple[str, ...]
    priority: Priority
    action: str


@dataclass(frozen=True)
class DuplicateAnalysis:
    """Represent duplicate findings for one snapshot.

    Attributes:
        exact_duplicates: Key to the other keys sharing its usage-count
            signature.
        similar_keys: Key to ranked similar candidates. Each pair is recorded
            once, under the lexically smaller key; ``similar_to`` looks a key
            up in both directions.
        duplicate_locations: Key to the locations of it and its exact
            duplicates.
        total_duplicates: Number of keys listed as exact duplicates.
        potential_duplicates: Number of similar-key entries.
        duplicate_ratio: ``total_duplicates`` as a percentage of all keys.
        recommendations: Ranked recommendations.
    """

    exact_duplicates: dict[str, tuple[str, ...]]
    similar_keys: dict[str, tuple[SimilarKey, ...]]
    duplicate_locations: dict[str, tuple[KeyLocation, ...]]
    total_duplicates: int
    potential_duplicates: int
    duplicate_ratio: float
    recommendations: tuple[DuplicateRecommendation, ...]

    @property
    def total_issues(self) -> int:
        return self.total_duplicates + self.potential_duplicates

    @property
    def has_duplicates(self) -> bool:
        return self.total_duplicates > 0

    def similar_to(self, key: str) -> tuple[str, ...]:
        """Return every key paired as similar with ``key``, in either direction."""
        related = {match.key for match in self.similar_keys.get(key, ())}
        related.update(
            primary
            for primary, matches in self.similar_keys.items()
            if any(match.key == key for match in matches)
        )
        return tuple(sorted(related))


def levenshtein_similarity(left: str, right: str) -> float:
    return float(Levenshtein.ratio(left, right))


def prefix_similarity(left: str, right: str) -> float:
    """Return the common prefix length over the shorter identifier's length."""
    shortest = min(len(left), len(right))
    if shortest == 0:
        return 0.0
    common = 0
    for left_char, right_char in zip(left, right):
        if left_char != right_char:
            break
        common += 1
    return common / shortest


def suffix_similarity(left: str, right: str) -> float:
    """Return the common suffix length over the shorter identifier's length."""
    return prefix_similarity(left[::-1], right[::-1])


def semantic_similarity(left: str, right: str) -> float:
    """Compare identifiers by the vocabulary concepts they mention.

    Tokens are mapped onto synonym clusters and compared with the Jaccard
    index. Pairs where neither side uses a vocabulary word score 0.
    """
    left_concepts = {_CONCEPTS.get(token, token) for token in tokenize_key(left)}
    right_concepts = {_CONCEPTS.get(token, token) for token in tokenize_key(right)}
    vocabulary = set(_CONCEPTS.values())
    if not (left_concepts | right_concepts) & vocabulary:
        return 0.0
    union = left_concepts | right_concepts
    return len(left_concepts & right_concepts) / len(union)


class DuplicateDetector:
    """Find exact and near-duplicate keys in a snapshot."""

    def __init__(
        self,
        similarity_threshold: float = 0.8,
        ignored_patterns: tuple[str, ...] = (),
        enable_semantic_analysis: bool = True,
    ) -> None:
        """Initialize detector.

        Args:
            similarity_threshold: Inclusive threshold in [0.0, 1.0] any signal
                must reach for a pair to be reported.
            ignored_patterns: Case-insensitive regular expressions; matching
                keys are left out of similarity analysis.
            enable_semantic_analysis: Whether the vocabulary signal runs.

        Raises:
            ConfigurationError: If the threshold is outside [0.0, 1.0] or a
                pattern does not compile.
        """
        if similarity_threshold < 0.0 or similarity_threshold > 1.0:
            raise ConfigurationError("similarity_threshold must be between 0.0 and 1.0.")
        try:
            self._ignored = [re.compile(pattern, re.IGNORECASE) for pattern in ignored_patterns]
        except re.error as exc:
            raise ConfigurationError(f"Invalid ignored pattern: {exc}") from exc
        self._similarity_threshold = similarity_threshold
        self._enable_semantic_analysis = enable_semantic_analysis

    def analyze(self, snapshot: ScanResult) -> DuplicateAnalysis:
        """Analyze a snapshot's keys.

        Near-duplicate detection compares every pair of keys, so it is
        quadratic in the key count. That is fine for a few thousand keys;
        callers with more should narrow the set with ``ignored_patterns``.

        Args:
            snapshot: Snapshot to analyze.

        Returns:
            Duplicate analysis.
        """
        usage_counts = {key: usage.usage_count for key, usage in snapshot.keys.items()}
        exact = self._find_exact_duplicates(usage_counts)
        similar = self._find_similar_keys(sorted(snapshot.keys))

        duplicate_locations: dict[str, tuple[KeyLocation, ...]] = {}
        for primary, others in exact.items():
            locations: list[KeyLocation] = list(snapshot.keys[primary].locations)
            for other in others:
                locations.extend(snapshot.keys[other].locations)
            duplicate_locations[primary] = tuple(locations)

        total_duplicates = sum(len(others) for others in exact.values())
        potential_duplicates = sum(len(candidates) for candidates in similar.values())
        duplicate_ratio = (
            total_duplicates / len(snapshot.keys) * 100.0 if snapshot.keys else 0.0
        )
        analysis = DuplicateAnalysis(
            exact_duplicates=exact,
            similar_keys=similar,
            duplicate_locations=duplicate_locations,
            total_duplicates=total_duplicates,
            potential_duplicates=potential_duplicates,
            duplicate_ratio=duplicate_ratio,
            recommendations=tuple(self._recommend(exact, similar, duplicate_ratio)),
        )
        logger.info(
            f"Duplicate analysis done (keys={len(snapshot.keys)} exact={total_duplicates} "
            f"similar={potential_duplicates} ratio={duplicate_ratio:.1f})"
        )
        return analysis

    def similarities(self, left: str, right: str) -> list[SimilarKey]:
        """Return every signal for ``right`` that reaches the threshold."""
        scores: list[tuple[SimilarityType, float]] = [
            ("levenshtein", levenshtein_similarity(left, right)),
            ("prefix", prefix_similarity(left, right)),
            ("suffix", suffix_similarity(left, right)),
        ]
        if self._enable_semantic_analysis:
            scores.append(("semantic", semantic_similarity(left, right)))
        return [
            SimilarKey(key=right, similarity=score, type=kind, reason=_REASONS[kind])
            for kind, score in scores
            if score >= self._similarity_threshold
        ]

    def _should_ignore(self, key: str) -> bool:
        return any(pattern.search(key) for pattern in self._ignored)

    def _find_exact_duplicates(self, usage_counts: dict[str, int]) -> dict[str, tuple[str, ...]]:
        """Group keys with identical usage counts, skipping single-use keys."""
        by_count: dict[int, list[str]] = {}
        for key in sorted(usage_counts):
            count = usage_counts[key]
            if count == 1:
                continue
            by_count.setdefault(count, []).append(key)
        duplicates: dict[str, tuple[str, ...]] = {}
        for count in sorted(by_count):
            members = by_count[count]
            if len(members) < 2:
                continue
            duplicates[members[0]] = tuple(members[1:])
        return duplicates

    def _find_similar_keys(self, keys: list[str]) -> dict[str, tuple[SimilarKey, ...]]:
        candidates = [key for key in keys if not self._should_ignore(key)]
        similar: dict[str, tuple[SimilarKey, ...]] = {}
        for index, left in enumerate(candidates):
            found: list[SimilarKey] = []
            for right in candidates[index + 1 :]:
                found.extend(self.similarities(left, right))
            if found:
                found.sort(key=lambda item: (-item.similarity, item.key, item.type))
                similar[left] = tuple(found)
        return similar

    def _recommend(
        self,
        exact: dict[str, tuple[str, ...]],
        similar: dict[str, tuple[SimilarKey, ...]],
        duplicate_ratio: float,
    ) -> list[DuplicateRecommendation]:
        recommendations: list[DuplicateRecommendation] = []
        if exact:
            recommendations.append(
                DuplicateRecommendation(
                    type="exact_duplicates",
                    description=f"Found {len(exact)} sets of exact duplicate keys",
                    affected_keys=tuple(exact),
                    priority="high",
                    action="Review and consolidate duplicate keys to improve maintainability",
                )
            )
        if similar:
            recommendations.append(
                DuplicateRecommendation(
                    type="similar_keys",
                    description=f"Found {len(similar)} keys with similar patterns",
                    affected_keys=tuple(similar),
                    priority="medium",
                    action="Consider standardizing naming conventions for consistency",
                )
            )
        if duplicate_ratio > HIGH_DUPLICATE_RATIO:
            recommendations.append(
                DuplicateRecommendation(
                    type="high_duplicate_ratio",
                    description=f"High duplicate ratio ({duplicate_ratio:.1f}%)",
                    affected_keys=(),
                    priority="high",
                    action="Review key naming strategy and consider refactoring",
                )
            )
        if not recommendations:
            recommendations.append(
                DuplicateRecommendation(
                    type="no_issues",
                    description="No duplicate or similar keys detected",
                    affected_keys=(),
                    priority="info",
                    action="Key naming appears well-organized",
                )
            )
        priority_rank = {"high": 0, "medium": 1, "info": 2}
        recommendations.sort(key=lambda item: priority_rank[item.priority])
        return recommendations
