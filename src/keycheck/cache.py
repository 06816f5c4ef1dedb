# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Identity-keyed store for per-file extraction results."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from keycheck.errors import ConfigurationError
from keycheck.extractor import ExtractionResult
from keycheck.model import SourceFile

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60.0


@dataclass(frozen=True)
class CacheEntry:
    """Represent one cached extraction result and the file identity it belongs to.

    Attributes:
        path: Project-relative path of the file.
        content_hash: SHA-256 of the file contents when known.
        mtime_ns: Modification time at extraction.
        size: Size in bytes at extraction.
        result: Cached extraction result.
        inserted_at: Clock value (seconds) when the entry was stored.
        ttl_seconds: Lifetime of the entry.
    """

    path: str
    content_hash: str | None
    mtime_ns: int
    size: int
    result: ExtractionResult
    inserted_at: float
    ttl_seconds: float

    def matches(self, source_file: SourceFile) -> bool:
        """Return whether the entry still describes the given file.

        The content hash decides when both sides have one; otherwise the
        modification time and size must both match.
        """
        if self.content_hash is not None and source_file.content_hash is not None:
            return self.content_hash == source_file.content_hash
        return self.mtime_ns == source_file.mtime_ns and self.size == source_file.size

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl_seconds


@dataclass(frozen=True)
class CachedResult:
    """Represent a cache hit."""

    result: ExtractionResult
    age_seconds: float


@dataclass(frozen=True)
class CacheStats:
    """Represent cache counters since the store was opened."""

    entries: int
    hits: int
    misses: int
    expired: int
    invalidated: int
    stored: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class CacheStore:
    """Keep extraction results in memory keyed by file path.

    Each file is owned by exactly one scan worker, so entries for distinct
    paths are written without locking. Only the counters share a lock.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize an empty store.

        Args:
            ttl_seconds: Entry lifetime.
            clock: Wall-clock source in seconds.

        Raises:
            ConfigurationError: If ``ttl_seconds`` is not positive.
        """
        if ttl_seconds <= 0:
            raise ConfigurationError("ttl_seconds must be > 0")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._dirty: set[str] = set()
        self._removed: set[str] = set()
        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expired = 0
        self._invalidated = 0
        self._stored = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, source_file: SourceFile) -> CachedResult | None:
        """Return the cached result for a file, or ``None`` on a miss.

        Args:
            source_file: File whose current identity is checked.

        Returns:
            Cached result when identity matches and the entry has not expired.
        """
        entry = self._entries.get(source_file.path)
        if entry is None:
            self._count(misses=1)
            return None
        now = self._clock()
        if entry.is_expired(now):
            logger.debug(f"Cache entry expired (file_path={source_file.path})")
            self._count(misses=1, expired=1)
            return None
        if not entry.matches(source_file):
            logger.debug(f"Cache entry stale (file_path={source_file.path})")
            self._count(misses=1, invalidated=1)
            return None
        self._count(hits=1)
        return CachedResult(result=entry.result, age_seconds=now - entry.inserted_at)

    def store(self, source_file: SourceFile, result: ExtractionResult) -> None:
        """Store a result, replacing any prior entry for the same path."""
        self._entries[source_file.path] = CacheEntry(
            path=source_file.path,
            content_hash=source_file.content_hash,
            mtime_ns=source_file.mtime_ns,
            size=source_file.size,
            result=result,
            inserted_at=self._clock(),
            ttl_seconds=self._ttl_seconds,
        )
        self._dirty.add(source_file.path)
        self._removed.discard(source_file.path)
        self._count(stored=1)

    def cleanup_expired(self) -> int:
        """Drop expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [path for path, entry in self._entries.items() if entry.is_expired(now)]
        for path in expired:
            del self._entries[path]
            self._dirty.discard(path)
            self._removed.add(path)
        if expired:
            logger.info(f"Expired cache entries removed (count={len(expired)})")
        return len(expired)

    def clear(self) -> None:
        """Drop every entry."""
        self._removed.update(self._entries)
        self._entries.clear()
        self._dirty.clear()

    def flush(self) -> int:
        """Persist pending changes. The in-memory store has nothing to write.

        Returns:
            Number of entries written.
        """
        written = len(self._dirty)
        self._dirty.clear()
        self._removed.clear()
        return written

    def stats(self) -> CacheStats:
        with self._counter_lock:
            return CacheStats(
                entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                expired=self._expired,
                invalidated=self._invalidated,
                stored=self._stored,
            )

    def _count(
        self,
        hits: int = 0,
        misses: int = 0,
        expired: int = 0,
        invalidated: int = 0,
        stored: int = 0,
    ) -> None:
        with self._counter_lock:
            self._hits += hits
            self._misses += misses
            self._expired += expired
            self._invalidated += invalidated
            self._stored += stored
