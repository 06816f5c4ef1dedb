# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""SQLite-backed cache store for extraction results."""

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path

from keycheck.cache import DEFAULT_TTL_SECONDS, CacheEntry, CacheStore
from keycheck.errors import CacheError
from keycheck.snapshot import extraction_from_dict, extraction_to_dict

logger = logging.getLogger(__name__)

DEFAULT_CACHE_FILE = Path(".keycheck") / "cache.sqlite3"


class SQLiteCacheStore(CacheStore):
    """Load all cache rows at open and write changed rows back on flush."""

    def __init__(
        self,
        db_path: Path,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Open the cache database.

        A missing database is a cold start. An unreadable or corrupt one is
        logged, deleted and treated as empty.

        Args:
            db_path: SQLite database file path.
            ttl_seconds: Entry lifetime.
            clock: Wall-clock source in seconds.

        Raises:
            ConfigurationError: If ``ttl_seconds`` is not positive.
        """
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self._db_path = db_path
        self._load()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def flush(self) -> int:
        """Write changed and removed entries in one transaction.

        Returns:
            Number of entries written.

        Raises:
            CacheError: If the database cannot be written.
        """
        dirty = [self._entries[path] for path in list(self._dirty) if path in self._entries]
        removed = list(self._removed)
        if not dirty and not removed:
            return 0
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning(f"Cache directory not writable (db_path={self._db_path} error={exc})")
            raise CacheError(str(exc)) from exc

        connection = sqlite3.connect(self._db_path)
        try:
            self._ensure_schema(connection=connection)
            connection.execute("BEGIN")
            connection.executemany(
                "DELETE FROM cache_entries WHERE path = ?",
                [(path,) for path in removed],
            )
            connection.executemany(
                "INSERT OR REPLACE INTO cache_entries ("
                "path, content_hash, mtime_ns, size, inserted_at, ttl_seconds, payload"
                ") VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        entry.path,
                        entry.content_hash,
                        entry.mtime_ns,
                        entry.size,
                        entry.inserted_at,
                        entry.ttl_seconds,
                        json.dumps(extraction_to_dict(entry.result)),
                    )
                    for entry in dirty
                ],
            )
            connection.commit()
        except sqlite3.DatabaseError as exc:
            connection.rollback()
            logger.warning(f"Cache flush failed (db_path={self._db_path} error={exc})")
            raise CacheError(str(exc)) from exc
        finally:
            connection.close()
        self._dirty.clear()
        self._removed.clear()
        logger.info(
            f"Cache flushed (db_path={self._db_path} written={len(dirty)} removed={len(removed)})"
        )
        return len(dirty)

    def clear(self) -> None:
        """Drop every entry and delete the database file.

        Raises:
            CacheError: If the database file cannot be removed.
        """
        super().clear()
        self._removed.clear()
        try:
            self._db_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"Cache file could not be removed (db_path={self._db_path} error={exc})")
            raise CacheError(str(exc)) from exc
        logger.info(f"Cache cleared (db_path={self._db_path})")

    def _load(self) -> None:
        if not self._db_path.exists():
            logger.debug(f"Cache database missing; cold start (db_path={self._db_path})")
            return
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.DatabaseError as exc:
            self._discard_corrupt(exc)
            return
        try:
            self._ensure_schema(connection=connection)
            rows = connection.execute(
                "SELECT path, content_hash, mtime_ns, size, inserted_at, ttl_seconds, payload "
                "FROM cache_entries"
            ).fetchall()
        except sqlite3.DatabaseError as exc:
            connection.close()
            self._discard_corrupt(exc)
            return
        connection.close()

        for path, content_hash, mtime_ns, size, inserted_at, ttl_seconds, payload in rows:
            try:
                entry = CacheEntry(
                    path=path,
                    content_hash=content_hash,
                    mtime_ns=int(mtime_ns),
                    size=int(size),
                    result=extraction_from_dict(json.loads(payload)),
                    inserted_at=float(inserted_at),
                    ttl_seconds=float(ttl_seconds),
                )
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.warning(f"Dropping malformed cache row (file_path={path} error={exc})")
                self._removed.add(path)
                continue
            self._entries[path] = entry
        logger.info(f"Cache loaded (db_path={self._db_path} entries={len(self._entries)})")

    def _discard_corrupt(self, exc: sqlite3.DatabaseError) -> None:
        logger.warning(
            f"Cache database unreadable; starting cold (db_path={self._db_path} error={exc})"
        )
        try:
            self._db_path.unlink(missing_ok=True)
        except OSError as unlink_exc:
            logger.warning(
                f"Corrupt cache file could not be removed (db_path={self._db_path} error={unlink_exc})"
            )

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        """Create the cache table when missing.

        Args:
            connection: Open SQLite connection.
        """
        connection.execute(
            "CREATE TABLE IF NOT EXISTS cache_entries ("
            "path TEXT PRIMARY KEY, "
            "content_hash TEXT, "
            "mtime_ns INTEGER NOT NULL, "
            "size INTEGER NOT NULL, "
            "inserted_at REAL NOT NULL, "
            "ttl_seconds REAL NOT NULL, "
            "payload TEXT NOT NULL"
            ")"
        )
