# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Database backends for the key check cache."""

from keycheck.database.sqlite import DEFAULT_CACHE_FILE, SQLiteCacheStore

__all__ = ["DEFAULT_CACHE_FILE", "SQLiteCacheStore"]
