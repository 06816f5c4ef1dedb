import json
import sqlite3
from pathlib import Path

import pytest

from keycheck.cache import CacheStore
from keycheck.database import SQLiteCacheStore
from keycheck.errors import ConfigurationError
from keycheck.extractor import ExtractionResult
from keycheck.model import FileAnalysis, KeyFragment, KeyLocation, SourceFile
from keycheck.snapshot import extraction_to_dict


class _FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _source_file(
    path: str = "lib/a.dart",
    content_hash: str | None = "hash-a",
    mtime_ns: int = 100,
    size: int = 10,
) -> SourceFile:
    return SourceFile(
        path=path,
        absolute_path=f"/project/{path}",
        size=size,
        content_hash=content_hash,
        mtime_ns=mtime_ns,
    )


def _result(path: str = "lib/a.dart", key: str = "login_button") -> ExtractionResult:
    location = KeyLocation(file=path, line=3, column=7, detector="literal_key")
    return ExtractionResult(
        fragments=(
            KeyFragment(key=key, detector="literal_key", location=location, tags=frozenset({"const"})),
        ),
        analysis=FileAnalysis(path=path, widget_count=2, widgets_with_keys=1, matched_keys=1),
        constants={"loginButton": key},
    )


def test_kc_cache_001_hit_when_identity_matches() -> None:
    clock = _FakeClock()
    store = CacheStore(clock=clock)
    store.store(_source_file(), _result())
    clock.now += 5

    cached = store.lookup(_source_file())

    assert cached is not None
    assert cached.result == _result()
    assert cached.age_seconds == 5
    assert store.stats().hits == 1


def test_kc_cache_002_hash_decides_when_both_sides_have_one() -> None:
    store = CacheStore()
    store.store(_source_file(content_hash="old"), _result())

    # Same mtime and size but different content is still a miss.
    assert store.lookup(_source_file(content_hash="new")) is None
    # Touched file with identical content is still a hit.
    assert store.lookup(_source_file(content_hash="old", mtime_ns=999)) is not None
    stats = store.stats()
    assert (stats.hits, stats.misses, stats.invalidated) == (1, 1, 1)


def test_kc_cache_003_mtime_and_size_decide_without_hash() -> None:
    store = CacheStore()
    store.store(_source_file(content_hash=None), _result())

    assert store.lookup(_source_file(content_hash=None)) is not None
    assert store.lookup(_source_file(content_hash=None, mtime_ns=101)) is None
    assert store.lookup(_source_file(content_hash=None, size=11)) is None


def test_kc_cache_004_entries_expire_after_ttl() -> None:
    clock = _FakeClock()
    store = CacheStore(ttl_seconds=60, clock=clock)
    store.store(_source_file(), _result())

    clock.now += 60
    assert store.lookup(_source_file()) is not None
    clock.now += 1
    assert store.lookup(_source_file()) is None
    assert store.stats().expired == 1


def test_kc_cache_005_cleanup_expired_removes_only_old_entries() -> None:
    clock = _FakeClock()
    store = CacheStore(ttl_seconds=60, clock=clock)
    store.store(_source_file("lib/old.dart"), _result("lib/old.dart"))
    clock.now += 50
    store.store(_source_file("lib/new.dart"), _result("lib/new.dart"))
    clock.now += 20

    removed = store.cleanup_expired()

    assert removed == 1
    assert len(store) == 1
    assert store.lookup(_source_file("lib/new.dart")) is not None


def test_kc_cache_006_stats_and_hit_rate() -> None:
    store = CacheStore()
    assert store.stats().hit_rate == 0.0
    store.store(_source_file(), _result())
    store.lookup(_source_file())
    store.lookup(_source_file("lib/missing.dart"))

    stats = store.stats()

    assert stats.entries == 1
    assert stats.stored == 1
    assert stats.hit_rate == 0.5


def test_kc_cache_007_ttl_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        CacheStore(ttl_seconds=0)
    with pytest.raises(ConfigurationError):
        SQLiteCacheStore(tmp_path / "cache.sqlite3", ttl_seconds=-1)


def test_kc_cache_008_sqlite_store_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / ".keycheck" / "cache.sqlite3"
    store = SQLiteCacheStore(db_path)
    store.store(_source_file(), _result())

    written = store.flush()
    reopened = SQLiteCacheStore(db_path)

    assert written == 1
    assert db_path.exists()
    assert len(reopened) == 1
    cached = reopened.lookup(_source_file())
    assert cached is not None
    assert cached.result == _result()
    assert reopened.flush() == 0


def test_kc_cache_009_sqlite_flush_persists_removals(tmp_path: Path) -> None:
    clock = _FakeClock()
    db_path = tmp_path / "cache.sqlite3"
    store = SQLiteCacheStore(db_path, ttl_seconds=10, clock=clock)
    store.store(_source_file(), _result())
    store.flush()

    clock.now += 11
    assert store.cleanup_expired() == 1
    store.flush()

    connection = sqlite3.connect(db_path)
    try:
        count = connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
    finally:
        connection.close()
    assert count == 0


def test_kc_cache_010_corrupt_database_is_rebuilt(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.sqlite3"
    db_path.write_bytes(b"this is not a sqlite database at all, just some bytes" * 20)

    store = SQLiteCacheStore(db_path)

    assert len(store) == 0
    assert not db_path.exists()
    store.store(_source_file(), _result())
    store.flush()
    assert len(SQLiteCacheStore(db_path)) == 1


@pytest.mark.parametrize(
    "broken",
    [
        {"fragments": 1},
        {"constants": []},
        {"analysis": "lib/main.dart"},
        {"fragments": [[]]},
        {"fragments": [{"location": None}]},
        {"fragments": [{}]},
    ],
)
def test_kc_cache_011_malformed_rows_are_dropped(tmp_path: Path, broken: dict) -> None:
    db_path = tmp_path / "cache.sqlite3"
    store = SQLiteCacheStore(db_path)
    store.store(_source_file(), _result())
    store.flush()
    payload = {**extraction_to_dict(_result()), **broken}
    connection = sqlite3.connect(db_path)
    try:
        connection.execute("UPDATE cache_entries SET payload = ?", (json.dumps(payload),))
        connection.commit()
    finally:
        connection.close()

    reopened = SQLiteCacheStore(db_path)

    assert len(reopened) == 0
    reopened.flush()
    assert len(SQLiteCacheStore(db_path)) == 0


def test_kc_cache_012_missing_directory_is_a_cold_start_and_clear_deletes_file(
    tmp_path: Path,
) -> None:
    db_path = tmp_path / "nested" / "dir" / "cache.sqlite3"
    store = SQLiteCacheStore(db_path)
    assert len(store) == 0

    store.store(_source_file(), _result())
    store.flush()
    assert db_path.exists()

    store.clear()

    assert len(store) == 0
    assert not db_path.exists()
    assert store.flush() == 0
