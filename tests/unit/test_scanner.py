import random
import sys
import time
from pathlib import Path

import pytest

from keycheck.cache import CacheStore
from keycheck.errors import ConfigurationError
from keycheck.extractor import ExtractionResult
from keycheck.file_index import DependencyRoot, IndexOptions
from keycheck.model import FileAnalysis, KeyFragment, KeyLocation, SourceFile
from keycheck.scanner import (
    MAX_CHUNK_SIZE,
    ScanOptions,
    ScanOrchestrator,
    memory_peak_kb,
    merge_fragments,
    plan_chunks,
    resolve_constants,
    scan_project,
)


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _source_file(path: str, size: int = 100, provenance: str = "workspace") -> SourceFile:
    return SourceFile(
        path=path,
        absolute_path=f"/project/{path}",
        size=size,
        content_hash=None,
        mtime_ns=0,
        provenance=provenance,
    )


def _fragment(
    key: str,
    file: str,
    line: int,
    provenance: str = "workspace",
    reference: str | None = None,
    tags: frozenset[str] = frozenset(),
) -> KeyFragment:
    detector = "constant_key" if reference else "literal_key"
    return KeyFragment(
        key=key,
        detector=detector,
        location=KeyLocation(file=file, line=line, column=1, detector=detector),
        tags=tags,
        provenance=provenance,
        reference=reference,
    )


def _project(tmp_path: Path) -> Path:
    _write_file(
        tmp_path / "lib" / "keys.dart",
        "class AppKeys {\n  static const checkout = 'checkout_button';\n}\n",
    )
    _write_file(
        tmp_path / "lib" / "cart.dart",
        "final cart = Container(key: Key(AppKeys.checkout));\n"
        "final total = Text('0', key: const ValueKey('cart_total'));\n",
    )
    _write_file(
        tmp_path / "lib" / "home.dart",
        "final home = Column(key: Key('home_screen'), children: []);\n",
    )
    return tmp_path


class _StubExtractor:
    """Return one fragment per file, stalling or failing on request."""

    def __init__(
        self,
        slow_paths: frozenset[str] = frozenset(),
        delay_seconds: float = 0.5,
        failing_path: str | None = None,
    ) -> None:
        self._slow_paths = slow_paths
        self._delay_seconds = delay_seconds
        self._failing_path = failing_path

    def extract(self, source_file: SourceFile) -> ExtractionResult:
        if source_file.path in self._slow_paths:
            time.sleep(self._delay_seconds)
        if source_file.path == self._failing_path:
            raise RuntimeError("extractor crashed")
        key = Path(source_file.path).stem
        return ExtractionResult(
            fragments=(_fragment(key, source_file.path, 1),),
            analysis=FileAnalysis(path=source_file.path, matched_keys=1),
        )


def test_kc_scan_001_project_scan_resolves_cross_file_constants(tmp_path: Path) -> None:
    root = _project(tmp_path)

    result = scan_project(root, ScanOptions(max_workers=2))

    assert set(result.keys) == {"checkout_button", "cart_total", "home_screen"}
    assert result.keys["checkout_button"].detector == "constant_key"
    assert result.keys["cart_total"].tags == frozenset({"const"})
    assert result.keys["home_screen"].locations[0].file == "lib/home.dart"
    assert [analysis.path for analysis in result.files] == [
        "lib/cart.dart",
        "lib/home.dart",
        "lib/keys.dart",
    ]
    assert result.errors == ()
    assert result.partial is False
    assert set(result.metrics.phase_ms) == {"index", "plan", "extract", "merge"}
    assert result.metrics.files_total == 3
    assert result.metrics.files_scanned == 3


def test_kc_scan_002_warm_cache_gives_identical_keys(tmp_path: Path) -> None:
    root = _project(tmp_path)
    cache = CacheStore()

    cold = scan_project(root, ScanOptions(max_workers=2), cache=cache)
    warm = scan_project(root, ScanOptions(max_workers=2), cache=cache)

    assert warm.keys == cold.keys
    assert cold.metrics.cache_hits == 0
    assert cold.metrics.cache_misses == 3
    assert warm.metrics.cache_hits == 3
    assert warm.metrics.cache_hit_rate == 1.0
    assert "cache_flush" in warm.metrics.phase_ms


def test_kc_scan_003_changed_file_is_rescanned(tmp_path: Path) -> None:
    root = _project(tmp_path)
    cache = CacheStore()
    scan_project(root, cache=cache)

    _write_file(root / "lib" / "home.dart", "final home = Column(key: Key('home_v2'));\n")
    result = scan_project(root, cache=cache)

    assert "home_v2" in result.keys
    assert "home_screen" not in result.keys
    assert result.metrics.cache_hits == 2
    assert result.metrics.cache_misses == 1


def test_kc_scan_004_plan_chunks_covers_every_file_once() -> None:
    files = [_source_file(f"lib/f{index:03d}.dart") for index in range(100)]

    chunks = plan_chunks(files, workers=2)

    flattened = [source_file.path for chunk in chunks for source_file in chunk]
    assert flattened == sorted(source_file.path for source_file in files)
    # 100 files over 2 workers * 4 chunks each.
    assert {len(chunk) for chunk in chunks[:-1]} == {13}
    assert len(chunks) == 8


def test_kc_scan_005_plan_chunks_caps_and_isolates() -> None:
    many = [_source_file(f"f{index:04d}.dart") for index in range(1000)]
    large = [_source_file(f"big{index}.dart", size=1024 * 1024) for index in range(3)]

    assert max(len(chunk) for chunk in plan_chunks(many, workers=1)) == MAX_CHUNK_SIZE
    assert [len(chunk) for chunk in plan_chunks(large, workers=8)] == [1, 1, 1]
    assert [len(chunk) for chunk in plan_chunks(many[:5], workers=1, chunk_size=2)] == [2, 2, 1]
    assert plan_chunks([], workers=4) == []
    with pytest.raises(ConfigurationError):
        plan_chunks(many, workers=0)


def test_kc_scan_006_merge_is_order_independent() -> None:
    fragments = [
        _fragment("login", "lib/a.dart", 4, tags=frozenset({"const"})),
        _fragment("login", "lib/b.dart", 1),
        _fragment("signup", "lib/b.dart", 9),
        _fragment("", "lib/c.dart", 2, reference="Keys.logout"),
        _fragment("login", "package:ui/x.dart", 3, provenance="package:ui"),
    ]
    constants = {"Keys.logout": "logout"}
    expected = merge_fragments(fragments, constants)

    shuffled = list(fragments)
    for seed in range(5):
        random.Random(seed).shuffle(shuffled)
        assert merge_fragments(shuffled, constants) == expected

    assert [location.file for location in expected["login"].locations] == [
        "lib/a.dart",
        "lib/b.dart",
        "package:ui/x.dart",
    ]
    assert expected["login"].tags == frozenset({"const"})
    assert expected["logout"].detector == "constant_key"


def test_kc_scan_007_workspace_provenance_wins() -> None:
    usages = merge_fragments(
        [
            _fragment("shared", "package:ui/a.dart", 1, provenance="package:ui"),
            _fragment("shared", "lib/a.dart", 1),
            _fragment("only_dep", "package:zeta/b.dart", 1, provenance="package:zeta"),
            _fragment("only_dep", "package:alpha/b.dart", 1, provenance="package:alpha"),
        ],
        {},
    )

    assert usages["shared"].provenance == "workspace"
    assert usages["shared"].sources == frozenset({"workspace", "package:ui"})
    assert usages["only_dep"].provenance == "package:alpha"


def test_kc_scan_008_unresolved_and_ambiguous_references_are_dropped() -> None:
    first = ExtractionResult(
        fragments=(),
        analysis=FileAnalysis(path="lib/a.dart"),
        constants={"Keys.save": "save_button", "title": "a"},
    )
    second = ExtractionResult(
        fragments=(),
        analysis=FileAnalysis(path="lib/b.dart"),
        constants={"Keys.save": "save_button", "title": "b"},
    )
    constants = resolve_constants(
        [(_source_file("lib/a.dart"), first), (_source_file("lib/b.dart"), second)]
    )

    usages = merge_fragments(
        [
            _fragment("", "lib/c.dart", 1, reference="Keys.save"),
            _fragment("", "lib/c.dart", 2, reference="title"),
            _fragment("", "lib/c.dart", 3, reference="Unknown.key"),
        ],
        constants,
    )

    assert constants == {"Keys.save": "save_button"}
    assert set(usages) == {"save_button"}


def test_kc_scan_009_timeout_returns_partial_result() -> None:
    files = [_source_file("lib/fast.dart"), _source_file("lib/slow.dart")]
    orchestrator = ScanOrchestrator(
        extractor=_StubExtractor(slow_paths=frozenset({"lib/slow.dart"}))
    )

    result = orchestrator.scan(
        files, ScanOptions(max_workers=2, chunk_size=1, timeout_seconds=0.2)
    )

    assert result.partial is True
    assert set(result.keys) == {"fast"}
    assert [(error.file, error.type) for error in result.errors] == [("lib/slow.dart", "timeout")]


def test_kc_scan_010_failed_chunk_is_reported_and_others_merged() -> None:
    files = [_source_file("lib/good.dart"), _source_file("lib/bad.dart")]
    orchestrator = ScanOrchestrator(extractor=_StubExtractor(failing_path="lib/bad.dart"))

    result = orchestrator.scan(files, ScanOptions(max_workers=2, chunk_size=1))

    assert result.partial is True
    assert set(result.keys) == {"good"}
    assert len(result.errors) == 1
    assert result.errors[0].type == "chunk"
    assert "extractor crashed" in result.errors[0].message


def test_kc_scan_011_unreadable_and_unparsable_files_are_soft_errors(tmp_path: Path) -> None:
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "binary.dart").write_bytes(b"\xff\xfe\x00Key('x')")
    _write_file(tmp_path / "lib" / "broken.dart", "final a = Key('kept');\nfinal b = 'open;\n")

    result = scan_project(tmp_path)

    errors = {error.file: error.type for error in result.errors}
    assert errors == {"lib/binary.dart": "read", "lib/broken.dart": "parse"}
    assert set(result.keys) == {"kept"}
    assert result.partial is False
    assert result.metrics.parse_failures == 1
    assert result.metrics.lexical_files == 1


def test_kc_scan_012_dependencies_are_counted_by_provenance(tmp_path: Path) -> None:
    project = tmp_path / "app"
    _write_file(project / "lib" / "main.dart", "final a = Key('app_key');\n")
    _write_file(tmp_path / "ui_kit" / "lib" / "a.dart", "final a = Key('kit_a');\n")
    _write_file(tmp_path / "ui_kit" / "lib" / "b.dart", "final b = Key('kit_b');\n")
    _write_file(tmp_path / "charts" / "lib" / "c.dart", "final c = Key('app_key');\n")

    result = scan_project(
        project,
        ScanOptions(
            index=IndexOptions(
                dependencies=(
                    DependencyRoot(path=tmp_path / "ui_kit", name="ui_kit"),
                    DependencyRoot(path=tmp_path / "charts", name="charts"),
                )
            )
        ),
    )

    assert result.dependencies_scanned == 2
    assert result.keys["kit_a"].provenance == "package:ui_kit"
    assert result.keys["app_key"].provenance == "workspace"
    assert result.keys["app_key"].sources == frozenset({"workspace", "package:charts"})
    assert result.provenances() == ["package:charts", "package:ui_kit", "workspace"]


def test_kc_scan_013_invalid_options_raise_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        ScanOptions(max_workers=0)
    with pytest.raises(ConfigurationError):
        ScanOptions(timeout_seconds=0)
    with pytest.raises(ConfigurationError):
        scan_project(tmp_path / "does-not-exist")


def test_kc_scan_014_large_file_threshold_reaches_the_extractor(tmp_path: Path) -> None:
    root = _project(tmp_path)

    result = scan_project(root, ScanOptions(large_file_threshold=1))

    assert result.metrics.lexical_files == 3
    assert set(result.keys) == {"checkout_button", "cart_total", "home_screen"}


def test_kc_scan_015_timed_out_workers_leave_the_cache_untouched() -> None:
    cache = CacheStore()
    files = [_source_file(f"lib/slow_{index}.dart") for index in range(4)]
    orchestrator = ScanOrchestrator(
        extractor=_StubExtractor(
            slow_paths=frozenset(source_file.path for source_file in files),
            delay_seconds=0.3,
        ),
        cache=cache,
    )

    result = orchestrator.scan(
        files, ScanOptions(max_workers=2, chunk_size=2, timeout_seconds=0.1)
    )
    entries_at_return = len(cache)
    stored_at_return = cache.stats().stored
    time.sleep(0.8)

    assert result.partial is True
    assert result.keys == {}
    assert [error.type for error in result.errors] == ["timeout", "timeout"]
    assert len(cache) == entries_at_return == 0
    assert cache.stats().stored == stored_at_return == 0
    assert cache.flush() == 0


def test_kc_scan_016_memory_peak_is_zero_without_resource_module(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setitem(sys.modules, "resource", None)

    assert memory_peak_kb() == 0
