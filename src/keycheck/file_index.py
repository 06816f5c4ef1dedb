# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Project file discovery with glob filtering and symlink cycle protection."""

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import pathspec

from keycheck.errors import ConfigurationError
from keycheck.model import DEPENDENCY, PACKAGE_PREFIX, WORKSPACE, ScanError, SourceFile

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE: tuple[str, ...] = ("**/*.dart",)
DEFAULT_EXCLUDE: tuple[str, ...] = (
    "**/*.g.dart",
    "**/*.freezed.dart",
    "**/.dart_tool/**",
    "**/.git/**",
    "**/build/**",
    "**/.keycheck/**",
)
_HASH_BLOCK_SIZE = 1 << 16


@dataclass(frozen=True)
class DependencyRoot:
    """Describe one dependency source tree scanned alongside the workspace.

    Attributes:
        path: Root directory of the dependency.
        name: Package name. Unnamed roots get the ``dependency`` provenance.
    """

    path: Path
    name: str | None = None

    @property
    def provenance(self) -> str:
        return f"{PACKAGE_PREFIX}{self.name}" if self.name else DEPENDENCY

    @property
    def path_prefix(self) -> str:
        if self.name:
            return f"{PACKAGE_PREFIX}{self.name}/"
        return f"{DEPENDENCY}:{self.path.name}/"


@dataclass(frozen=True)
class IndexOptions:
    """Configure which files the index picks up.

    Patterns use gitignore syntax: ``*`` never crosses ``/``, ``**/`` matches
    zero or more directories, a trailing ``/**`` matches everything beneath a
    directory and ``[...]`` is a character class.
    """

    include: tuple[str, ...] = DEFAULT_INCLUDE
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    dependencies: tuple[DependencyRoot, ...] = ()
    hash_contents: bool = True

    def __post_init__(self) -> None:
        if not self.include:
            raise ConfigurationError("include must contain at least one glob pattern")
        for pattern in (*self.include, *self.exclude):
            if not pattern or pattern.startswith("/"):
                raise ConfigurationError(f"Invalid glob pattern: {pattern!r}")
        PathMatcher.from_patterns(self.include)
        PathMatcher.from_patterns(self.exclude)


@dataclass(frozen=True)
class FileIndex:
    """Represent the indexed files and the soft errors hit while walking."""

    files: tuple[SourceFile, ...]
    errors: tuple[ScanError, ...]


class PathMatcher:
    """Match project-relative POSIX paths against glob patterns."""

    def __init__(self, spec: pathspec.GitIgnoreSpec) -> None:
        """Initialize matcher.

        Args:
            spec: Compiled pattern set.
        """
        self._spec = spec

    @classmethod
    def from_patterns(cls, patterns: tuple[str, ...]) -> "PathMatcher":
        """Compile patterns into a matcher.

        Args:
            patterns: Gitignore-style glob patterns.

        Returns:
            Configured matcher.

        Raises:
            ConfigurationError: If a pattern cannot be compiled.
        """
        try:
            spec = pathspec.GitIgnoreSpec.from_lines(patterns)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid glob pattern: {exc}") from exc
        return cls(spec=spec)

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        """Check whether a path matches any pattern.

        Args:
            relative_path: Root-relative POSIX path.
            is_dir: Whether the path is a directory.

        Returns:
            True when a pattern matches.
        """
        normalized = relative_path.replace(os.sep, "/").strip("/")
        if not normalized:
            return False
        if self._spec.match_file(normalized):
            return True
        return is_dir and self._spec.match_file(f"{normalized}/")


def build_file_index(root: Path, options: IndexOptions | None = None) -> FileIndex:
    """Walk a project root (and any dependency roots) and index source files.

    Args:
        root: Workspace root directory.
        options: Include/exclude rules and dependency roots.

    Returns:
        Files ordered by path, deduplicated by canonical path, plus soft errors.

    Raises:
        ConfigurationError: If the workspace root is not a directory.
    """
    options = options or IndexOptions()
    if not root.is_dir():
        raise ConfigurationError(f"Project root is not a directory: {root}")

    include = PathMatcher.from_patterns(options.include)
    exclude = PathMatcher.from_patterns(options.exclude)
    files: dict[str, SourceFile] = {}
    seen_real_files: set[str] = set()
    errors: list[ScanError] = []

    trees = [(root, WORKSPACE, "")]
    for dependency in options.dependencies:
        if not dependency.path.is_dir():
            logger.warning(
                f"Skipping missing dependency root (path={dependency.path} name={dependency.name})"
            )
            errors.append(
                ScanError(
                    file=str(dependency.path),
                    message="dependency root is not a directory",
                    type="stat",
                )
            )
            continue
        trees.append((dependency.path, dependency.provenance, dependency.path_prefix))

    for tree_root, provenance, prefix in trees:
        for source_file in _walk_tree(
            tree_root=tree_root,
            provenance=provenance,
            prefix=prefix,
            include=include,
            exclude=exclude,
            hash_contents=options.hash_contents,
            seen_real_files=seen_real_files,
            errors=errors,
        ):
            files.setdefault(source_file.path, source_file)

    ordered = tuple(files[path] for path in sorted(files))
    logger.info(
        f"File index built (root={root} files={len(ordered)} errors={len(errors)})"
    )
    return FileIndex(files=ordered, errors=tuple(errors))


def _walk_tree(
    tree_root: Path,
    provenance: str,
    prefix: str,
    include: PathMatcher,
    exclude: PathMatcher,
    hash_contents: bool,
    seen_real_files: set[str],
    errors: list[ScanError],
) -> list[SourceFile]:
    """Walk one tree following symlinks without revisiting a real directory."""
    collected: list[SourceFile] = []
    visited_dirs: set[str] = set()

    def _on_error(exc: OSError) -> None:
        logger.warning(f"Directory walk failed (path={exc.filename} error={exc})")
        errors.append(
            ScanError(file=str(exc.filename), message=str(exc), type="stat")
        )

    for dirpath, dirnames, filenames in os.walk(
        tree_root, followlinks=True, onerror=_on_error
    ):
        real_dir = os.path.realpath(dirpath)
        if real_dir in visited_dirs:
            logger.debug(f"Skipping already visited directory (path={dirpath})")
            dirnames[:] = []
            continue
        visited_dirs.add(real_dir)

        relative_dir = Path(dirpath).relative_to(tree_root).as_posix()
        relative_dir = "" if relative_dir == "." else relative_dir
        kept_dirs = []
        for dirname in sorted(dirnames):
            child_relative = f"{relative_dir}/{dirname}" if relative_dir else dirname
            if exclude.matches(child_relative, is_dir=True):
                continue
            if os.path.realpath(os.path.join(dirpath, dirname)) in visited_dirs:
                continue
            kept_dirs.append(dirname)
        dirnames[:] = kept_dirs

        for filename in sorted(filenames):
            relative_path = f"{relative_dir}/{filename}" if relative_dir else filename
            if not include.matches(relative_path):
                continue
            if exclude.matches(relative_path):
                continue
            absolute_path = os.path.join(dirpath, filename)
            source_file = _index_file(
                absolute_path=absolute_path,
                display_path=prefix + relative_path,
                provenance=provenance,
                hash_contents=hash_contents,
                seen_real_files=seen_real_files,
                errors=errors,
            )
            if source_file is not None:
                collected.append(source_file)
    return collected


def _index_file(
    absolute_path: str,
    display_path: str,
    provenance: str,
    hash_contents: bool,
    seen_real_files: set[str],
    errors: list[ScanError],
) -> SourceFile | None:
    real_path = os.path.realpath(absolute_path)
    if real_path in seen_real_files:
        return None
    try:
        stat_result = os.stat(absolute_path)
        content_hash = _hash_file(absolute_path) if hash_contents else None
    except OSError as exc:
        logger.warning(
            f"Skipping file due to stat/read failure (file_path={display_path} error={exc})"
        )
        errors.append(ScanError(file=display_path, message=str(exc), type="stat"))
        return None
    seen_real_files.add(real_path)
    return SourceFile(
        path=display_path,
        absolute_path=absolute_path,
        size=stat_result.st_size,
        content_hash=content_hash,
        mtime_ns=stat_result.st_mtime_ns,
        provenance=provenance,
    )


def _hash_file(absolute_path: str) -> str:
    digest = hashlib.sha256()
    with open(absolute_path, "rb") as handle:
        for block in iter(lambda: handle.read(_HASH_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()
