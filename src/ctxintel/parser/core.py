"""Symbol source: selects a parser per file, caches symbol tables, walks directories."""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
from collections.abc import Iterable
from pathlib import Path

from ctxintel.config import IndexerConfig
from ctxintel.exceptions import ParserError
from ctxintel.parser.models import FileError, SymbolTable, detect_language

logger = logging.getLogger("ctxintel.parser")


def parse_file(file_path: str, source: str | None = None) -> SymbolTable | None:
    """Parse a single file, auto-detecting language and selecting the parser.

    Returns None if the file's language is not supported.

    - Python: stdlib ast
    - JavaScript / TypeScript: tree-sitter
    """
    language = detect_language(file_path)
    if not language:
        return None

    if language == "python":
        from ctxintel.parser.python_parser import parse_python_file

        return parse_python_file(file_path, source)

    from ctxintel.parser.tree_sitter_parser import parse_tree_sitter_file

    return parse_tree_sitter_file(file_path, language, source)


class SymbolSource:
    """Provides symbol tables for files, cached by path and modification time.

    A cached table is reused only while the file's mtime is unchanged, so an
    edit on disk invalidates it on the next :meth:`parse`. Safe to call from
    worker threads.
    """

    def __init__(self) -> None:
        self._cache: dict[str, tuple[float, SymbolTable]] = {}
        self._lock = threading.Lock()

    def supports(self, path: str) -> bool:
        return detect_language(path) is not None

    def parse(self, path: str) -> SymbolTable:
        """Return the symbol table for ``path``.

        Raises:
            ParserError: the file is missing, unreadable, unsupported or not
                valid source (``kind`` tells which).
        """
        try:
            mtime = os.stat(path).st_mtime
        except OSError as e:
            raise ParserError(path, e.strerror or str(e), kind="io") from e

        with self._lock:
            cached = self._cache.get(path)
        if cached and cached[0] == mtime:
            logger.debug("symbol cache hit: %s", path)
            return cached[1]

        try:
            source = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ParserError(path, e.strerror or str(e), kind="io") from e

        table = parse_file(path, source)
        if table is None:
            raise ParserError(path, "unsupported file type")

        with self._lock:
            self._cache[path] = (mtime, table)
        return table

    def invalidate(self, path: str | None = None) -> None:
        with self._lock:
            if path is None:
                self._cache.clear()
            else:
                self._cache.pop(path, None)


def collect_files(
    roots: str | Path | Iterable[str | Path],
    config: IndexerConfig | None = None,
) -> tuple[list[str], list[FileError]]:
    """Collect candidate files under one or more roots.

    Explicit file paths are taken as given; directories are walked with the
    configured extensions, exclusion patterns, .gitignore entries and size
    cap. Missing roots and unreadable directories are reported as ``io``
    errors and skipped.

    Returns:
        (absolute file paths in discovery order, errors)
    """
    if config is None:
        config = IndexerConfig()
    if isinstance(roots, (str, Path)):
        roots = [roots]

    files: list[str] = []
    errors: list[FileError] = []
    for root in roots:
        root_path = Path(root).resolve()
        if root_path.is_file():
            files.append(str(root_path))
        elif root_path.is_dir():
            files.extend(_collect_files(root_path, config, errors))
        else:
            logger.warning("Skipping missing path %s", root_path)
            errors.append(FileError(path=str(root_path), kind="io", message="path does not exist"))

    return list(dict.fromkeys(files)), errors


def _collect_files(root: Path, config: IndexerConfig, errors: list[FileError]) -> list[str]:
    """Collect files under one directory, respecting exclusion patterns."""
    files = []
    max_size = config.max_file_size_kb * 1024
    extensions = {ext.lower() for ext in config.extensions}
    all_exclude = config.exclude_patterns + _read_gitignore(root)

    def on_error(err: OSError) -> None:
        logger.warning("Skipping unreadable directory %s: %s", err.filename, err.strerror)
        errors.append(
            FileError(path=str(err.filename), kind="io", message=err.strerror or str(err))
        )

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        rel_dir = os.path.relpath(dirpath, root)

        dirnames[:] = sorted(
            d
            for d in dirnames
            if not _should_exclude(os.path.join(rel_dir, d) if rel_dir != "." else d, all_exclude)
        )

        for filename in sorted(filenames):
            rel_path = os.path.join(rel_dir, filename) if rel_dir != "." else filename
            if _should_exclude(rel_path, all_exclude):
                continue
            if Path(filename).suffix.lower() not in extensions:
                continue

            full_path = Path(dirpath) / filename
            try:
                if full_path.stat().st_size > max_size:
                    logger.debug("Skipping %s: larger than %d KB", full_path, config.max_file_size_kb)
                    continue
            except OSError as e:
                errors.append(FileError(path=str(full_path), kind="io", message=e.strerror or str(e)))
                continue

            files.append(str(full_path))

    return files


def _should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    path_parts = Path(path).parts
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        for part in path_parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def _read_gitignore(root: Path) -> list[str]:
    """Read .gitignore patterns from a walk root."""
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []

    patterns = []
    try:
        for line in gitignore.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("!"):
                patterns.append(line.rstrip("/").lstrip("/"))
    except OSError as e:
        logger.warning("Could not read %s: %s", gitignore, e)
    return [p for p in patterns if p]
