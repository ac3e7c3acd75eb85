"""Build the file dependency graph from per-file symbol tables."""

from __future__ import annotations

import concurrent.futures
import logging
import os
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel

from ctxintel.config import IndexerConfig
from ctxintel.exceptions import ParserError
from ctxintel.graph.dependency_graph import Cycle, DependencyGraph
from ctxintel.graph.models import (
    Classification,
    Dependency,
    DependencyEdge,
    EdgeKind,
    FileRecord,
)
from ctxintel.parser.core import SymbolSource, collect_files
from ctxintel.parser.models import FileError, ImportStatement, SymbolTable

logger = logging.getLogger("ctxintel.graph")

# Extensions tried, in order, when a JS/TS import omits one
JS_EXTENSIONS = (".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs")
INDEX_FILES = tuple(f"index{ext}" for ext in JS_EXTENSIONS)
ALIAS_PREFIXES = ("@/", "~/")


# ---------------------------------------------------------------------------
# Resolution rules
# ---------------------------------------------------------------------------

def classify_specifier(
    specifier: str, language: str, aliases: dict[str, str] | None = None
) -> Classification:
    """Classify an import specifier without touching the filesystem."""
    if language == "python":
        return Classification.INTERNAL if specifier.startswith(".") else Classification.EXTERNAL

    if specifier.startswith(("./", "../")) or specifier in (".", ".."):
        return Classification.INTERNAL
    if any(specifier.startswith(prefix) for prefix in (*(aliases or {}), *ALIAS_PREFIXES)):
        return Classification.ALIAS
    if specifier.startswith((".", "/")):
        return Classification.UNKNOWN
    return Classification.EXTERNAL


def resolve_path(candidate: str) -> str | None:
    """Resolve a JS/TS module path: exact file, then extensions, then index files."""
    if os.path.isfile(candidate):
        return os.path.realpath(candidate)
    for ext in JS_EXTENSIONS:
        if os.path.isfile(candidate + ext):
            return os.path.realpath(candidate + ext)
    if os.path.isdir(candidate):
        for index in INDEX_FILES:
            path = os.path.join(candidate, index)
            if os.path.isfile(path):
                return os.path.realpath(path)
    return None


def resolve_python(file_path: str, specifier: str, names: list[str]) -> list[str]:
    """Resolve a Python relative import to the module files it loads.

    One leading dot is the importing file's own package; each further dot
    ascends one directory. ``from . import x`` resolves each imported name
    as a submodule, falling back to the package ``__init__.py``.
    """
    dots = len(specifier) - len(specifier.lstrip("."))
    module = specifier[dots:]
    base = os.path.dirname(file_path)
    for _ in range(dots - 1):
        base = os.path.dirname(base)

    if module:
        target = os.path.join(base, *module.split("."))
        for candidate in (target + ".py", os.path.join(target, "__init__.py")):
            if os.path.isfile(candidate):
                return [os.path.realpath(candidate)]
        return []

    resolved = []
    for name in names:
        for candidate in (os.path.join(base, name + ".py"), os.path.join(base, name, "__init__.py")):
            if os.path.isfile(candidate):
                resolved.append(os.path.realpath(candidate))
                break
    if not resolved:
        init = os.path.join(base, "__init__.py")
        if os.path.isfile(init):
            resolved.append(os.path.realpath(init))
    return resolved


def find_package_init(file_path: str, stop_at: str | None = None) -> str | None:
    """Nearest ancestor ``__init__.py`` of a Python file, never the file itself."""
    current = os.path.dirname(file_path)
    while True:
        candidate = os.path.join(current, "__init__.py")
        if os.path.isfile(candidate) and os.path.realpath(candidate) != file_path:
            return os.path.realpath(candidate)
        parent = os.path.dirname(current)
        if parent == current or (stop_at and current == stop_at):
            return None
        current = parent


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class GraphOptions(BaseModel):
    """Options for one graph build.

    root:          directory alias prefixes resolve against and the package
                   edge walk stops at; exports are shown relative to it
    detect_cycles: also search the built graph for import cycles
    """

    root: str | None = None
    detect_cycles: bool = False


@dataclass
class BuildResult:
    """A graph built from the parseable files plus the per-file errors."""

    graph: DependencyGraph
    errors: list[FileError] = field(default_factory=list)
    records: dict[str, FileRecord] = field(default_factory=dict)
    cycles: list[Cycle] = field(default_factory=list)


class DependencyGraphBuilder:
    """Resolves imports to files and builds a :class:`DependencyGraph`.

    Symbol extraction runs on a thread pool, one task per file, each bounded
    by ``parse_timeout_s``. A single reducer then assembles the graph, so the
    graph itself is only ever touched by one thread. The graph is rebuilt
    wholesale on every call; symbol tables are reused while a file's mtime is
    unchanged.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        symbol_source: SymbolSource | None = None,
        root: str | Path | None = None,
    ) -> None:
        self.config = config or IndexerConfig()
        self.symbol_source = symbol_source or SymbolSource()
        self.root = str(Path(root).resolve()) if root else None

    def build_from_roots(self, roots: str | Path | Iterable[str | Path]) -> BuildResult:
        """Collect files under ``roots`` and build the graph over them."""
        files, walk_errors = collect_files(roots, self.config)
        result = self.build(files)
        result.errors[:0] = walk_errors
        return result

    def build(self, files: Iterable[str | Path]) -> BuildResult:
        """Build the dependency graph over ``files``.

        Files without a supported language are ignored. Files that fail to
        parse (or time out) are recorded in ``errors`` and left out of the
        graph; the rest of the batch still builds.
        """
        paths = []
        for f in files:
            path = str(Path(f).resolve())
            if self.symbol_source.supports(path):
                paths.append(path)
            else:
                logger.debug("Not a source file, skipping: %s", path)
        paths = list(dict.fromkeys(paths))

        records, errors = self._load_records(paths)

        graph = DependencyGraph()
        for path in paths:
            record = records.get(path)
            if record is not None:
                graph.add_file(path, language=record.language, externals=record.externals)

        for path in paths:
            record = records.get(path)
            if record is None:
                continue
            for dep in record.dependencies:
                if dep.resolved is None:
                    continue
                graph.add_edge(
                    DependencyEdge(
                        source=path,
                        target=dep.resolved,
                        kind=dep.kind,
                        classification=dep.classification,
                        specifier=dep.specifier,
                    )
                )

        logger.info(
            "Built dependency graph: %d files, %d edges, %d errors",
            len(graph), len(graph.edges()), len(errors),
        )
        return BuildResult(graph=graph, errors=errors, records=records)

    def _load_records(self, paths: list[str]) -> tuple[dict[str, FileRecord], list[FileError]]:
        records: dict[str, FileRecord] = {}
        errors: list[FileError] = []
        if not paths:
            return records, errors

        workers = self.config.workers or os.cpu_count() or 1
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ctxintel-parse")
        try:
            futures = [(path, pool.submit(self._load_record, path)) for path in paths]
            for path, future in futures:
                try:
                    records[path] = future.result(timeout=self.config.parse_timeout_s)
                except concurrent.futures.TimeoutError:
                    future.cancel()
                    logger.warning(
                        "Parsing %s exceeded %.1fs, skipping", path, self.config.parse_timeout_s
                    )
                    errors.append(
                        FileError(
                            path=path,
                            kind="timeout",
                            message=f"parse exceeded {self.config.parse_timeout_s}s",
                        )
                    )
                except ParserError as e:
                    logger.warning("Skipping %s: %s", e.path, e.message)
                    errors.append(FileError(path=e.path, kind=e.kind, message=e.message))
        finally:
            # A timed-out parse keeps its thread; don't wait for it.
            pool.shutdown(wait=False, cancel_futures=True)
        return records, errors

    def _load_record(self, path: str) -> FileRecord:
        try:
            stat = os.stat(path)
        except OSError as e:
            raise ParserError(path, e.strerror or str(e), kind="io") from e
        table = self.symbol_source.parse(path)
        return FileRecord(
            path=path,
            language=table.language,
            size=stat.st_size,
            mtime=stat.st_mtime,
            symbols=table,
            dependencies=self.resolve_dependencies(path, table),
        )

    def resolve_dependencies(self, path: str, table: SymbolTable) -> list[Dependency]:
        """Classify and resolve every import of one file."""
        deps: list[Dependency] = []
        for imp in table.imports:
            deps.extend(self._resolve_import(path, table.language, imp))

        if table.language == "python":
            init = find_package_init(path, stop_at=self.root)
            if init:
                deps.append(
                    Dependency(
                        specifier=os.path.relpath(init, os.path.dirname(path)),
                        kind=EdgeKind.PACKAGE,
                        classification=Classification.INTERNAL,
                        resolved=init,
                    )
                )
        return deps

    def _resolve_import(self, path: str, language: str, imp: ImportStatement) -> list[Dependency]:
        source = imp.source
        classification = classify_specifier(source, language, self.config.aliases)

        def dep(resolved: str | None) -> Dependency:
            return Dependency(
                specifier=source, classification=classification, resolved=resolved, line=imp.line
            )

        if classification == Classification.EXTERNAL:
            return [dep(None)]

        if language == "python":
            targets = resolve_python(path, source, imp.specifiers)
            return [dep(t) for t in targets] or [dep(None)]

        if classification == Classification.INTERNAL:
            return [dep(resolve_path(os.path.join(os.path.dirname(path), source)))]

        if classification == Classification.ALIAS:
            for prefix, target in self.config.aliases.items():
                if source.startswith(prefix):
                    base = self.root or os.getcwd()
                    candidate = os.path.join(base, target, source[len(prefix):])
                    return [dep(resolve_path(os.path.normpath(candidate)))]
            return [dep(None)]

        if source.startswith("/"):
            return [dep(resolve_path(source))]
        return [dep(None)]
