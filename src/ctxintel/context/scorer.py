"""Multi-factor relevance scoring of files against a natural-language query.

Each file gets seven named subscores:

  symbol_matches    exact / partial matches between query terms and declared names
  keyword_matches   term occurrences in the raw content, capped per term
  dependency_score  query terms in the paths of direct dependencies (forward)
                    and of dependents (reverse)
  path_score        query terms in the file's own path
  type_score        source files up, docs/config neutral, everything else down
  recency_score     linear decay from "just modified" to zero at the window edge
  density_bonus     points per unique matched symbol once more than one matched

The total is ``max(0, sum(aggregate_i * subscore_i))``. Aggregate multipliers
are validated non-negative, so the total never decreases when a subscore
grows. Graph-independent subscores are cached per (path, mtime, terms).
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from ctxintel.config import (
    AggregateWeights,
    IndexerConfig,
    ScoringConfig,
    ScoringWeights,
    validated,
)
from ctxintel.context.models import RelevanceScore, ScoredFile, ScoringResult
from ctxintel.exceptions import ParserError
from ctxintel.graph.builder import DependencyGraphBuilder
from ctxintel.graph.dependency_graph import DependencyGraph
from ctxintel.parser.core import SymbolSource, collect_files
from ctxintel.parser.models import FileError, SymbolTable, describe_language

logger = logging.getLogger("ctxintel.scorer")

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "must", "can", "this", "that", "these", "those", "i",
    "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
    "my", "your", "his", "its", "our", "their", "what", "when", "where",
    "why", "how",
})

SOURCE_EXTENSIONS = frozenset({".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".py", ".pyi"})
NEUTRAL_EXTENSIONS = frozenset({".json", ".md", ".txt"})

_SEPARATORS = re.compile(r"[\s\-_]+")
_NON_WORD = re.compile(r"[^\w]")
_SECONDS_PER_DAY = 86400.0


def normalize_query(query: str | Iterable[str]) -> list[str]:
    """Lowercase, split on whitespace/hyphen/underscore, drop noise, de-duplicate.

    Accepts an already normalized term list, which it returns unchanged.
    """
    pieces = [query] if isinstance(query, str) else list(query)
    terms: list[str] = []
    for piece in pieces:
        for token in _SEPARATORS.split(piece.lower()):
            token = _NON_WORD.sub("", token)
            if len(token) <= 2 or token in STOP_WORDS or token in terms:
                continue
            terms.append(token)
    return terms


# ---------------------------------------------------------------------------
# Subscores
# ---------------------------------------------------------------------------

def score_symbols(
    table: SymbolTable | None, terms: Sequence[str], points: ScoringWeights
) -> tuple[float, float, list[str]]:
    """Return (symbol score, density bonus, matched symbol names)."""
    if table is None:
        return 0.0, 0.0, []
    score = 0.0
    matched: dict[str, None] = {}
    for symbol in table.all_symbols():
        name = symbol.name.lower()
        if not name:
            continue
        for term in terms:
            if name == term:
                score += points.exact_symbol
                matched[symbol.name] = None
            elif term in name or name in term:
                score += points.partial_symbol
                matched[symbol.name] = None
    density = len(matched) * points.density if len(matched) > 1 else 0.0
    return score, density, list(matched)


def score_keywords(content: str, terms: Sequence[str], points: ScoringWeights) -> float:
    """Points per term occurrence in ``content``, capped per term."""
    lowered = content.lower()
    return sum(
        min(lowered.count(term) * points.keyword_occurrence, points.keyword_cap)
        for term in terms
    )


def score_path(rel_path: str, terms: Sequence[str], points: ScoringWeights) -> float:
    lowered = rel_path.lower()
    return sum(points.path for term in terms if term in lowered)


def score_file_type(path: str, points: ScoringWeights) -> float:
    ext = Path(path).suffix.lower()
    if ext in SOURCE_EXTENSIONS:
        return points.source_type
    if ext in NEUTRAL_EXTENSIONS:
        return points.neutral_type
    return points.other_type


def score_recency(mtime: float, now: float, points: ScoringWeights) -> float:
    days = max(0.0, (now - mtime) / _SECONDS_PER_DAY)
    if days > points.recency_window_days:
        return 0.0
    return points.recency * (1 - days / points.recency_window_days)


def score_dependencies(
    path: str,
    terms: Sequence[str],
    graph: DependencyGraph | None,
    points: ScoringWeights,
    relative: Callable[[str], str] = lambda p: p,
) -> float:
    """Direct-dependency and dependent-file path matches, one award per file."""
    if graph is None or path not in graph:
        return 0.0
    score = 0.0
    for dep in graph.dependencies(path):
        dep_path = relative(dep).lower()
        if any(term in dep_path for term in terms):
            score += points.dependency_direct
    for dependent in graph.dependents(path):
        dependent_path = relative(dependent).lower()
        if any(term in dependent_path for term in terms):
            score += points.dependency_indirect
    return score


def aggregate(score: RelevanceScore, weights: AggregateWeights) -> float:
    total = (
        weights.symbol * score.symbol_matches
        + weights.keyword * score.keyword_matches
        + weights.dependency * score.dependency_score
        + weights.path * score.path_score
        + weights.type * score.type_score
        + weights.recency * score.recency_score
        + weights.density * score.density_bonus
    )
    return round(max(0.0, total), 2)


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------

class ScoreOptions(BaseModel):
    """Options for one scoring pass.

    max_files:            keep at most this many ranked files
    min_score:            drop files whose total is below this
    include_dependencies: build (or use the given) dependency graph for
                          the dependency subscore
    root:                 paths are matched relative to this directory;
                          defaults to the common parent of the scored files
    """

    max_files: int = 50
    min_score: float = 0.0
    include_dependencies: bool = True
    root: str | None = None


@dataclass
class _FileFacts:
    """Graph-independent facts about one file for one term set."""

    mtime: float
    partial: RelevanceScore | None
    errors: list[FileError] = field(default_factory=list)


class RelevanceScorer:
    """Ranks files by relevance to a query.

    Collaborators (symbol source, clock) are injected so tests can control
    them. Per-file analysis runs on a thread pool; results are merged in
    input order and stable-sorted, so ties keep their input order.
    """

    def __init__(
        self,
        config: ScoringConfig | None = None,
        indexer: IndexerConfig | None = None,
        symbol_source: SymbolSource | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ScoringConfig()
        self.indexer = indexer or IndexerConfig()
        self.symbol_source = symbol_source or SymbolSource()
        self.clock = clock
        self._cache: dict[tuple[str, float, str, tuple[str, ...]], RelevanceScore] = {}
        self._cache_lock = threading.Lock()

    @property
    def points(self) -> ScoringWeights:
        return self.config.points

    @property
    def weights(self) -> AggregateWeights:
        return self.config.aggregate

    def configure_weights(
        self,
        points: dict[str, Any] | None = None,
        aggregate: dict[str, Any] | None = None,
    ) -> None:
        """Override entries of the point table and/or aggregate multipliers.

        Raises:
            ConfigError: an unknown key, a negative weight, or exact symbol
                points below partial symbol points.
        """
        new_points = validated(ScoringWeights, {**self.points.model_dump(), **(points or {})})
        new_aggregate = validated(
            AggregateWeights, {**self.weights.model_dump(), **(aggregate or {})}
        )
        self.config = self.config.model_copy(update={"points": new_points, "aggregate": new_aggregate})
        self.clear_cache()

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # ------------------------------------------------------------------

    def score_directory(
        self,
        query: str | Iterable[str],
        roots: str | Path | Iterable[str | Path],
        options: ScoreOptions | None = None,
    ) -> ScoringResult:
        """Collect files under ``roots`` and score them."""
        options = options or ScoreOptions(
            max_files=self.config.max_files, min_score=self.config.min_score
        )
        root_list = [roots] if isinstance(roots, (str, Path)) else list(roots)
        files, walk_errors = collect_files(root_list, self.indexer)
        if options.root is None and len(root_list) == 1 and Path(root_list[0]).is_dir():
            options = options.model_copy(update={"root": str(Path(root_list[0]).resolve())})
        result = self.score(query, files, options=options)
        result.errors[:0] = walk_errors
        return result

    def score(
        self,
        query: str | Iterable[str],
        files: Iterable[str | Path],
        graph: DependencyGraph | None = None,
        options: ScoreOptions | None = None,
    ) -> ScoringResult:
        """Score ``files`` against ``query`` and rank them, best first."""
        options = options or ScoreOptions(
            max_files=self.config.max_files, min_score=self.config.min_score
        )
        terms = normalize_query(query)
        paths = list(dict.fromkeys(str(Path(f).resolve()) for f in files))
        result = ScoringResult(terms=terms)
        if not paths:
            return result

        root = options.root or _common_root(paths)

        def relative(p: str) -> str:
            try:
                return os.path.relpath(p, root)
            except ValueError:  # different drive on Windows
                return p

        if graph is None and options.include_dependencies:
            builder = DependencyGraphBuilder(self.indexer, self.symbol_source, root=root)
            build = builder.build(paths)
            graph = build.graph
            result.errors.extend(e for e in build.errors if e.kind == "timeout")

        workers = self.indexer.workers or os.cpu_count() or 1
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ctxintel-score") as pool:
            facts = list(pool.map(lambda p: self._analyze(p, relative(p), terms), paths))

        now = self.clock()
        scored: list[ScoredFile] = []
        for path, fact in zip(paths, facts):
            result.errors.extend(fact.errors)
            if fact.partial is None:
                continue
            score = fact.partial.model_copy(deep=True)
            if options.include_dependencies:
                score.dependency_score = score_dependencies(
                    path, terms, graph, self.points, relative
                )
                if score.dependency_score > 0:
                    score.factors.append("Dependency relationships")
            score.recency_score = round(score_recency(fact.mtime, now, self.points), 2)
            if score.recency_score > 0:
                score.factors.append("Recently modified")
            score.total = aggregate(score, self.weights)
            if score.total >= options.min_score:
                scored.append(
                    ScoredFile(
                        path=path,
                        rel_path=relative(path),
                        language=describe_language(path),
                        score=score,
                    )
                )

        # list.sort is stable: ties keep input order
        scored.sort(key=lambda s: -s.score.total)
        result.ranked = scored[: options.max_files]
        return result

    def _analyze(self, path: str, rel_path: str, terms: list[str]) -> _FileFacts:
        """Compute the cacheable subscores of one file."""
        try:
            mtime = os.stat(path).st_mtime
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return _FileFacts(
                mtime=0.0,
                partial=None,
                errors=[FileError(path=path, kind="io", message=e.strerror or str(e))],
            )

        key = (path, mtime, rel_path, tuple(sorted(terms)))
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            logger.debug("score cache hit: %s", rel_path)
            return _FileFacts(mtime=mtime, partial=cached)

        errors: list[FileError] = []
        try:
            content = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot read %s: %s", path, e)
            errors.append(FileError(path=path, kind="io", message=e.strerror or str(e)))
            content = ""

        table = None
        if self.symbol_source.supports(path):
            try:
                table = self.symbol_source.parse(path)
            except ParserError as e:
                logger.warning("Scoring %s without symbols: %s", rel_path, e.message)
                errors.append(FileError(path=e.path, kind=e.kind, message=e.message))

        partial = RelevanceScore()
        partial.symbol_matches, partial.density_bonus, partial.matched_symbols = score_symbols(
            table, terms, self.points
        )
        if partial.symbol_matches > 0:
            partial.factors.append(f"Symbols: {', '.join(partial.matched_symbols)}")
        partial.keyword_matches = score_keywords(content, terms, self.points)
        if partial.keyword_matches > 0:
            partial.factors.append(f"Keywords: {', '.join(terms[:3])}")
        partial.path_score = score_path(rel_path, terms, self.points)
        if partial.path_score > 0:
            partial.factors.append("Path relevance")
        partial.type_score = score_file_type(path, self.points)

        if not errors:
            with self._cache_lock:
                self._cache[key] = partial
        return _FileFacts(mtime=mtime, partial=partial, errors=errors)


def _common_root(paths: list[str]) -> str:
    dirs = [os.path.dirname(p) for p in paths]
    try:
        return os.path.commonpath(dirs)
    except ValueError:
        return dirs[0]
