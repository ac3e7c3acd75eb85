"""Budget-constrained selection and section-aware truncation of file content.

Selection picks *which* files to show: ``depth-first`` takes the top-N by
relevance, ``diversity-first`` keeps the top 3 and then one representative
per relevance factor before filling by rank. Extraction then decides *how
much* of each: a file is split into imports, exports, signatures, comments
and implementation, the sections are ordered by
``priority * (1 + relevance * 0.1)`` and appended until the per-file
character budget runs out. The last section that does not fit is cut at a
line boundary with a ``...`` marker. Output never exceeds the budget.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel

from ctxintel.config import MODEL_LIMITS, WindowConfig, token_limit_for
from ctxintel.context.models import (
    ContextFile,
    OptimizedContext,
    ScoredFile,
    Section,
    SectionKind,
    SelectionStrategy,
    TokenEstimator,
)
from ctxintel.context.scorer import RelevanceScorer, ScoreOptions, normalize_query
from ctxintel.exceptions import ConfigError
from ctxintel.parser.models import FileError

logger = logging.getLogger("ctxintel.optimizer")

TRUNCATION_MARKER = "..."
SECTION_SEPARATOR = "\n\n"
DIVERSITY_ANCHORS = 3

_SIGNATURE_EXTENSIONS = {".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".py", ".pyi"}
_JS_SIGNATURES = [
    re.compile(r"^(export\s+)?(default\s+)?(function|class|const|let|var)\s+\w+"),
    re.compile(r"^(export\s+)?(default\s+)?(async\s+)?function"),
    re.compile(r"^(export\s+)?(abstract\s+)?class\s+\w+"),
    re.compile(r"^(export\s+)?interface\s+\w+"),
    re.compile(r"^(export\s+)?type\s+\w+"),
]
_PY_SIGNATURES = [
    re.compile(r"^def\s+\w+"),
    re.compile(r"^class\s+\w+"),
    re.compile(r"^async\s+def\s+\w+"),
]
_REQUIRE_IMPORT = re.compile(r"^(const|let|var)\s+.+=\s*require\(")
_COMMENT_PREFIXES = ("//", "#", "/*", "*", '"""', "'''")


def parse_strategy(strategy: str | SelectionStrategy) -> SelectionStrategy:
    """Validate a strategy name.

    Raises:
        ConfigError: the name is not a known selection strategy.
    """
    if isinstance(strategy, SelectionStrategy):
        return strategy
    try:
        return SelectionStrategy(strategy)
    except ValueError:
        choices = ", ".join(s.value for s in SelectionStrategy)
        raise ConfigError(f"Unknown selection strategy '{strategy}'. Choose one of: {choices}") from None


class OptimizeOptions(BaseModel):
    """Options for one optimization pass.

    model:                model name used to look up the token limit
    token_limit:          explicit limit; overrides the model lookup
    max_files:            most files to include
    strategy:             ``depth-first`` or ``diversity-first``
    include_dependencies: use the dependency graph while scoring candidates
    root:                 directory paths are shown relative to
    """

    model: str = "default"
    token_limit: int | None = None
    max_files: int = 20
    strategy: str = SelectionStrategy.DIVERSITY_FIRST.value
    include_dependencies: bool = True
    root: str | None = None


# ---------------------------------------------------------------------------
# Section extraction
# ---------------------------------------------------------------------------

def _is_import(stripped: str) -> bool:
    return (
        stripped.startswith(("import ", "from ", "require(", "#include"))
        or bool(_REQUIRE_IMPORT.match(stripped))
    )


def _is_export(stripped: str) -> bool:
    return stripped.startswith(("export ", "module.exports", "exports."))


def _leading_imports(lines: list[str]) -> list[int]:
    indices: list[int] = []
    for i, line in enumerate(lines):
        stripped = line.strip()
        if _is_import(stripped):
            indices.append(i)
        elif indices and stripped == "":
            indices.append(i)
        elif indices:
            break
    return indices


def _trailing_exports(lines: list[str]) -> list[int]:
    indices: list[int] = []
    for i in range(len(lines) - 1, -1, -1):
        stripped = lines[i].strip()
        if _is_export(stripped):
            indices.append(i)
        elif indices and stripped == "":
            indices.append(i)
        elif indices:
            break
    return sorted(indices)


def _signatures(lines: list[str], ext: str) -> list[int]:
    if ext not in _SIGNATURE_EXTENSIONS:
        return []
    patterns = _PY_SIGNATURES if ext in (".py", ".pyi") else _JS_SIGNATURES
    return [
        i for i, line in enumerate(lines)
        if any(p.match(line.strip()) for p in patterns)
    ]


def _comments(lines: list[str]) -> list[int]:
    return [
        i for i, line in enumerate(lines)
        if line.strip().startswith(_COMMENT_PREFIXES) or "*/" in line
    ]


def section_relevance(text: str, terms: Iterable[str], points: float = 2.0) -> float:
    lowered = text.lower()
    return sum(lowered.count(term) * points for term in terms)


def truncate_lines(text: str, max_length: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut ``text`` at the last whole line that fits, then append ``marker``.

    When not even the first line fits, the text is hard-cut instead. The
    result is never longer than ``max_length``.
    """
    if len(text) <= max_length:
        return text
    if max_length <= len(marker):
        return text[: max(0, max_length)]

    tail = len(marker) + 1  # "\n..."
    kept: list[str] = []
    length = 0
    for line in text.split("\n"):
        extra = len(line) + (1 if kept else 0)
        if length + extra + tail > max_length:
            break
        kept.append(line)
        length += extra
    if not kept:
        return text[: max_length - len(marker)] + marker
    return "\n".join(kept) + "\n" + marker


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

class ContextWindowOptimizer:
    """Chooses files and trims their content to fit a model's context window."""

    def __init__(
        self,
        scorer: RelevanceScorer | None = None,
        config: WindowConfig | None = None,
        model_limits: dict[str, int] | None = None,
    ) -> None:
        self.scorer = scorer or RelevanceScorer()
        self.config = config or WindowConfig()
        self.model_limits = dict(model_limits or MODEL_LIMITS)

    def token_limit_for(self, model: str | None) -> int:
        return token_limit_for(model, self.model_limits)

    def supported_models(self) -> list[str]:
        return list(self.model_limits)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def optimize(
        self,
        query: str,
        roots: str | Path | Iterable[str | Path],
        options: OptimizeOptions | None = None,
    ) -> OptimizedContext:
        """Score the files under ``roots`` and build an optimized context."""
        options = options or OptimizeOptions(max_files=self.config.max_files)
        strategy = parse_strategy(options.strategy)

        scoring = self.scorer.score_directory(
            query,
            roots,
            ScoreOptions(
                max_files=options.max_files * 2,
                min_score=1,
                include_dependencies=options.include_dependencies,
                root=options.root,
            ),
        )
        context = self.optimize_ranked(
            query,
            scoring.ranked,
            token_limit=options.token_limit or self.token_limit_for(options.model),
            max_files=options.max_files,
            strategy=strategy,
            model=options.model,
        )
        context.errors[:0] = scoring.errors
        return context

    def optimize_ranked(
        self,
        query: str,
        ranked: list[ScoredFile],
        token_limit: int,
        max_files: int,
        strategy: str | SelectionStrategy = SelectionStrategy.DIVERSITY_FIRST,
        model: str = "default",
    ) -> OptimizedContext:
        """Select from already-ranked candidates and extract their content."""
        strategy = parse_strategy(strategy)
        context = OptimizedContext(
            query=query,
            model=model,
            strategy=strategy,
            token_limit=token_limit,
            max_files=max_files,
            candidate_count=len(ranked),
        )
        if not ranked:
            context.summary = "No relevant files found for the query."
            return context

        selected = self.select_files(ranked, max_files, strategy)
        budget = self.file_char_budget(len(selected), token_limit)
        terms = normalize_query(query)

        for candidate in selected:
            try:
                content = Path(candidate.path).read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Cannot read %s: %s", candidate.path, e)
                context.errors.append(
                    FileError(path=candidate.path, kind="io", message=e.strerror or str(e))
                )
                continue
            cf = self.optimize_content(content, candidate.path, terms, budget)
            if cf.tokens == 0:
                continue
            cf.rel_path = candidate.rel_path
            cf.language = candidate.language
            cf.relevance = candidate.score.total
            context.files.append(cf)

        context.files.sort(key=lambda f: -f.relevance)
        context.total_tokens = sum(f.tokens for f in context.files)
        context.total_characters = sum(f.characters for f in context.files)
        context.utilization_pct = (
            round(context.total_tokens / token_limit * 100, 1) if token_limit else 0.0
        )
        context.summary = self._summary(context)
        return context

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_files(
        self,
        ranked: list[ScoredFile],
        max_files: int,
        strategy: str | SelectionStrategy = SelectionStrategy.DIVERSITY_FIRST,
    ) -> list[ScoredFile]:
        strategy = parse_strategy(strategy)
        if max_files <= 0:
            return []
        if len(ranked) <= max_files:
            return list(ranked)
        if strategy == SelectionStrategy.DEPTH_FIRST:
            return ranked[:max_files]
        return self._select_diverse(ranked, max_files)

    def _select_diverse(self, ranked: list[ScoredFile], max_files: int) -> list[ScoredFile]:
        selected = ranked[: min(DIVERSITY_ANCHORS, max_files)]
        if len(selected) >= max_files:
            return selected

        groups: dict[str, list[ScoredFile]] = {
            "symbols": [], "dependencies": [], "path": [], "keywords": [], "recency": [],
        }
        for candidate in ranked[DIVERSITY_ANCHORS:]:
            s = candidate.score
            if s.symbol_matches > s.keyword_matches and s.symbol_matches > s.path_score:
                groups["symbols"].append(candidate)
            elif s.dependency_score > 20:
                groups["dependencies"].append(candidate)
            elif s.path_score > 10:
                groups["path"].append(candidate)
            elif s.keyword_matches > 5:
                groups["keywords"].append(candidate)
            elif s.recency_score > 0:
                groups["recency"].append(candidate)

        for members in groups.values():
            if len(selected) >= max_files:
                break
            if members:
                selected.append(members[0])

        used = {c.path for c in selected}
        for candidate in ranked:
            if len(selected) >= max_files:
                break
            if candidate.path not in used:
                selected.append(candidate)
                used.add(candidate.path)
        return selected

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def file_char_budget(self, file_count: int, token_limit: int) -> int:
        """Characters each selected file may use."""
        total_chars = token_limit * self.config.chars_per_token
        per_file = min(total_chars / max(1, file_count), self.config.max_file_chars)
        return int(max(per_file, self.config.min_file_chars))

    def extract_sections(self, content: str, path: str, terms: Iterable[str]) -> list[Section]:
        """Split a file into its sections, in file order."""
        terms = list(terms)
        lines = content.split("\n")
        imports = _leading_imports(lines)
        exports = _trailing_exports(lines)
        comments = _comments(lines)
        signatures = _signatures(lines, Path(path).suffix.lower())
        excluded = set(imports) | set(exports) | set(comments)
        implementation = [i for i in range(len(lines)) if i not in excluded]

        sections: list[Section] = []
        for kind, indices in (
            ("imports", imports),
            ("exports", exports),
            ("signatures", signatures),
            ("comments", comments),
            ("implementation", implementation),
        ):
            chosen = [lines[i] for i in indices]
            if not chosen or not any(line.strip() for line in chosen):
                continue
            text = "\n".join(chosen)
            sections.append(
                Section(
                    kind=kind,
                    lines=chosen,
                    priority=self.config.section_priorities.get(kind, 0.5),
                    relevance=section_relevance(text, terms, self.config.section_term_points),
                )
            )
        return sections

    def fit_sections(self, sections: list[Section], budget: int) -> tuple[str, list[SectionKind]]:
        """Greedily pack sections, best first, into ``budget`` characters."""
        ordered = sorted(sections, key=lambda s: -s.rank)
        parts: list[str] = []
        kinds: list[SectionKind] = []
        used = 0
        for section in ordered:
            text = section.text
            sep = len(SECTION_SEPARATOR) if parts else 0
            remaining = budget - used - sep
            if len(text) <= remaining:
                parts.append(text)
                kinds.append(section.kind)
                used += sep + len(text)
                continue
            if remaining > self.config.min_truncation_room:
                parts.append(truncate_lines(text, remaining))
                kinds.append(section.kind)
            break
        return SECTION_SEPARATOR.join(parts).rstrip(), kinds

    def optimize_content(
        self, content: str, path: str, terms: Iterable[str], budget: int
    ) -> ContextFile:
        sections = self.extract_sections(content, path, terms)
        text, kinds = self.fit_sections(sections, budget)
        return ContextFile(
            path=path,
            content=text,
            tokens=TokenEstimator.estimate(text, self.config.chars_per_token),
            characters=len(text),
            sections=kinds,
            original_size=len(content),
            budget_chars=budget,
        )

    def optimize_file(self, path: str, query: str, budget: int) -> ContextFile:
        """Optimize one file on disk. Unreadable files yield empty content."""
        try:
            content = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot read %s: %s", path, e)
            return ContextFile(path=path, budget_chars=budget)
        return self.optimize_content(content, path, normalize_query(query), budget)

    @staticmethod
    def _summary(context: OptimizedContext) -> str:
        if not context.files:
            return f'No relevant context found for query: "{context.query}"'
        top = context.files[0]
        return (
            f'Optimized context for "{context.query}": {len(context.files)} files, '
            f"{context.total_tokens} tokens. Top file: {top.rel_path or top.path} "
            f"(relevance: {top.relevance:g})"
        )
