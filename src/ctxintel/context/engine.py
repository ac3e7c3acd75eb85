"""The context engine: one object wiring every service for a project session."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from ctxintel.config import ProjectConfig, load_config
from ctxintel.context.auto import AutoAddOptions, AutoAddResult, AutoContextController
from ctxintel.context.budget import TokenBudgetManager
from ctxintel.context.models import (
    BudgetDecision,
    BudgetStatus,
    ContextAnalysis,
    ContextFile,
    Message,
    OptimizedContext,
    PruneResult,
    ScoringResult,
    SessionContext,
    TokenEstimator,
)
from ctxintel.context.optimizer import ContextWindowOptimizer, OptimizeOptions
from ctxintel.context.scorer import RelevanceScorer, ScoreOptions
from ctxintel.exceptions import ExportFormatError, ParserError
from ctxintel.graph.builder import BuildResult, DependencyGraphBuilder, GraphOptions
from ctxintel.graph.dependency_graph import EXPORT_FORMATS, DependencyGraph
from ctxintel.parser.core import SymbolSource
from ctxintel.suggest.classifier import TaskClassifier
from ctxintel.suggest.suggester import FileSuggester, SuggestionResult, SuggestOptions

logger = logging.getLogger("ctxintel.engine")


class ContextEngine:
    """Facade over parsing, graph, scoring, optimization, budget and auto-context.

    Every collaborator can be injected; anything not given is built from
    ``config``. The engine owns one :class:`SessionContext` (messages plus the
    live file map) that the budget and auto-context operations default to.
    """

    def __init__(
        self,
        config: ProjectConfig | None = None,
        root: str | Path | None = None,
        symbol_source: SymbolSource | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ProjectConfig()
        self.root = Path(root or self.config.root_path).resolve()
        self.symbol_source = symbol_source or SymbolSource()
        self.scorer = RelevanceScorer(
            self.config.scoring, self.config.indexer, self.symbol_source, clock
        )
        self.optimizer = ContextWindowOptimizer(
            self.scorer, self.config.window, self.config.model_limits
        )
        self.suggester = FileSuggester(self.scorer, TaskClassifier(), self.optimizer)
        self.budget = TokenBudgetManager(
            self.config.budget, self.config.model, self.config.model_limits, clock
        )
        self.auto = AutoContextController(
            self.suggester, [self.root], self.config.auto_context, self.budget, monotonic,
            wall_clock=clock,
        )
        self.session = SessionContext()
        self.graph: DependencyGraph | None = None
        self._clock = clock

    @classmethod
    def for_project(cls, root: str | Path, **kwargs) -> "ContextEngine":
        """Engine configured from ``<root>/.ctxintel/config.json`` (or defaults)."""
        root = Path(root).resolve()
        return cls(load_config(root), root=root, **kwargs)

    @property
    def model(self) -> str:
        return self.config.model

    def _roots(
        self, roots: str | Path | Iterable[str | Path] | None
    ) -> str | Path | Iterable[str | Path]:
        return self.root if roots is None else roots

    # ------------------------------------------------------------------
    # Ranking and context
    # ------------------------------------------------------------------

    def score_files(
        self,
        query: str,
        roots: str | Path | Iterable[str | Path] | None = None,
        options: ScoreOptions | None = None,
    ) -> ScoringResult:
        options = options or ScoreOptions(
            max_files=self.config.scoring.max_files,
            min_score=self.config.scoring.min_score,
            root=str(self.root),
        )
        return self.scorer.score_directory(query, self._roots(roots), options)

    def suggest_files(
        self,
        query: str,
        roots: str | Path | Iterable[str | Path] | None = None,
        options: SuggestOptions | None = None,
    ) -> SuggestionResult:
        options = options or SuggestOptions(model=self.model, root=str(self.root))
        return self.suggester.suggest(query, self._roots(roots), options)

    def optimize_context(
        self,
        query: str,
        roots: str | Path | Iterable[str | Path] | None = None,
        options: OptimizeOptions | None = None,
    ) -> OptimizedContext:
        options = options or OptimizeOptions(
            model=self.model, max_files=self.config.window.max_files, root=str(self.root)
        )
        return self.optimizer.optimize(query, self._roots(roots), options)

    def analyze_and_auto_add(
        self,
        user_input: str,
        file_context: dict[str, ContextFile] | None = None,
        recent_messages: list[Message] | None = None,
        options: AutoAddOptions | None = None,
    ) -> AutoAddResult:
        """Run the auto-context policy; defaults to the engine's own session."""
        return self.auto.analyze_and_auto_add(
            user_input,
            self.session.files if file_context is None else file_context,
            self.session.messages if recent_messages is None else recent_messages,
            options or AutoAddOptions(model=self.model),
        )

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def can_add_to_budget(self, category: str, tokens: int, model: str | None = None) -> BudgetDecision:
        return self.budget.can_add(category, tokens, model)

    def add_to_budget(self, category: str, tokens: int, model: str | None = None) -> BudgetDecision:
        return self.budget.add(category, tokens, model)

    def remove_from_budget(self, category: str, tokens: int) -> int:
        return self.budget.remove(category, tokens)

    def get_budget_status(self, model: str | None = None) -> BudgetStatus:
        return self.budget.status(model)

    def analyze_context(
        self,
        messages: list[Message] | None = None,
        files: dict[str, ContextFile] | None = None,
        model: str | None = None,
    ) -> ContextAnalysis:
        return self.budget.analyze(
            self.session.messages if messages is None else messages,
            self.session.files if files is None else files,
            model,
        )

    def prune_context(self, strategy: str = "balanced", model: str | None = None) -> PruneResult:
        return self.budget.prune(self.session.messages, self.session.files, model, strategy)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def add_message(self, role: str, content: str) -> Message:
        message = Message(role=role, content=content, timestamp=self._clock())
        self.session.messages.append(message)
        for context_file in self.session.files.values():
            name = Path(context_file.path).name
            if name in content or context_file.path in content:
                context_file.last_referenced = message.timestamp
        return message

    def add_file(
        self, path: str | Path, category: str = "essentials", model: str | None = None
    ) -> BudgetDecision:
        """Put a whole file into the session, charging its tokens to ``category``.

        Raises:
            ParserError: the file cannot be read (kind ``io``).
        """
        resolved = Path(path).resolve()
        try:
            content = resolved.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ParserError(str(resolved), e.strerror or str(e), kind="io") from e

        key = str(resolved)
        tokens = TokenEstimator.estimate(content, self.config.window.chars_per_token)
        with self.budget.lock:
            # The old copy's tokens count as released while the new charge is checked.
            previous = self.session.files.get(key)
            if previous is not None:
                self.remove_file(key)
            decision = self.budget.add(category, tokens, model)
            if decision.allowed:
                self.session.files[key] = ContextFile(
                    path=key,
                    rel_path=_relative(key, self.root),
                    content=content,
                    tokens=tokens,
                    characters=len(content),
                    original_size=len(content),
                    category=category,
                    added_at=self._clock(),
                )
                return decision

            logger.info(
                "Not adding %s: %d tokens over the %s budget", key, decision.over_by, category
            )
            if previous is not None:
                self.session.files[key] = previous
                if previous.category in self.budget.categories:
                    self.budget.add(previous.category, previous.tokens, model)
        return decision

    def remove_file(self, path: str | Path) -> bool:
        context_file = self.session.files.pop(str(Path(path).resolve()), None)
        if context_file is None:
            return False
        if context_file.category in self.budget.categories:
            self.budget.remove(context_file.category, context_file.tokens)
        return True

    def reset_session(self) -> None:
        self.session = SessionContext()
        self.budget.reset()
        self.auto.clear_learning()

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------

    def build_dependency_graph(
        self, paths: str | Path | Iterable[str | Path] | None = None, options: GraphOptions | None = None
    ) -> BuildResult:
        options = options or GraphOptions()
        builder = DependencyGraphBuilder(
            self.config.indexer, self.symbol_source, options.root or self.root
        )
        result = builder.build_from_roots(self._roots(paths))
        if options.detect_cycles:
            result.cycles = result.graph.find_cycles()
        self.graph = result.graph
        return result

    def export_graph(self, fmt: str, relative: bool = True) -> str:
        """Serialize the last built graph, building it over the root if needed.

        Raises:
            ExportFormatError: ``fmt`` is not json, dot or csv.
        """
        if fmt.lower() not in EXPORT_FORMATS:
            raise ExportFormatError(fmt, EXPORT_FORMATS)
        graph = self.graph if self.graph is not None else self.build_dependency_graph().graph
        return graph.export(fmt, relative_to=str(self.root) if relative else None)


def _relative(path: str, root: Path) -> str:
    try:
        return str(Path(path).relative_to(root))
    except ValueError:
        return path
