"""Automatic addition of relevant files to the live conversation context.

The controller is either idle or cooling down. Cooldown is a gate on an
injected monotonic clock that starts after a successful auto-add; there is
no background timer. Successful additions are remembered per normalized
query so similar future queries can be answered proactively.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field

from ctxintel.config import AutoContextConfig, validated
from ctxintel.context.budget import TokenBudgetManager
from ctxintel.context.models import ContextFile, Message
from ctxintel.suggest.suggester import FileSuggester, FileSuggestion, SuggestOptions

logger = logging.getLogger("ctxintel.auto")

BUDGET_CATEGORY = "conversation"
HISTORY_MESSAGES = 3


class AutoAddOptions(BaseModel):
    """Per-call overrides for :meth:`AutoContextController.analyze_and_auto_add`.

    enabled:              override the configured on/off switch
    confidence_threshold: minimum task confidence (0-100) to add anything
    max_files:            most files to add in one call
    model:                model whose token limit sizes the added content
    """

    enabled: bool | None = None
    confidence_threshold: float | None = None
    max_files: int | None = None
    model: str = "default"


class AddedFile(BaseModel):
    path: str
    rel_path: str
    name: str
    relevance: float
    tokens: int


class AutoAddResult(BaseModel):
    auto_added: bool
    reason: str
    files_added: list[AddedFile] = Field(default_factory=list)
    task_type: str | None = None
    confidence: int | None = None


class MemoryItem(BaseModel):
    input: str
    timestamp: float
    kind: str = "user"  # "user" or "historical"


class LearnedFile(BaseModel):
    name: str
    relevance: float = 0.0
    frequency: int = 0


class LearnedPattern(BaseModel):
    task_type: str
    frequency: int = 0
    files: dict[str, LearnedFile] = Field(default_factory=dict)


class LearningSnapshot(BaseModel):
    patterns: dict[str, LearnedPattern] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    added_at: float
    query: str
    relevance: float
    auto_added: bool = True


class ProactiveSuggestion(BaseModel):
    path: str
    name: str
    confidence: int
    reason: str
    relevance: float


class AutoContextStats(BaseModel):
    files_tracked: int
    auto_added_files: int
    learned_patterns: int
    task_distribution: dict[str, int]
    memory_size: int
    last_auto_add: float | None


def query_key(query: str) -> str:
    """Sorted, de-duplicated words longer than 2 characters."""
    words = re.sub(r"[^\w\s]", " ", query.lower()).split()
    return " ".join(sorted({w for w in words if len(w) > 2}))


def jaccard(a: str, b: str) -> float:
    left, right = set(a.split()), set(b.split())
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


class AutoContextController:
    """Decides when a user utterance should pull files into context."""

    def __init__(
        self,
        suggester: FileSuggester | None = None,
        roots: list[str | Path] | None = None,
        config: AutoContextConfig | None = None,
        budget: TokenBudgetManager | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.suggester = suggester or FileSuggester()
        self.roots = list(roots or ["."])
        self.config = config or AutoContextConfig()
        self.budget = budget
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.RLock()
        self._last_auto_add: float | None = None
        self._history: dict[str, HistoryEntry] = {}
        self._patterns: dict[str, LearnedPattern] = {}
        self._memory: list[MemoryItem] = []

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def is_inspection(self, user_input: str) -> bool:
        text = user_input.lower()
        return any(k in text for k in self.config.inspection_keywords)

    def should_trigger(self, user_input: str) -> bool:
        """Inspection verbs always trigger; other verbs need a coding-flavoured sentence."""
        text = user_input.lower().strip()
        if not any(k in text for k in self.config.trigger_keywords):
            return False
        if self.is_inspection(text):
            return True
        if len(text.split()) < self.config.min_words:
            return False
        return any(k in text for k in self.config.coding_indicators)

    def in_cooldown(self) -> bool:
        with self._lock:
            if self._last_auto_add is None:
                return False
            return self._clock() - self._last_auto_add < self.config.cooldown_s

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def analyze_and_auto_add(
        self,
        user_input: str,
        file_context: dict[str, ContextFile],
        recent_messages: list[Message] | None = None,
        options: AutoAddOptions | None = None,
    ) -> AutoAddResult:
        """Possibly add files to ``file_context`` (in place) for this utterance."""
        options = options or AutoAddOptions()
        enabled = self.config.enabled if options.enabled is None else options.enabled
        threshold = (
            self.config.confidence_threshold
            if options.confidence_threshold is None
            else options.confidence_threshold
        )
        max_files = options.max_files or self.config.max_auto_add_files

        with self._lock:
            if not enabled:
                return AutoAddResult(auto_added=False, reason="auto-add disabled")
            if self.in_cooldown():
                return AutoAddResult(auto_added=False, reason="cooldown active")

            self._remember(user_input, recent_messages or [])
            if not self.should_trigger(user_input):
                return AutoAddResult(auto_added=False, reason="no trigger keywords")

            inspection = self.is_inspection(user_input)
            suggestions = self.suggester.suggest(
                user_input,
                self.roots,
                SuggestOptions(
                    max_suggestions=max_files * (4 if inspection else 2),
                    detail_level="detailed" if inspection else "standard",
                    model=options.model,
                ),
            )
            analysis = suggestions.analysis
            if not suggestions.suggestions:
                return AutoAddResult(
                    auto_added=False,
                    reason="no relevant files found",
                    task_type=analysis.type,
                    confidence=analysis.confidence,
                )

            if inspection:
                threshold = max(
                    self.config.inspection_threshold_floor,
                    threshold - self.config.inspection_threshold_drop,
                )
            candidates = [
                s for s in suggestions.suggestions
                if analysis.confidence >= threshold and s.path not in file_context
            ]
            if not candidates:
                return AutoAddResult(
                    auto_added=False,
                    reason="insufficient confidence or files already in context",
                    task_type=analysis.type,
                    confidence=analysis.confidence,
                )

            added = self._add_files(
                user_input, candidates[:max_files], file_context, options.model
            )
            if not added:
                return AutoAddResult(
                    auto_added=False,
                    reason="no suitable files to add",
                    task_type=analysis.type,
                    confidence=analysis.confidence,
                )

            self._last_auto_add = self._clock()
            self.learn(user_input, added, analysis.type)
            logger.info(
                "Auto-added %d files for %s task: %s",
                len(added), analysis.type, ", ".join(f.rel_path for f in added),
            )
            return AutoAddResult(
                auto_added=True,
                reason="relevant files automatically added to context",
                files_added=added,
                task_type=analysis.type,
                confidence=analysis.confidence,
            )

    def _add_files(
        self,
        user_input: str,
        picked: list[FileSuggestion],
        file_context: dict[str, ContextFile],
        model: str,
    ) -> list[AddedFile]:
        optimizer = self.suggester.optimizer
        budget_chars = optimizer.file_char_budget(len(picked), optimizer.token_limit_for(model))
        added: list[AddedFile] = []
        for suggestion in picked:
            cf = optimizer.optimize_file(suggestion.path, user_input, budget_chars)
            if cf.tokens == 0:
                continue
            if self.budget is not None:
                decision = self.budget.add(BUDGET_CATEGORY, cf.tokens, model)
                if not decision.allowed:
                    logger.info(
                        "Skipping %s: %d tokens over the %s budget",
                        suggestion.rel_path, decision.over_by, BUDGET_CATEGORY,
                    )
                    continue
                cf.category = BUDGET_CATEGORY
            cf.rel_path = suggestion.rel_path
            cf.language = suggestion.language
            cf.relevance = suggestion.score
            cf.added_at = self._wall_clock()
            file_context[suggestion.path] = cf
            self._history[suggestion.path] = HistoryEntry(
                added_at=self._clock(), query=user_input, relevance=suggestion.score
            )
            added.append(
                AddedFile(
                    path=suggestion.path,
                    rel_path=suggestion.rel_path,
                    name=suggestion.name,
                    relevance=suggestion.score,
                    tokens=cf.tokens,
                )
            )
        return added

    def _remember(self, user_input: str, recent_messages: list[Message]) -> None:
        now = self._clock()
        items = [*self._memory, MemoryItem(input=user_input, timestamp=now)]
        for message in recent_messages[-HISTORY_MESSAGES:]:
            if message.role == "user":
                items.append(MemoryItem(input=message.content, timestamp=now, kind="historical"))
        seen: set[str] = set()
        unique = []
        for item in items:
            if item.input not in seen:
                seen.add(item.input)
                unique.append(item)
        self._memory = unique[-self.config.memory_size:]

    @property
    def memory(self) -> list[MemoryItem]:
        return list(self._memory)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learn(self, query: str, added: list[AddedFile], task_type: str) -> None:
        key = query_key(query)
        with self._lock:
            pattern = self._patterns.setdefault(key, LearnedPattern(task_type=task_type))
            pattern.frequency += 1
            for f in added:
                entry = pattern.files.setdefault(
                    f.path, LearnedFile(name=f.name, relevance=f.relevance)
                )
                entry.frequency += 1

    def similar(self, a: str, b: str) -> bool:
        return jaccard(a, b) > self.config.similarity_threshold

    def get_proactive_suggestions(
        self, query: str, file_context: dict[str, ContextFile]
    ) -> list[ProactiveSuggestion]:
        key = query_key(query)
        found: list[ProactiveSuggestion] = []
        with self._lock:
            for pattern_key, pattern in self._patterns.items():
                if not self.similar(key, pattern_key):
                    continue
                for path, learned in pattern.files.items():
                    if path in file_context or learned.frequency < self.config.proactive_min_frequency:
                        continue
                    found.append(
                        ProactiveSuggestion(
                            path=path,
                            name=learned.name,
                            confidence=min(learned.frequency * 20, 80),
                            reason=f"Frequently used with similar queries ({learned.frequency} times)",
                            relevance=learned.relevance,
                        )
                    )
        found.sort(key=lambda s: -s.confidence)
        return found

    def statistics(self) -> AutoContextStats:
        with self._lock:
            distribution: dict[str, int] = {}
            for pattern in self._patterns.values():
                distribution[pattern.task_type] = distribution.get(pattern.task_type, 0) + pattern.frequency
            return AutoContextStats(
                files_tracked=len(self._history),
                auto_added_files=sum(1 for h in self._history.values() if h.auto_added),
                learned_patterns=len(self._patterns),
                task_distribution=distribution,
                memory_size=len(self._memory),
                last_auto_add=self._last_auto_add,
            )

    def clear_learning(self) -> None:
        with self._lock:
            self._history.clear()
            self._patterns.clear()
            self._memory = []
            self._last_auto_add = None

    def export_learning(self) -> dict:
        with self._lock:
            return LearningSnapshot(patterns=self._patterns).model_dump(mode="json")

    def import_learning(self, data: dict) -> int:
        """Merge exported patterns in, replacing same-key entries. Returns the count.

        Raises:
            ConfigError: the data is not an exported learning snapshot.
        """
        snapshot = validated(LearningSnapshot, data)
        with self._lock:
            self._patterns.update(snapshot.patterns)
        return len(snapshot.patterns)
