"""Token budget accounting and context pruning.

Capacities are fixed fractions of a model's token limit, one per named
category. Usage is tracked in tokens and is independent of the model, so the
same counters can be checked against different limits. Every mutation is
serialized through one re-entrant lock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from pathlib import PurePath

from pydantic import BaseModel

from ctxintel.config import MODEL_LIMITS, BudgetConfig, token_limit_for
from ctxintel.context.models import (
    BudgetDecision,
    BudgetLevel,
    BudgetStatus,
    CategoryStatus,
    ContextAnalysis,
    ContextFile,
    Message,
    PrunedFile,
    PruneResult,
    TokenEstimator,
)
from ctxintel.exceptions import ConfigError

logger = logging.getLogger("ctxintel.budget")

DEFAULT_STRATEGY = "balanced"

CONFIG_EXTENSIONS = {"json", "config", "conf", "yml", "yaml", "toml", "ini"}
DOC_EXTENSIONS = {"md", "txt", "rst", "adoc"}
SOURCE_EXTENSIONS = {"js", "ts", "jsx", "tsx", "py", "java", "cpp", "c", "go", "rs"}
TYPE_PRIORITY = {"config": 2, "docs": 3, "test": 4, "source": 6, "other": 5}
MAX_PRIORITY = 10.0

_RECENT_MESSAGES = 10
_RECENT_WORDS = 20


class PruneStatistics(BaseModel):
    prunings: int = 0
    tokens_removed: int = 0
    files_pruned: int = 0
    last_pruning: float | None = None


def file_category(path: str) -> str:
    """Classify a path as config, docs, test, source or other."""
    normalized = path.replace("\\", "/")
    ext = normalized.rsplit(".", 1)[-1].lower() if "." in normalized else ""
    if ext in CONFIG_EXTENSIONS:
        return "config"
    if ext in DOC_EXTENSIONS:
        return "docs"
    if ".test." in normalized or ".spec." in normalized or "/test" in "/" + normalized:
        return "test"
    if ext in SOURCE_EXTENSIONS:
        return "source"
    return "other"


def prune_reason(priority: float) -> str:
    if priority >= 8:
        return "low relevance to current conversation"
    if priority >= 6:
        return "old context, not recently referenced"
    if priority >= 4:
        return "large file, partial relevance"
    return "optimization candidate"


def recent_words(messages: list[Message]) -> list[str]:
    """The first words longer than 3 characters of the most recent messages."""
    text = " ".join(m.content for m in messages[-_RECENT_MESSAGES:]).lower()
    return [w for w in text.split() if len(w) > 3][:_RECENT_WORDS]


def last_reference(path: str, messages: list[Message]) -> float | None:
    """Timestamp of the latest message that mentions the file, if any."""
    name = PurePath(path.replace("\\", "/")).name
    for message in reversed(messages):
        if name in message.content or path in message.content:
            return message.timestamp
    return None


class TokenBudgetManager:
    """Per-category token accounting plus pruning of the live file context."""

    def __init__(
        self,
        config: BudgetConfig | None = None,
        model: str = "default",
        model_limits: dict[str, int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or BudgetConfig()
        self.model = model
        self.model_limits = dict(model_limits or MODEL_LIMITS)
        self._clock = clock
        self._lock = threading.RLock()
        self._usage: dict[str, int] = {name: 0 for name in self.config.categories}
        self._stats = PruneStatistics()

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    @property
    def lock(self) -> threading.RLock:
        """The writer lock, for callers that need several calls to be atomic."""
        return self._lock

    @property
    def categories(self) -> list[str]:
        return list(self.config.categories)

    @property
    def strategies(self) -> dict[str, float]:
        return dict(self.config.strategies)

    def token_limit(self, model: str | None = None) -> int:
        return token_limit_for(model or self.model, self.model_limits)

    def capacity(self, category: str, model: str | None = None) -> int:
        self._check_category(category)
        return math.floor(self.token_limit(model) * self.config.categories[category])

    def usage(self, category: str) -> int:
        self._check_category(category)
        with self._lock:
            return self._usage[category]

    def level(self, utilization: float) -> BudgetLevel:
        if utilization >= self.config.critical_threshold:
            return "critical"
        if utilization >= self.config.warning_threshold:
            return "warning"
        if utilization >= self.config.moderate_threshold:
            return "moderate"
        return "healthy"

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def can_add(self, category: str, tokens: int, model: str | None = None) -> BudgetDecision:
        """Check whether ``tokens`` fit in ``category`` without changing usage."""
        self._check_tokens(tokens)
        capacity = self.capacity(category, model)
        with self._lock:
            current = self._usage[category]
        projected = current + tokens
        return BudgetDecision(
            allowed=projected <= capacity,
            category=category,
            current=current,
            requested=tokens,
            projected=projected,
            capacity=capacity,
            available=capacity - current,
            over_by=max(0, projected - capacity),
        )

    def add(self, category: str, tokens: int, model: str | None = None) -> BudgetDecision:
        """Charge ``tokens`` to ``category`` when they fit.

        A rejected request leaves usage unchanged; the returned decision
        carries ``allowed=False`` and how far over capacity it would go.
        """
        with self._lock:
            decision = self.can_add(category, tokens, model)
            if decision.allowed:
                self._usage[category] += tokens
            else:
                logger.info(
                    "Budget rejected %d tokens for %s (over by %d)",
                    tokens, category, decision.over_by,
                )
            return decision

    def remove(self, category: str, tokens: int) -> int:
        """Release tokens from ``category``, flooring at zero. Returns new usage."""
        self._check_category(category)
        self._check_tokens(tokens)
        with self._lock:
            self._usage[category] = max(0, self._usage[category] - tokens)
            return self._usage[category]

    def reset(self) -> None:
        with self._lock:
            self._usage = {name: 0 for name in self.config.categories}
            self._stats = PruneStatistics()

    def status(self, model: str | None = None) -> BudgetStatus:
        limit = self.token_limit(model)
        with self._lock:
            usage = dict(self._usage)
        categories = []
        for name in self.config.categories:
            capacity = self.capacity(name, model)
            used = usage[name]
            categories.append(
                CategoryStatus(
                    name=name,
                    capacity=capacity,
                    used=used,
                    available=capacity - used,
                    utilization=used / capacity if capacity else 0.0,
                )
            )
        total_used = sum(usage.values())
        utilization = total_used / limit if limit else 0.0
        return BudgetStatus(
            model=model or self.model,
            token_limit=limit,
            categories=categories,
            total_capacity=sum(c.capacity for c in categories),
            total_used=total_used,
            remaining=limit - total_used,
            utilization=utilization,
            status=self.level(utilization),
        )

    # ------------------------------------------------------------------
    # Analysis and pruning
    # ------------------------------------------------------------------

    def analyze(
        self,
        messages: list[Message],
        files: dict[str, ContextFile],
        model: str | None = None,
    ) -> ContextAnalysis:
        """Measure how full the context window is for a conversation."""
        limit = self.token_limit(model)
        message_tokens = sum(TokenEstimator.estimate(m.content) for m in messages)
        file_tokens = sum(_file_tokens(f) for f in files.values())
        current = message_tokens + file_tokens
        utilization = current / limit if limit else 0.0
        status = self.level(utilization)

        recommendations: list[str] = []
        if status == "critical":
            recommendations.append(
                f"Context is at critical levels, pruning required (strategy: {DEFAULT_STRATEGY})"
            )
        elif status == "warning":
            recommendations.append("Context is approaching limits, consider pruning")
        if files:
            recommendations.append("Consider optimizing file content in context")

        return ContextAnalysis(
            model=model or self.model,
            token_limit=limit,
            message_tokens=message_tokens,
            file_tokens=file_tokens,
            current_tokens=current,
            utilization=utilization,
            status=status,
            recommendations=recommendations,
        )

    def pruning_priority(
        self, context_file: ContextFile, words: list[str], messages: list[Message] | None = None
    ) -> float:
        """Score 0-10; higher means the file is a better candidate for eviction."""
        category = file_category(context_file.rel_path or context_file.path)
        priority = float(TYPE_PRIORITY[category])

        content = context_file.content.lower()
        hits = sum(1 for word in words if word in content)
        priority += max(0.0, 5 - hits * 0.5)

        size_kb = len(context_file.content) / 1024
        if size_kb > 50:
            priority += 2
        elif size_kb > 20:
            priority += 1

        age = self._clock() - self._last_touched(context_file, messages or [])
        if age > self.config.max_context_age_s:
            priority += 2
        elif age > self.config.max_context_age_s / 2:
            priority += 1

        return min(priority, MAX_PRIORITY)

    def prune(
        self,
        messages: list[Message],
        files: dict[str, ContextFile],
        model: str | None = None,
        strategy: str = DEFAULT_STRATEGY,
    ) -> PruneResult:
        """Evict files from ``files`` (in place) until the strategy target is met.

        Files go in descending pruning priority, at most ``max_prune_files``
        per call. Nothing to prune is reported with ``pruned=False``.
        """
        target = self._strategy_target(strategy)
        with self._lock:
            before = self.analyze(messages, files, model)
            target_tokens = math.floor(before.token_limit * target)
            gap = before.current_tokens - target_tokens

            if not files:
                return self._unchanged(before, strategy, target, "no prunable content found")
            if gap <= 0:
                return self._unchanged(before, strategy, target, "utilization already within target")

            words = recent_words(messages)
            ranked = sorted(
                (
                    (self.pruning_priority(f, words, messages), path, f)
                    for path, f in files.items()
                ),
                key=lambda item: -item[0],
            )

            pruned: list[PrunedFile] = []
            removed = 0
            for priority, path, context_file in ranked:
                if removed >= gap or len(pruned) >= self.config.max_prune_files:
                    break
                tokens = _file_tokens(context_file)
                del files[path]
                if context_file.category in self._usage:
                    self.remove(context_file.category, tokens)
                removed += tokens
                pruned.append(
                    PrunedFile(path=path, tokens=tokens, priority=priority, reason=prune_reason(priority))
                )
                logger.info("Pruned %s (%d tokens, priority %.1f)", path, tokens, priority)

            after = self.analyze(messages, files, model)
            self._stats.prunings += 1
            self._stats.tokens_removed += removed
            self._stats.files_pruned += len(pruned)
            self._stats.last_pruning = self._clock()

        return PruneResult(
            pruned=True,
            reason=f"pruned {len(pruned)} files",
            strategy=strategy,
            target_utilization=target,
            tokens_before=before.current_tokens,
            tokens_after=after.current_tokens,
            utilization_before=before.utilization,
            utilization_after=after.utilization,
            target_met=after.current_tokens <= target_tokens,
            pruned_files=pruned,
        )

    def auto_prune(
        self,
        messages: list[Message],
        files: dict[str, ContextFile],
        model: str | None = None,
        strategy: str = DEFAULT_STRATEGY,
    ) -> PruneResult:
        """Prune only when the context is at critical utilization."""
        target = self._strategy_target(strategy)
        analysis = self.analyze(messages, files, model)
        if analysis.status != "critical":
            return self._unchanged(analysis, strategy, target, "pruning not needed")
        return self.prune(messages, files, model, strategy)

    def statistics(self) -> PruneStatistics:
        with self._lock:
            return self._stats.model_copy()

    # ------------------------------------------------------------------

    def _check_category(self, category: str) -> None:
        if category not in self.config.categories:
            choices = ", ".join(self.config.categories)
            raise ConfigError(f"Unknown budget category '{category}'. Choose one of: {choices}")

    @staticmethod
    def _check_tokens(tokens: int) -> None:
        if tokens < 0:
            raise ValueError(f"Token count must be non-negative, got {tokens}")

    def _strategy_target(self, strategy: str) -> float:
        if strategy not in self.config.strategies:
            choices = ", ".join(self.config.strategies)
            raise ConfigError(f"Unknown pruning strategy '{strategy}'. Choose one of: {choices}")
        return self.config.strategies[strategy]

    @staticmethod
    def _last_touched(context_file: ContextFile, messages: list[Message]) -> float:
        touched = context_file.added_at
        if context_file.last_referenced is not None:
            touched = max(touched, context_file.last_referenced)
        mentioned = last_reference(context_file.path, messages)
        if mentioned is not None:
            touched = max(touched, mentioned)
        return touched

    @staticmethod
    def _unchanged(
        analysis: ContextAnalysis, strategy: str, target: float, reason: str
    ) -> PruneResult:
        return PruneResult(
            pruned=False,
            reason=reason,
            strategy=strategy,
            target_utilization=target,
            tokens_before=analysis.current_tokens,
            tokens_after=analysis.current_tokens,
            utilization_before=analysis.utilization,
            utilization_after=analysis.utilization,
            target_met=analysis.utilization <= target,
            pruned_files=[],
        )


def _file_tokens(context_file: ContextFile) -> int:
    return context_file.tokens or TokenEstimator.estimate(context_file.content)
