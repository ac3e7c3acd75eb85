"""Relevance scoring, context window optimization and token budgets.

The auto-context controller and the engine facade depend on
:mod:`ctxintel.suggest`; import them from :mod:`ctxintel.context.auto` and
:mod:`ctxintel.context.engine`.
"""

from ctxintel.context.models import (
    BudgetDecision,
    BudgetStatus,
    ContextAnalysis,
    ContextFile,
    Message,
    OptimizedContext,
    PruneResult,
    RelevanceScore,
    ScoredFile,
    ScoringResult,
    SelectionStrategy,
    SessionContext,
    TokenEstimator,
)
from ctxintel.context.scorer import RelevanceScorer, ScoreOptions, normalize_query
from ctxintel.context.optimizer import ContextWindowOptimizer, OptimizeOptions
from ctxintel.context.budget import TokenBudgetManager

__all__ = [
    "BudgetDecision",
    "BudgetStatus",
    "ContextAnalysis",
    "ContextFile",
    "ContextWindowOptimizer",
    "Message",
    "OptimizeOptions",
    "OptimizedContext",
    "PruneResult",
    "RelevanceScore",
    "RelevanceScorer",
    "ScoreOptions",
    "ScoredFile",
    "ScoringResult",
    "SelectionStrategy",
    "SessionContext",
    "TokenBudgetManager",
    "TokenEstimator",
    "normalize_query",
]
