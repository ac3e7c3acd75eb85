"""Data models for relevance scoring, context optimization and token budgets."""

from __future__ import annotations

import math
import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from ctxintel.parser.models import FileError

SectionKind = Literal["imports", "exports", "signatures", "comments", "implementation"]
BudgetLevel = Literal["healthy", "moderate", "warning", "critical"]


class SelectionStrategy(str, Enum):
    """How the optimizer picks files before extracting their content."""

    DEPTH_FIRST = "depth-first"  # top-N by relevance
    DIVERSITY_FIRST = "diversity-first"  # top 3, then one per relevance factor


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------

class RelevanceScore(BaseModel):
    """Named subscores for one (file, query) pair plus their weighted total."""

    symbol_matches: float = 0.0
    keyword_matches: float = 0.0
    dependency_score: float = 0.0
    path_score: float = 0.0
    type_score: float = 0.0
    recency_score: float = 0.0
    density_bonus: float = 0.0
    total: float = 0.0
    matched_symbols: list[str] = Field(default_factory=list)
    factors: list[str] = Field(default_factory=list)  # human-readable explanation


class ScoredFile(BaseModel):
    path: str
    rel_path: str
    language: str
    score: RelevanceScore

    @property
    def name(self) -> str:
        return self.rel_path.replace("\\", "/").rsplit("/", 1)[-1]


class ScoringResult(BaseModel):
    terms: list[str] = Field(default_factory=list)
    ranked: list[ScoredFile] = Field(default_factory=list)
    errors: list[FileError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Context window
# ---------------------------------------------------------------------------

class Section(BaseModel):
    """A contiguous-by-kind slice of a file's lines."""

    kind: SectionKind
    lines: list[str]
    priority: float
    relevance: float = 0.0

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def rank(self) -> float:
        return self.priority * (1 + self.relevance * 0.1)


class ContextFile(BaseModel):
    """A file selected into the live context, possibly section-truncated."""

    path: str
    rel_path: str = ""
    language: str = "unknown"
    content: str = ""
    tokens: int = 0
    characters: int = 0
    relevance: float = 0.0
    sections: list[SectionKind] = Field(default_factory=list)
    original_size: int = 0
    budget_chars: int = 0
    category: str | None = None  # budget category the tokens are charged to
    added_at: float = Field(default_factory=time.time)
    last_referenced: float | None = None


class OptimizedContext(BaseModel):
    query: str
    model: str = "default"
    strategy: SelectionStrategy = SelectionStrategy.DIVERSITY_FIRST
    token_limit: int = 0
    max_files: int = 0
    candidate_count: int = 0
    files: list[ContextFile] = Field(default_factory=list)
    total_tokens: int = 0
    total_characters: int = 0
    utilization_pct: float = 0.0
    summary: str = ""
    errors: list[FileError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Session and budget
# ---------------------------------------------------------------------------

class Message(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: float = Field(default_factory=time.time)


class BudgetDecision(BaseModel):
    """Answer to "may these tokens be charged to this category?".

    Over-capacity requests are reported here with ``allowed=False``; the
    accounting API never raises for them.
    """

    allowed: bool
    category: str
    current: int
    requested: int
    projected: int
    capacity: int
    available: int
    over_by: int = 0


class CategoryStatus(BaseModel):
    name: str
    capacity: int
    used: int
    available: int
    utilization: float


class BudgetStatus(BaseModel):
    model: str
    token_limit: int
    categories: list[CategoryStatus] = Field(default_factory=list)
    total_capacity: int = 0
    total_used: int = 0
    remaining: int = 0
    utilization: float = 0.0
    status: BudgetLevel = "healthy"


class ContextAnalysis(BaseModel):
    model: str
    token_limit: int
    message_tokens: int
    file_tokens: int
    current_tokens: int
    utilization: float
    status: BudgetLevel
    recommendations: list[str] = Field(default_factory=list)


class PrunedFile(BaseModel):
    path: str
    tokens: int
    priority: float
    reason: str


class PruneResult(BaseModel):
    pruned: bool
    reason: str
    strategy: str
    target_utilization: float
    tokens_before: int
    tokens_after: int
    utilization_before: float
    utilization_after: float
    target_met: bool
    pruned_files: list[PrunedFile] = Field(default_factory=list)

    @property
    def tokens_removed(self) -> int:
        return self.tokens_before - self.tokens_after


class SessionContext(BaseModel):
    """Ordered message list plus the live file-context map."""

    messages: list[Message] = Field(default_factory=list)
    files: dict[str, ContextFile] = Field(default_factory=dict)

    def message_tokens(self) -> int:
        return sum(TokenEstimator.estimate(m.content) for m in self.messages)

    def file_tokens(self) -> int:
        return sum(f.tokens for f in self.files.values())

    def estimate_tokens(self) -> int:
        return self.message_tokens() + self.file_tokens()


class TokenEstimator:
    """Estimate token counts for text."""

    # Rough heuristic: 1 token ≈ 4 characters for code
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str, chars_per_token: float | None = None) -> int:
        """Estimate token count for a string. Empty text is zero tokens."""
        if not text:
            return 0
        return math.ceil(len(text) / (chars_per_token or cls.CHARS_PER_TOKEN))

    @classmethod
    def chars_for(cls, tokens: int, chars_per_token: float | None = None) -> int:
        return int(tokens * (chars_per_token or cls.CHARS_PER_TOKEN))
