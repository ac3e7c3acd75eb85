"""Task-aware file suggestions built on relevance scoring."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from ctxintel.context.models import ScoredFile, SectionKind
from ctxintel.context.optimizer import ContextWindowOptimizer
from ctxintel.context.scorer import RelevanceScorer, ScoreOptions
from ctxintel.parser.models import FileError
from ctxintel.suggest.classifier import TaskAnalysis, TaskClassifier

logger = logging.getLogger("ctxintel.suggest")

# Multipliers per (task type, file category); missing entries mean 1.0
TASK_FILE_WEIGHTS: dict[str, dict[str, float]] = {
    "bugfix": {"test": 1.5, "source": 1.2, "config": 0.8, "docs": 0.5},
    "feature": {"source": 1.3, "test": 1.2, "config": 1.0, "docs": 0.8},
    "refactor": {"source": 1.4, "test": 1.3, "docs": 0.6, "config": 0.7},
    "test": {"test": 1.5, "source": 1.2, "config": 0.8, "docs": 0.6},
    "config": {"config": 1.4, "source": 0.9, "docs": 0.7, "test": 0.8},
    "performance": {"source": 1.3, "config": 0.9, "test": 1.0, "docs": 0.5},
    "security": {"source": 1.3, "config": 1.1, "test": 1.1, "docs": 0.6},
    "documentation": {"docs": 1.5, "source": 0.9, "config": 0.6, "test": 0.6},
}

ACTIONS: dict[str, dict[str, str]] = {
    "bugfix": {
        "test": "Examine test cases and error scenarios",
        "source": "Check implementation and error handling",
        "config": "Verify configuration settings",
    },
    "feature": {
        "source": "Implement new functionality",
        "test": "Add corresponding tests",
        "config": "Update configuration if needed",
    },
    "refactor": {
        "source": "Restructure and optimize code",
        "test": "Update tests for new structure",
        "docs": "Update documentation",
    },
    "test": {
        "test": "Write or modify test cases",
        "source": "Understand code under test",
    },
    "config": {
        "config": "Modify configuration files",
        "source": "Update code using new config",
    },
}
DEFAULT_ACTION = "Review and potentially modify"

TASK_ADVICE: dict[str, list[str]] = {
    "bugfix": [
        "Focus on understanding the bug before making changes",
        "Run existing tests to establish baseline behavior",
    ],
    "feature": [
        "Plan the feature implementation and required changes",
        "Consider updating documentation and examples",
    ],
    "refactor": [
        "Ensure comprehensive test coverage before refactoring",
        "Consider performance implications of changes",
    ],
    "test": [
        "Follow testing best practices and naming conventions",
        "Aim for meaningful test coverage and edge cases",
    ],
    "security": [
        "Consult security best practices and guidelines",
        "Consider security implications and attack vectors",
    ],
    "performance": [
        "Profile current performance before optimization",
        "Measure improvements and ensure no regressions",
    ],
}

EMPTY_GUIDANCE = [
    "No specific files identified. Consider:",
    "- Exploring the codebase structure manually",
    "- Providing more specific task details",
    "- Checking if the task relates to existing functionality",
]

DetailLevel = Literal["brief", "standard", "detailed"]


def categorize_file(path: str) -> str:
    """Classify a path as test, config, docs, source or other by name."""
    name = path.replace("\\", "/").lower()
    if ".test." in name or ".spec." in name or "/test" in "/" + name:
        return "test"
    if any(k in name for k in ("config", "package.json", "webpack", "babel", "eslint")):
        return "config"
    if "readme" in name or name.endswith(".md") or "doc" in name or "guide" in name:
        return "docs"
    if name.endswith((".js", ".ts", ".jsx", ".tsx", ".py")):
        return "source"
    return "other"


def normalize_task(query: str) -> str:
    text = re.sub(r"[^\w\s\-]", " ", query.lower())
    return re.sub(r"\s+", " ", text).strip()


def relevance_level(score: float) -> str:
    if score > 100:
        return "excellent"
    if score > 75:
        return "very_good"
    if score > 50:
        return "good"
    if score > 25:
        return "fair"
    return "poor"


def suggestion_priority(score: float, rank: int) -> str:
    if rank == 1 and score > 80:
        return "critical"
    if rank <= 3 and score > 50:
        return "high"
    if rank <= 5 and score > 30:
        return "medium"
    if score > 15:
        return "low"
    return "optional"


class SuggestOptions(BaseModel):
    """Options for :meth:`FileSuggester.suggest`.

    max_suggestions:      most suggestions to return
    task_type:            skip classification and use this task type
    model:                model whose token limit sizes detailed previews
    detail_level:         ``detailed`` adds optimized token counts and sections
    include_dependencies: use the dependency graph while scoring
    root:                 directory paths are shown relative to
    """

    max_suggestions: int = 10
    task_type: str | None = None
    model: str = "default"
    detail_level: DetailLevel = "standard"
    include_dependencies: bool = True
    root: str | None = None


class FileSuggestion(BaseModel):
    rank: int
    path: str
    rel_path: str
    name: str
    language: str
    category: str
    score: int
    base_score: float
    multiplier: float
    level: str
    priority: str
    factors: list[str] = Field(default_factory=list)
    reasoning: str
    action: str
    tokens: int | None = None
    sections: list[SectionKind] | None = None


class SuggestionResult(BaseModel):
    query: str
    normalized: str
    analysis: TaskAnalysis
    suggestions: list[FileSuggestion] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    files_analyzed: int = 0
    errors: list[FileError] = Field(default_factory=list)


class FileSuggester:
    """Ranks files for a coding task and explains each pick."""

    def __init__(
        self,
        scorer: RelevanceScorer | None = None,
        classifier: TaskClassifier | None = None,
        optimizer: ContextWindowOptimizer | None = None,
    ) -> None:
        self.scorer = scorer or RelevanceScorer()
        self.classifier = classifier or TaskClassifier()
        self.optimizer = optimizer or ContextWindowOptimizer(self.scorer)

    def suggest(
        self,
        query: str,
        roots: str | Path | Iterable[str | Path],
        options: SuggestOptions | None = None,
    ) -> SuggestionResult:
        options = options or SuggestOptions()
        analysis = self.classifier.classify(query, options.task_type)
        logger.debug("Task analysis: %s (%d%% confidence)", analysis.type, analysis.confidence)

        scoring = self.scorer.score_directory(
            query,
            roots,
            ScoreOptions(
                max_files=options.max_suggestions * 2,
                min_score=1,
                include_dependencies=options.include_dependencies,
                root=options.root,
            ),
        )
        result = SuggestionResult(
            query=query,
            normalized=normalize_task(query),
            analysis=analysis,
            files_analyzed=len(scoring.ranked),
            errors=scoring.errors,
        )
        if not scoring.ranked:
            result.recommendations = list(EMPTY_GUIDANCE)
            return result

        weighted = self.apply_task_weighting(scoring.ranked, analysis)
        picked = weighted[: options.max_suggestions]
        budget = self.optimizer.file_char_budget(
            len(picked), self.optimizer.token_limit_for(options.model)
        )
        for rank, (candidate, score, multiplier) in enumerate(picked, start=1):
            suggestion = self._suggestion(candidate, score, multiplier, analysis, rank)
            if options.detail_level == "detailed":
                preview = self.optimizer.optimize_file(candidate.path, query, budget)
                suggestion.tokens = preview.tokens
                suggestion.sections = preview.sections
            result.suggestions.append(suggestion)

        result.recommendations = self.recommendations(result.suggestions, analysis)
        return result

    def weight_for(self, candidate: ScoredFile, analysis: TaskAnalysis) -> float:
        category = categorize_file(candidate.rel_path)
        weight = TASK_FILE_WEIGHTS.get(analysis.type, {}).get(category, 1.0)
        name = candidate.name.lower()
        for keyword in analysis.keywords:
            if keyword.lower() in name:
                weight *= 1.2
        return weight * (0.8 + analysis.confidence / 100 * 0.4)

    def apply_task_weighting(
        self, ranked: list[ScoredFile], analysis: TaskAnalysis
    ) -> list[tuple[ScoredFile, int, float]]:
        """Re-rank scored files by task-weighted score (stable on ties)."""
        weighted = []
        for candidate in ranked:
            multiplier = self.weight_for(candidate, analysis)
            weighted.append((candidate, round(candidate.score.total * multiplier), multiplier))
        weighted.sort(key=lambda item: -item[1])
        return weighted

    def _suggestion(
        self,
        candidate: ScoredFile,
        score: int,
        multiplier: float,
        analysis: TaskAnalysis,
        rank: int,
    ) -> FileSuggestion:
        category = categorize_file(candidate.rel_path)
        factors, reasoning = self.reasoning(candidate, score, category, analysis, rank)
        return FileSuggestion(
            rank=rank,
            path=candidate.path,
            rel_path=candidate.rel_path,
            name=candidate.name,
            language=candidate.language,
            category=category,
            score=score,
            base_score=candidate.score.total,
            multiplier=round(multiplier, 3),
            level=relevance_level(score),
            priority=suggestion_priority(score, rank),
            factors=factors,
            reasoning=reasoning,
            action=ACTIONS.get(analysis.type, ACTIONS["feature"]).get(category, DEFAULT_ACTION),
        )

    @staticmethod
    def reasoning(
        candidate: ScoredFile, score: int, category: str, analysis: TaskAnalysis, rank: int
    ) -> tuple[list[str], str]:
        """Factors that fired for this file and a sentence describing them."""
        factors: list[str] = []
        task = analysis.type
        if score > 100:
            factors.append("high_relevance")
            text = f"Highly relevant to {task} task"
        elif score > 50:
            factors.append("good_relevance")
            text = f"Good match for {task} work"
        else:
            factors.append("moderate_relevance")
            text = f"Potentially related to {task}"

        if TASK_FILE_WEIGHTS.get(task, {}).get(category, 0) > 1.2:
            factors.append("task_priority_type")
            text += f", prioritizes {category} files"

        name = candidate.name.lower()
        hits = [k for k in analysis.keywords if k.lower() in name]
        if hits:
            factors.append("keyword_match")
            text += f', contains "{", ".join(hits)}"'

        if rank == 1:
            factors.append("top_candidate")
            text += ". Best starting point"
        elif rank <= 3:
            factors.append("high_priority")
            text += ". Should examine early"
        return factors, text

    @staticmethod
    def recommendations(suggestions: list[FileSuggestion], analysis: TaskAnalysis) -> list[str]:
        if not suggestions:
            return list(EMPTY_GUIDANCE)
        top = suggestions[0]
        recs = [f"Start with {top.name} - {top.reasoning.lower()}"]
        recs.extend(TASK_ADVICE.get(analysis.type, []))
        if len(suggestions) > 3:
            recs.append("Review top 3 files first, then expand as needed")
        if analysis.high_risk:
            recs.append("High-risk task: consider creating backups and thorough testing")
        return recs
