"""Tests for task classification and file suggestions."""

from __future__ import annotations

from pathlib import Path

import pytest

from ctxintel.context.scorer import RelevanceScorer
from ctxintel.exceptions import ConfigError
from ctxintel.suggest.classifier import TaskClassifier
from ctxintel.suggest.suggester import (
    EMPTY_GUIDANCE,
    FileSuggester,
    SuggestOptions,
    categorize_file,
    normalize_task,
    relevance_level,
    suggestion_priority,
)


class TestTaskClassifier:
    def test_bugfix(self):
        analysis = TaskClassifier().classify("fix login bug")
        assert analysis.type == "bugfix"
        assert analysis.confidence == 100
        assert analysis.keywords == ["fix", "bug"]
        assert analysis.risk_level == "medium"

    def test_weighted_winner(self):
        analysis = TaskClassifier().classify("add a cache because the page is slow")
        # feature: add (1.0); performance: cache, slow (2 x 1.3)
        assert analysis.type == "performance"
        assert analysis.confidence == 72
        assert set(analysis.all_matches) == {"feature", "performance"}

    def test_case_insensitive(self):
        assert TaskClassifier().classify("REFACTOR the parser").type == "refactor"

    def test_no_match(self):
        analysis = TaskClassifier().classify("hello there")
        assert analysis.type == "feature"
        assert analysis.confidence == 30
        assert analysis.keywords == []

    def test_forced_type(self):
        analysis = TaskClassifier().classify("fix login bug", forced_type="security")
        assert analysis.type == "security"
        assert analysis.confidence == 100
        assert analysis.risk_level == "critical"
        assert analysis.high_risk

    def test_unknown_forced_type(self):
        with pytest.raises(ConfigError):
            TaskClassifier().classify("anything", forced_type="vibes")

    def test_task_types(self):
        assert "documentation" in TaskClassifier().task_types


class TestHelpers:
    def test_categorize_file(self):
        assert categorize_file("src/auth.test.js") == "test"
        assert categorize_file("tests/helpers.py") == "test"
        assert categorize_file("webpack.config.js") == "config"
        assert categorize_file("package.json") == "config"
        assert categorize_file("docs/guide.md") == "docs"
        assert categorize_file("src/app.ts") == "source"
        assert categorize_file("logo.png") == "other"

    def test_normalize_task(self):
        assert normalize_task("  Fix the LOGIN   bug!! ") == "fix the login bug"

    def test_relevance_level(self):
        assert relevance_level(150) == "excellent"
        assert relevance_level(80) == "very_good"
        assert relevance_level(60) == "good"
        assert relevance_level(30) == "fair"
        assert relevance_level(5) == "poor"

    def test_priority(self):
        assert suggestion_priority(90, 1) == "critical"
        assert suggestion_priority(60, 2) == "high"
        assert suggestion_priority(40, 5) == "medium"
        assert suggestion_priority(20, 9) == "low"
        assert suggestion_priority(5, 9) == "optional"


class TestFileSuggester:
    def test_login_bugfix(self, js_project: Path, clock):
        suggester = FileSuggester(RelevanceScorer(clock=clock))
        result = suggester.suggest("fix login bug", js_project)

        assert result.analysis.type == "bugfix"
        assert result.normalized == "fix login bug"
        top = result.suggestions[0]
        assert top.rel_path.endswith("auth.js")
        assert top.category == "source"
        assert top.rank == 1
        assert top.priority == "critical"
        assert "top_candidate" in top.factors
        assert top.action == "Check implementation and error handling"
        assert top.tokens is None

    def test_ranks_are_sequential_and_sorted(self, js_project: Path, clock):
        result = FileSuggester(RelevanceScorer(clock=clock)).suggest("fix login bug", js_project)
        assert [s.rank for s in result.suggestions] == list(range(1, len(result.suggestions) + 1))
        scores = [s.score for s in result.suggestions]
        assert scores == sorted(scores, reverse=True)

    def test_task_weighting(self, js_project: Path, clock):
        result = FileSuggester(RelevanceScorer(clock=clock)).suggest("fix login bug", js_project)
        test_file = next(s for s in result.suggestions if s.rel_path == "auth.test.js")
        assert test_file.category == "test"
        assert test_file.multiplier == pytest.approx(1.8)
        assert test_file.action == "Examine test cases and error scenarios"

    def test_recommendations(self, js_project: Path, clock):
        result = FileSuggester(RelevanceScorer(clock=clock)).suggest("fix login bug", js_project)
        assert result.recommendations[0].startswith("Start with auth.js - highly relevant")
        assert "Focus on understanding the bug before making changes" in result.recommendations
        assert "Review top 3 files first, then expand as needed" in result.recommendations

    def test_high_risk_recommendation(self, js_project: Path, clock):
        result = FileSuggester(RelevanceScorer(clock=clock)).suggest(
            "login", js_project, SuggestOptions(task_type="security")
        )
        assert result.analysis.type == "security"
        assert (
            "High-risk task: consider creating backups and thorough testing"
            in result.recommendations
        )

    def test_max_suggestions(self, js_project: Path, clock):
        result = FileSuggester(RelevanceScorer(clock=clock)).suggest(
            "fix login bug", js_project, SuggestOptions(max_suggestions=2)
        )
        assert len(result.suggestions) == 2
        assert "Review top 3 files first, then expand as needed" not in result.recommendations

    def test_detailed(self, js_project: Path, clock):
        result = FileSuggester(RelevanceScorer(clock=clock)).suggest(
            "fix login bug", js_project, SuggestOptions(detail_level="detailed")
        )
        top = result.suggestions[0]
        assert top.tokens is not None and top.tokens > 0
        assert top.sections

    def test_empty_project(self, tmp_path: Path):
        result = FileSuggester().suggest("fix login bug", tmp_path)
        assert result.suggestions == []
        assert result.recommendations == EMPTY_GUIDANCE
        assert result.analysis.type == "bugfix"
