"""Tests for the auto-context controller."""

from __future__ import annotations

from pathlib import Path

import pytest

from ctxintel.config import AutoContextConfig, BudgetConfig
from ctxintel.context.auto import (
    AddedFile,
    AutoAddOptions,
    AutoContextController,
    jaccard,
    query_key,
)
from ctxintel.context.budget import TokenBudgetManager
from ctxintel.context.models import ContextFile, Message
from ctxintel.context.scorer import RelevanceScorer
from ctxintel.exceptions import ConfigError
from ctxintel.suggest.suggester import FileSuggester

BUG_REPORT = "fix the login function bug"


@pytest.fixture
def controller(js_project: Path, clock) -> AutoContextController:
    return AutoContextController(FileSuggester(RelevanceScorer()), [js_project], clock=clock)


def _added(path: str) -> AddedFile:
    return AddedFile(path=path, rel_path=path, name=Path(path).name, relevance=50, tokens=10)


class TestQueryKey:
    def test_sorted_unique_words(self):
        assert query_key("Fix the login bug, fix it!") == "bug fix login the"

    def test_jaccard(self):
        assert jaccard("bug fix login", "bug fix login the") == 0.75
        assert jaccard("", "") == 0.0
        assert jaccard("a b", "c d") == 0.0


class TestTriggers:
    def test_coding_request_triggers(self, controller: AutoContextController):
        assert controller.should_trigger(BUG_REPORT)

    def test_needs_trigger_keyword(self, controller: AutoContextController):
        assert not controller.should_trigger("hello there, how are things")

    def test_needs_enough_words(self, controller: AutoContextController):
        assert not controller.should_trigger("fix it")

    def test_needs_coding_indicator(self, controller: AutoContextController):
        assert not controller.should_trigger("please update me on the weather today")

    def test_inspection_always_triggers(self, controller: AutoContextController):
        assert controller.is_inspection("Inspect this")
        assert controller.should_trigger("inspect")


class TestAutoAdd:
    def test_adds_relevant_files(self, controller: AutoContextController, clock):
        context: dict[str, ContextFile] = {}
        result = controller.analyze_and_auto_add(BUG_REPORT, context)

        assert result.auto_added
        assert result.reason == "relevant files automatically added to context"
        assert result.task_type == "bugfix"
        assert result.confidence == 100
        assert 0 < len(result.files_added) <= 3
        assert result.files_added[0].rel_path.endswith("auth.js")
        for added in result.files_added:
            assert context[added.path].tokens == added.tokens > 0
            assert context[added.path].rel_path == added.rel_path

    def test_added_at_uses_wall_clock(self, js_project: Path, clock):
        controller = AutoContextController(
            roots=[js_project], clock=clock, wall_clock=lambda: 42.0
        )
        context: dict[str, ContextFile] = {}
        assert controller.analyze_and_auto_add(BUG_REPORT, context).auto_added
        assert {f.added_at for f in context.values()} == {42.0}

    def test_cooldown(self, controller: AutoContextController, clock):
        context: dict[str, ContextFile] = {}
        assert controller.analyze_and_auto_add(BUG_REPORT, context).auto_added

        clock.advance(5)
        second = controller.analyze_and_auto_add("fix the logout function bug", context)
        assert not second.auto_added
        assert second.reason == "cooldown active"
        assert controller.in_cooldown()

        clock.advance(30)
        assert not controller.in_cooldown()

    def test_no_cooldown_before_first_add(self, controller: AutoContextController):
        assert not controller.in_cooldown()
        result = controller.analyze_and_auto_add("hello there", {})
        assert result.reason == "no trigger keywords"
        assert not controller.in_cooldown()

    def test_disabled(self, js_project: Path, clock):
        controller = AutoContextController(
            roots=[js_project], config=AutoContextConfig(enabled=False), clock=clock
        )
        assert controller.analyze_and_auto_add(BUG_REPORT, {}).reason == "auto-add disabled"

    def test_option_overrides_enabled(self, controller: AutoContextController):
        result = controller.analyze_and_auto_add(BUG_REPORT, {}, options=AutoAddOptions(enabled=False))
        assert result.reason == "auto-add disabled"

    def test_no_files(self, tmp_path: Path, clock):
        controller = AutoContextController(roots=[tmp_path], clock=clock)
        result = controller.analyze_and_auto_add(BUG_REPORT, {})
        assert not result.auto_added
        assert result.reason == "no relevant files found"
        assert result.task_type == "bugfix"

    def test_low_confidence_inspection(self, controller: AutoContextController):
        # unmatched task type has confidence 30; inspection lowers 70 to 50
        result = controller.analyze_and_auto_add("inspect the project", {})
        assert not result.auto_added
        assert result.reason == "insufficient confidence or files already in context"
        assert result.confidence == 30

    def test_inspection_threshold_floor(self, controller: AutoContextController):
        options = AutoAddOptions(confidence_threshold=40)
        result = controller.analyze_and_auto_add("inspect the project", {}, options=options)
        assert result.auto_added

    def test_files_already_in_context(self, controller: AutoContextController, clock):
        context: dict[str, ContextFile] = {}
        options = AutoAddOptions(max_files=20)
        assert controller.analyze_and_auto_add(BUG_REPORT, context, options=options).auto_added

        clock.advance(60)
        result = controller.analyze_and_auto_add(BUG_REPORT, context, options=options)
        assert result.reason == "insufficient confidence or files already in context"

    def test_budget_rejects_everything(self, js_project: Path, clock):
        budget = TokenBudgetManager(BudgetConfig(categories={"conversation": 0.0005}))
        controller = AutoContextController(roots=[js_project], budget=budget, clock=clock)
        context: dict[str, ContextFile] = {}
        result = controller.analyze_and_auto_add(BUG_REPORT, context)
        assert result.reason == "no suitable files to add"
        assert context == {}
        assert not controller.in_cooldown()

    def test_budget_is_charged(self, js_project: Path, clock):
        budget = TokenBudgetManager()
        controller = AutoContextController(roots=[js_project], budget=budget, clock=clock)
        context: dict[str, ContextFile] = {}
        result = controller.analyze_and_auto_add(BUG_REPORT, context)
        assert budget.usage("conversation") == sum(f.tokens for f in result.files_added)
        assert all(f.category == "conversation" for f in context.values())


class TestMemory:
    def test_remembers_inputs_and_user_history(self, controller: AutoContextController):
        history = [
            Message(role="user", content="earlier question"),
            Message(role="assistant", content="an answer"),
        ]
        controller.analyze_and_auto_add("hello there", {}, history)
        inputs = [(m.input, m.kind) for m in controller.memory]
        assert inputs == [("hello there", "user"), ("earlier question", "historical")]

    def test_memory_is_bounded_and_deduplicated(self, js_project: Path, clock):
        controller = AutoContextController(
            roots=[js_project], config=AutoContextConfig(memory_size=3), clock=clock
        )
        for text in ["one", "two", "one", "three", "four"]:
            controller.analyze_and_auto_add(text, {})
        assert [m.input for m in controller.memory] == ["two", "three", "four"]


class TestLearning:
    def test_statistics_after_add(self, controller: AutoContextController, clock):
        result = controller.analyze_and_auto_add(BUG_REPORT, {})
        stats = controller.statistics()
        assert stats.learned_patterns == 1
        assert stats.task_distribution == {"bugfix": 1}
        assert stats.files_tracked == len(result.files_added)
        assert stats.auto_added_files == len(result.files_added)
        assert stats.last_auto_add == clock.now

    def test_proactive_needs_repeats(self, controller: AutoContextController):
        controller.learn("fix the login bug", [_added("/p/auth.js")], "bugfix")
        assert controller.get_proactive_suggestions("fix login bug", {}) == []

        controller.learn("fix the login bug", [_added("/p/auth.js")], "bugfix")
        found = controller.get_proactive_suggestions("fix login bug", {})
        assert [s.path for s in found] == ["/p/auth.js"]
        assert found[0].confidence == 40
        assert found[0].reason == "Frequently used with similar queries (2 times)"

    def test_proactive_skips_present_and_unrelated(self, controller: AutoContextController):
        for _ in range(5):
            controller.learn("fix the login bug", [_added("/p/auth.js")], "bugfix")
        present = {"/p/auth.js": ContextFile(path="/p/auth.js")}
        assert controller.get_proactive_suggestions("fix login bug", present) == []
        assert controller.get_proactive_suggestions("render chart colors", {}) == []
        assert controller.get_proactive_suggestions("fix login bug", {})[0].confidence == 80

    def test_export_import(self, controller: AutoContextController, js_project: Path):
        controller.learn("fix the login bug", [_added("/p/auth.js")], "bugfix")
        controller.learn("fix the login bug", [_added("/p/auth.js")], "bugfix")
        exported = controller.export_learning()

        fresh = AutoContextController(roots=[js_project])
        assert fresh.import_learning(exported) == 1
        assert fresh.statistics().task_distribution == {"bugfix": 2}
        assert fresh.get_proactive_suggestions("fix login bug", {})[0].path == "/p/auth.js"

    def test_import_rejects_garbage(self, controller: AutoContextController):
        with pytest.raises(ConfigError):
            controller.import_learning({"patterns": {"x": {"frequency": 1}}})
        with pytest.raises(ConfigError):
            controller.import_learning({"patterns": "nope"})

    def test_clear_learning(self, controller: AutoContextController):
        controller.analyze_and_auto_add(BUG_REPORT, {})
        controller.clear_learning()
        stats = controller.statistics()
        assert stats.learned_patterns == 0
        assert stats.memory_size == 0
        assert not controller.in_cooldown()
