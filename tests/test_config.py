"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from ctxintel.config import (
    BudgetConfig,
    ProjectConfig,
    ScoringWeights,
    WindowConfig,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
    token_limit_for,
)
from ctxintel.exceptions import ConfigError


class TestConfig:
    def test_default_config(self):
        config = ProjectConfig()
        assert config.model == "default"
        assert config.token_limit == 8000
        assert config.budget.categories == {
            "essentials": 0.15, "conversation": 0.70, "buffer": 0.15,
        }
        assert config.auto_context.cooldown_s == 30.0
        assert config.scoring.points.exact_symbol == 100

    def test_token_limits(self):
        assert token_limit_for("gpt-4") == 128000
        assert token_limit_for("unknown-model") == 8000
        assert token_limit_for(None) == 8000
        assert token_limit_for("mine", {"mine": 1000, "default": 10}) == 1000

    def test_save_and_load(self, tmp_path: Path):
        config = ProjectConfig(name="test-project", model="gpt-4")
        config.budget.max_prune_files = 3

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded.name == "test-project"
        assert loaded.model == "gpt-4"
        assert loaded.budget.max_prune_files == 3

    def test_load_defaults_without_file(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config.name == tmp_path.name
        assert config.root_path == str(tmp_path)

    def test_load_invalid_json(self, tmp_path: Path):
        (tmp_path / ".ctxintel").mkdir()
        (tmp_path / ".ctxintel" / "config.json").write_text("{broken")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_load_invalid_values(self, tmp_path: Path):
        (tmp_path / ".ctxintel").mkdir()
        (tmp_path / ".ctxintel" / "config.json").write_text(
            '{"budget": {"categories": {"essentials": 0.9, "conversation": 0.9}}}'
        )
        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path)
        assert "ProjectConfig" in str(exc_info.value)

    def test_find_project_root(self, tmp_path: Path):
        assert find_project_root(tmp_path) is None

        (tmp_path / ".ctxintel").mkdir()
        assert find_project_root(tmp_path) == tmp_path

        sub = tmp_path / "src" / "module"
        sub.mkdir(parents=True)
        assert find_project_root(sub) == tmp_path

    def test_set_config_value(self):
        updated = set_config_value(ProjectConfig(), "model", "claude-3-opus")
        assert updated.model == "claude-3-opus"
        assert updated.token_limit == 200000

    def test_set_config_nested(self):
        updated = set_config_value(ProjectConfig(), "auto_context.cooldown_s", 10)
        assert updated.auto_context.cooldown_s == 10

    def test_set_config_invalid_key(self):
        with pytest.raises(KeyError):
            set_config_value(ProjectConfig(), "nonexistent.key", "value")

    def test_set_config_invalid_value(self):
        with pytest.raises(ConfigError):
            set_config_value(ProjectConfig(), "budget.max_prune_files", 0)

    def test_exclude_patterns(self):
        config = ProjectConfig()
        assert "node_modules" in config.indexer.exclude_patterns
        assert ".ctxintel" in config.indexer.exclude_patterns
        assert ".git" in config.indexer.exclude_patterns


class TestValidation:
    def test_negative_weight(self):
        with pytest.raises(ValueError):
            ScoringWeights(path=-1)

    def test_exact_below_partial(self):
        with pytest.raises(ValueError):
            ScoringWeights(exact_symbol=10, partial_symbol=50)

    def test_unknown_weight(self):
        with pytest.raises(ValueError):
            ScoringWeights(vibes=1)

    def test_thresholds_ordered(self):
        with pytest.raises(ValueError):
            BudgetConfig(moderate_threshold=0.9, warning_threshold=0.5)

    def test_window_bounds(self):
        with pytest.raises(ValueError):
            WindowConfig(min_file_chars=2000, max_file_chars=1000)
        with pytest.raises(ValueError):
            WindowConfig(chars_per_token=0)
