"""Configuration management for ctxintel."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ctxintel.exceptions import ConfigError

CTXINTEL_DIR = ".ctxintel"
CONFIG_FILE = "config.json"

# Context window sizes in tokens. Unknown model names fall back to "default".
MODEL_LIMITS: dict[str, int] = {
    "gpt-4": 128000,
    "gpt-4-turbo": 128000,
    "gpt-3.5-turbo": 16385,
    "claude-3-opus": 200000,
    "claude-3-sonnet": 200000,
    "claude-3-haiku": 200000,
    "gemini-pro": 32768,
    "default": 8000,
}


def token_limit_for(model: str | None, limits: dict[str, int] | None = None) -> int:
    """Resolve a model name to its token limit."""
    table = limits or MODEL_LIMITS
    if model and model in table:
        return table[model]
    return table.get("default", MODEL_LIMITS["default"])


class IndexerConfig(BaseModel):
    """Which files are collected from disk, and how they are parsed."""

    extensions: list[str] = Field(
        default_factory=lambda: [
            ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
            ".py", ".pyi",
            ".json", ".md",
        ]
    )
    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "node_modules",
            "__pycache__",
            ".git",
            ".ctxintel",
            ".next",
            "dist",
            "build",
            ".venv",
            "venv",
            "*.min.js",
            "*.map",
            "package-lock.json",
            "yarn.lock",
        ]
    )
    max_file_size_kb: int = 500
    workers: int = 0  # 0 = one worker per CPU
    parse_timeout_s: float = 10.0
    aliases: dict[str, str] = Field(default_factory=dict)  # e.g. {"@/": "src/"}


class ScoringWeights(BaseModel):
    """Points awarded by each relevance factor."""

    model_config = ConfigDict(extra="forbid")

    exact_symbol: float = 100.0
    partial_symbol: float = 50.0
    keyword_occurrence: float = 5.0
    keyword_cap: float = 50.0  # per term
    dependency_direct: float = 40.0
    dependency_indirect: float = 15.0
    path: float = 25.0
    source_type: float = 20.0
    neutral_type: float = 0.0
    other_type: float = -5.0
    recency: float = 10.0
    recency_window_days: float = 7.0
    density: float = 5.0

    @field_validator(
        "exact_symbol", "partial_symbol", "keyword_occurrence", "keyword_cap",
        "dependency_direct", "dependency_indirect", "path", "source_type",
        "recency", "density",
    )
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be non-negative")
        return v

    @field_validator("recency_window_days")
    @classmethod
    def _positive_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode="after")
    def _exact_beats_partial(self) -> "ScoringWeights":
        if self.exact_symbol < self.partial_symbol:
            raise ValueError("exact_symbol must be >= partial_symbol")
        return self


class AggregateWeights(BaseModel):
    """Multipliers applied to each subscore when summing the total."""

    model_config = ConfigDict(extra="forbid")

    symbol: float = 1.0
    keyword: float = 0.3
    dependency: float = 1.0
    path: float = 1.0
    type: float = 1.0
    recency: float = 1.0
    density: float = 1.0

    @field_validator("*")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("aggregate multipliers must be non-negative")
        return v


class ScoringConfig(BaseModel):
    points: ScoringWeights = Field(default_factory=ScoringWeights)
    aggregate: AggregateWeights = Field(default_factory=AggregateWeights)
    max_files: int = 50
    min_score: float = 0.0


class WindowConfig(BaseModel):
    """Section extraction and per-file sizing for the context window."""

    section_priorities: dict[str, float] = Field(
        default_factory=lambda: {
            "signatures": 1.0,
            "exports": 0.9,
            "imports": 0.8,
            "implementation": 0.7,
            "comments": 0.6,
        }
    )
    section_term_points: float = 2.0
    max_file_chars: int = 50000
    min_file_chars: int = 1000
    chars_per_token: float = 4.0
    min_truncation_room: int = 50
    max_files: int = 20

    @model_validator(mode="after")
    def _bounds(self) -> "WindowConfig":
        if self.min_file_chars <= 0 or self.max_file_chars < self.min_file_chars:
            raise ValueError("need 0 < min_file_chars <= max_file_chars")
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        return self


class BudgetConfig(BaseModel):
    """Token budget categories, status thresholds and pruning strategies."""

    categories: dict[str, float] = Field(
        default_factory=lambda: {"essentials": 0.15, "conversation": 0.70, "buffer": 0.15}
    )
    moderate_threshold: float = 0.6
    warning_threshold: float = 0.8
    critical_threshold: float = 0.9
    strategies: dict[str, float] = Field(
        default_factory=lambda: {"aggressive": 0.70, "conservative": 0.75, "balanced": 0.80}
    )
    max_context_age_s: float = 1800.0
    max_prune_files: int = 5

    @model_validator(mode="after")
    def _consistent(self) -> "BudgetConfig":
        if any(not 0 < f <= 1 for f in self.categories.values()):
            raise ValueError("category fractions must be in (0, 1]")
        if sum(self.categories.values()) > 1.0 + 1e-9:
            raise ValueError("category fractions add up to more than the model limit")
        if not 0 < self.moderate_threshold <= self.warning_threshold <= self.critical_threshold:
            raise ValueError("thresholds must satisfy 0 < moderate <= warning <= critical")
        if any(not 0 < t <= 1 for t in self.strategies.values()):
            raise ValueError("strategy targets must be in (0, 1]")
        if self.max_prune_files < 1:
            raise ValueError("max_prune_files must be at least 1")
        return self


class AutoContextConfig(BaseModel):
    """Trigger policy for adding files to the conversation automatically."""

    enabled: bool = True
    trigger_keywords: list[str] = Field(
        default_factory=lambda: [
            "fix", "implement", "add", "create", "update", "modify", "change",
            "refactor", "optimize", "improve", "debug", "test", "build",
            "inspect", "analyze", "examine", "review", "check", "explore",
            "investigate", "workspace", "folder", "directory", "project",
        ]
    )
    inspection_keywords: list[str] = Field(
        default_factory=lambda: [
            "inspect", "analyze", "examine", "review", "check", "explore", "investigate",
        ]
    )
    coding_indicators: list[str] = Field(
        default_factory=lambda: [
            "function", "class", "method", "variable", "file", "code",
            "component", "module", "api", "database", "error", "bug",
            "feature", "implement", "create", "build",
        ]
    )
    confidence_threshold: float = 70.0
    inspection_threshold_drop: float = 20.0
    inspection_threshold_floor: float = 30.0
    max_auto_add_files: int = 3
    cooldown_s: float = 30.0
    min_words: int = 3
    memory_size: int = 10
    similarity_threshold: float = 0.3
    proactive_min_frequency: int = 2


class ProjectConfig(BaseModel):
    """Full project configuration."""

    model_config = ConfigDict(protected_namespaces=())

    name: str = ""
    root_path: str = "."
    model: str = "default"
    model_limits: dict[str, int] = Field(default_factory=lambda: dict(MODEL_LIMITS))
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    auto_context: AutoContextConfig = Field(default_factory=AutoContextConfig)

    @property
    def token_limit(self) -> int:
        return token_limit_for(self.model, self.model_limits)


_M = TypeVar("_M", bound=BaseModel)


def validated(model: type[_M], data: dict[str, Any]) -> _M:
    """Build ``model`` from ``data``, reporting problems as :class:`ConfigError`."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid {model.__name__}: {problems}") from e


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxintel directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXINTEL_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXINTEL_DIR).is_dir():
        return current
    return None


def get_ctxintel_dir(root: Path) -> Path:
    return root / CTXINTEL_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxintel/config.json."""
    config_path = get_ctxintel_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"{config_path} is not valid JSON: {e}") from e
        return validated(ProjectConfig, data)
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxintel/config.json."""
    ci_dir = get_ctxintel_dir(root)
    ci_dir.mkdir(parents=True, exist_ok=True)
    config_path = ci_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'budget.max_prune_files')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return validated(ProjectConfig, data)
