"""Classify a natural-language coding request into a task type."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from ctxintel.exceptions import ConfigError

DEFAULT_TASK = "feature"
UNMATCHED_CONFIDENCE = 30

TASK_PATTERNS: dict[str, list[str]] = {
    "bugfix": [
        r"\bfix\b", r"\bbug\b", r"\berror\b", r"\bissue\b", r"\bproblem\b",
        r"\bcrash\b", r"\bfailing\b", r"\bbroken\b", r"\bdebug\b",
    ],
    "feature": [
        r"\badd\b", r"\bimplement\b", r"\bcreate\b", r"\bnew\b", r"\bfeature\b",
        r"\bbuild\b", r"\bdevelop\b", r"\bmake\b",
    ],
    "refactor": [
        r"\brefactor\b", r"\brestructure\b", r"\bclean\b", r"\boptimize\b",
        r"\bsimplify\b", r"\bimprove\b", r"\bmodular", r"\breorganize\b",
    ],
    "test": [
        r"\btest\b", r"\bspec\b", r"\bunit\b", r"\bintegration\b",
        r"\bcoverage\b", r"\bmock\b", r"\bstub\b",
    ],
    "config": [
        r"\bconfig\b", r"\bsetup\b", r"\binstall\b", r"\bdeploy\b", r"\bbuild\b",
        r"\bwebpack\b", r"\bbabel\b", r"\bpackage\b",
    ],
    "documentation": [
        r"\bdocument\b", r"\breadme\b", r"\bcomment\b", r"\bdoc\b", r"\bguide\b",
        r"\btutorial\b", r"\bexample\b",
    ],
    "performance": [
        r"\bperformance\b", r"\bspeed\b", r"\bfast\b", r"\bslow\b",
        r"\boptimize\b", r"\bcache\b", r"\bmemory\b",
    ],
    "security": [
        r"\bsecurity\b", r"\bauth\b", r"\bencrypt\b", r"\bsecure\b",
        r"\bvulnerab", r"\battack\b", r"\bhack\b",
    ],
}

# Higher for task types whose keywords are less ambiguous
SPECIFICITY: dict[str, float] = {
    "bugfix": 1.5,
    "security": 1.4,
    "performance": 1.3,
    "test": 1.3,
    "refactor": 1.2,
    "config": 1.2,
    "documentation": 1.1,
    "feature": 1.0,
}


class TaskProfile(BaseModel):
    risk_level: str
    focus: str
    priority_files: list[str]


PROFILES: dict[str, TaskProfile] = {
    "bugfix": TaskProfile(
        risk_level="medium", focus="precision and safety",
        priority_files=["test", "source", "error-handling"],
    ),
    "feature": TaskProfile(
        risk_level="medium", focus="functionality and integration",
        priority_files=["source", "test", "api", "ui"],
    ),
    "refactor": TaskProfile(
        risk_level="high", focus="structure and maintainability",
        priority_files=["source", "test", "architecture"],
    ),
    "test": TaskProfile(
        risk_level="low", focus="quality and reliability",
        priority_files=["test", "source", "coverage"],
    ),
    "config": TaskProfile(
        risk_level="high", focus="environment and deployment",
        priority_files=["config", "build", "deploy"],
    ),
    "performance": TaskProfile(
        risk_level="medium", focus="speed and efficiency",
        priority_files=["source", "cache", "database"],
    ),
    "security": TaskProfile(
        risk_level="critical", focus="safety and compliance",
        priority_files=["auth", "api", "validation"],
    ),
    "documentation": TaskProfile(
        risk_level="low", focus="clarity and usability",
        priority_files=["docs", "readme", "comments"],
    ),
}


class TaskAnalysis(BaseModel):
    type: str
    confidence: int
    keywords: list[str] = Field(default_factory=list)
    risk_level: str
    focus: str
    priority_files: list[str] = Field(default_factory=list)
    all_matches: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def high_risk(self) -> bool:
        return self.risk_level in ("high", "critical")


class TaskClassifier:
    """Keyword-pattern classifier over the known task types.

    The winner is the type with the highest ``matches * specificity``; ties
    go to the type listed first. Confidence is the winner's share of all
    matched weight.
    """

    def __init__(self, patterns: dict[str, list[str]] | None = None) -> None:
        self._patterns = {
            task: [re.compile(p, re.IGNORECASE) for p in pats]
            for task, pats in (patterns or TASK_PATTERNS).items()
        }

    @property
    def task_types(self) -> list[str]:
        return list(self._patterns)

    def classify(self, query: str, forced_type: str | None = None) -> TaskAnalysis:
        if forced_type is not None:
            if forced_type not in self._patterns:
                choices = ", ".join(self._patterns)
                raise ConfigError(f"Unknown task type '{forced_type}'. Choose one of: {choices}")
            return self._analysis(forced_type, 100, [], {})

        matches: dict[str, list[str]] = {}
        for task, patterns in self._patterns.items():
            found = [m.group(0).lower() for p in patterns if (m := p.search(query))]
            if found:
                matches[task] = found

        if not matches:
            return self._analysis(DEFAULT_TASK, UNMATCHED_CONFIDENCE, [], {})

        weights = {task: len(found) * SPECIFICITY.get(task, 1.0) for task, found in matches.items()}
        best = DEFAULT_TASK
        best_weight = 0.0
        for task, weight in weights.items():
            if weight > best_weight:
                best, best_weight = task, weight

        confidence = round(min(100.0, best_weight / sum(weights.values()) * 100))
        return self._analysis(best, confidence, matches[best], matches)

    @staticmethod
    def _analysis(
        task: str, confidence: int, keywords: list[str], matches: dict[str, list[str]]
    ) -> TaskAnalysis:
        profile = PROFILES.get(task, PROFILES[DEFAULT_TASK])
        return TaskAnalysis(
            type=task,
            confidence=confidence,
            keywords=keywords,
            risk_level=profile.risk_level,
            focus=profile.focus,
            priority_files=list(profile.priority_files),
            all_matches=matches,
        )
