"""Task classification and task-aware file suggestions."""

from ctxintel.suggest.classifier import TaskAnalysis, TaskClassifier
from ctxintel.suggest.suggester import (
    FileSuggester,
    FileSuggestion,
    SuggestionResult,
    SuggestOptions,
    categorize_file,
)

__all__ = [
    "FileSuggester",
    "FileSuggestion",
    "SuggestOptions",
    "SuggestionResult",
    "TaskAnalysis",
    "TaskClassifier",
    "categorize_file",
]
