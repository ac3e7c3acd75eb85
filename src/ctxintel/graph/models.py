"""Data models for the file dependency graph."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ctxintel.parser.models import SymbolTable


class EdgeKind(str, Enum):
    IMPORT = "import"
    PACKAGE = "package"  # Python package membership via __init__.py


class Classification(str, Enum):
    """Where an import specifier points."""

    INTERNAL = "internal"  # ./x, ../x, Python .x
    EXTERNAL = "external"  # bare package name, never an edge
    ALIAS = "alias"  # @/x, ~/x or a configured alias prefix
    UNKNOWN = "unknown"  # absolute paths and anything else


class DependencyEdge(BaseModel):
    """A resolved dependency between two files on disk."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    kind: EdgeKind = EdgeKind.IMPORT
    classification: Classification = Classification.INTERNAL
    specifier: str = ""  # import text as written


class Dependency(BaseModel):
    """One import of a file, resolved or not."""

    specifier: str
    kind: EdgeKind = EdgeKind.IMPORT
    classification: Classification
    resolved: str | None = None
    line: int = 0


class FileRecord(BaseModel):
    """Everything the builder knows about one file at one modification time."""

    path: str
    language: str
    size: int
    mtime: float
    symbols: SymbolTable
    dependencies: list[Dependency] = Field(default_factory=list)

    @property
    def externals(self) -> list[str]:
        return [
            d.specifier for d in self.dependencies
            if d.classification == Classification.EXTERNAL
        ]
