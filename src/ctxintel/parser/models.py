"""Data models for per-file symbol tables."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class SymbolKind(str, Enum):
    """Types of declared symbols."""

    CLASS = "class"
    FUNCTION = "function"
    METHOD = "method"
    VARIABLE = "variable"
    INTERFACE = "interface"
    ENUM = "enum"
    TYPE_ALIAS = "type_alias"


class Symbol(BaseModel):
    """A declared name (function, class, method, variable or type)."""

    name: str
    kind: SymbolKind
    line_start: int
    line_end: int
    signature: str = ""
    parent: str = ""  # enclosing class name for methods


class ImportStatement(BaseModel):
    """One import as written in the source file.

    Python relative imports keep their leading dots, so ``from ..a import b``
    has ``source="..a"`` and ``specifiers=["b"]``.
    """

    source: str
    specifiers: list[str] = Field(default_factory=list)
    line: int = 0
    dynamic: bool = False  # require() / import() call rather than a statement


class SymbolTable(BaseModel):
    """Language-normalized symbols extracted from a single file."""

    file_path: str
    language: str
    functions: list[Symbol] = Field(default_factory=list)
    classes: list[Symbol] = Field(default_factory=list)
    variables: list[Symbol] = Field(default_factory=list)
    types: list[Symbol] = Field(default_factory=list)
    imports: list[ImportStatement] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def all_symbols(self) -> list[Symbol]:
        return [*self.functions, *self.classes, *self.variables, *self.types]


class FileError(BaseModel):
    """A per-file problem recorded beside partial results."""

    path: str
    kind: Literal["parse", "io", "timeout"]
    message: str


# Language detection by file extension
EXTENSION_LANGUAGE_MAP: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
}

# Files that are scored and shown but carry no symbols
DOCUMENT_LANGUAGE_MAP: dict[str, str] = {
    ".json": "json",
    ".md": "markdown",
    ".txt": "text",
}


def detect_language(file_path: str) -> str | None:
    """Detect the parseable language of a file from its extension."""
    return EXTENSION_LANGUAGE_MAP.get(Path(file_path).suffix.lower())


def describe_language(file_path: str) -> str:
    """Language label for display, including non-code documents."""
    ext = Path(file_path).suffix.lower()
    return EXTENSION_LANGUAGE_MAP.get(ext) or DOCUMENT_LANGUAGE_MAP.get(ext) or "unknown"
