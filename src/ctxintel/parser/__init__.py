"""Symbol source: per-file symbol tables for Python, JavaScript and TypeScript."""

from ctxintel.parser.core import SymbolSource, collect_files, parse_file
from ctxintel.parser.models import (
    FileError,
    ImportStatement,
    Symbol,
    SymbolKind,
    SymbolTable,
    detect_language,
)

__all__ = [
    "FileError",
    "ImportStatement",
    "Symbol",
    "SymbolKind",
    "SymbolSource",
    "SymbolTable",
    "collect_files",
    "detect_language",
    "parse_file",
]
