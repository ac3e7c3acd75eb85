"""Custom exceptions for ctxintel."""

from __future__ import annotations


class CtxIntelError(Exception):
    """Base exception for all ctxintel errors."""


class ConfigError(CtxIntelError):
    """Invalid configuration, strategy name or weight override."""


class ParserError(CtxIntelError):
    """A file could not be read or parsed by the symbol source.

    ``kind`` is ``"parse"`` for syntax problems and ``"io"`` for missing or
    unreadable files, matching :class:`ctxintel.parser.models.FileError`.
    """

    def __init__(self, path: str, message: str, kind: str = "parse"):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message
        self.kind = kind


class GraphError(CtxIntelError):
    """Dependency graph errors."""


class ExportFormatError(ConfigError, GraphError):
    """Raised when a graph export format is not one of json, dot or csv."""

    def __init__(self, fmt: str, supported: tuple[str, ...]):
        super().__init__(
            f"Unsupported export format '{fmt}'. Choose one of: {', '.join(supported)}"
        )
        self.format = fmt
