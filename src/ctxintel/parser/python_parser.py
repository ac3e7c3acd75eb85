"""Python symbol extraction using the built-in ast module."""

from __future__ import annotations

import ast
from pathlib import Path

from ctxintel.exceptions import ParserError
from ctxintel.parser.models import ImportStatement, Symbol, SymbolKind, SymbolTable


def parse_python_file(file_path: str, source: str | None = None) -> SymbolTable:
    """Parse a Python file into a symbol table.

    Raises:
        ParserError: if the source is not valid Python.
    """
    if source is None:
        source = Path(file_path).read_text(encoding="utf-8", errors="replace")

    try:
        tree = ast.parse(source, filename=file_path)
    except SyntaxError as e:
        raise ParserError(file_path, f"SyntaxError: {e.msg} (line {e.lineno})") from e
    except (ValueError, RecursionError) as e:  # null bytes, pathological nesting
        raise ParserError(file_path, str(e)) from e

    result = SymbolTable(file_path=file_path, language="python")
    lines = source.splitlines()
    _extract_from_body(tree.body, lines, result)
    _extract_imports(tree, result)
    result.exports = _module_exports(tree, result)
    return result


def _get_function_signature(
    node: ast.FunctionDef | ast.AsyncFunctionDef, lines: list[str]
) -> str:
    """Extract the function signature from source lines."""
    start = node.lineno - 1
    sig_lines = []
    for i in range(start, min(start + 10, len(lines))):
        line = lines[i]
        sig_lines.append(line.strip())
        if ":" in line:
            text = "".join(sig_lines)
            if text.count("(") <= text.count(")"):
                break
    sig = " ".join(sig_lines)
    if ":" in sig:
        sig = sig[: sig.rindex(":") + 1]
    return sig


def _extract_from_body(
    body: list[ast.stmt], lines: list[str], result: SymbolTable, parent: str = ""
) -> None:
    for node in body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            result.functions.append(
                Symbol(
                    name=node.name,
                    kind=SymbolKind.METHOD if parent else SymbolKind.FUNCTION,
                    line_start=node.lineno,
                    line_end=node.end_lineno or node.lineno,
                    signature=_get_function_signature(node, lines),
                    parent=parent,
                )
            )
        elif isinstance(node, ast.ClassDef):
            result.classes.append(
                Symbol(
                    name=node.name,
                    kind=SymbolKind.CLASS,
                    line_start=node.lineno,
                    line_end=node.end_lineno or node.lineno,
                    signature=lines[node.lineno - 1].strip() if node.lineno <= len(lines) else "",
                    parent=parent,
                )
            )
            _extract_from_body(node.body, lines, result, parent=node.name)
        elif isinstance(node, (ast.Assign, ast.AnnAssign)) and not parent:
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            for target in targets:
                for name in _target_names(target):
                    result.variables.append(
                        Symbol(
                            name=name,
                            kind=SymbolKind.VARIABLE,
                            line_start=node.lineno,
                            line_end=node.end_lineno or node.lineno,
                        )
                    )
        elif isinstance(node, (ast.If, ast.Try)) and not parent:
            # Module-level conditional definitions (TYPE_CHECKING, optional imports)
            _extract_from_body(node.body, lines, result, parent)
            _extract_from_body(node.orelse, lines, result, parent)


def _target_names(target: ast.expr) -> list[str]:
    if isinstance(target, ast.Name):
        return [target.id]
    if isinstance(target, (ast.Tuple, ast.List)):
        names: list[str] = []
        for elt in target.elts:
            names.extend(_target_names(elt))
        return names
    return []


def _extract_imports(tree: ast.Module, result: SymbolTable) -> None:
    """Collect every import in the file, including ones inside functions."""
    found: list[ImportStatement] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                found.append(
                    ImportStatement(
                        source=alias.name,
                        specifiers=[alias.asname or alias.name],
                        line=node.lineno,
                    )
                )
        elif isinstance(node, ast.ImportFrom):
            found.append(
                ImportStatement(
                    source="." * node.level + (node.module or ""),
                    specifiers=[alias.name for alias in node.names],
                    line=node.lineno,
                )
            )
    found.sort(key=lambda imp: imp.line)
    result.imports.extend(found)


def _module_exports(tree: ast.Module, result: SymbolTable) -> list[str]:
    """``__all__`` when declared, otherwise the public top-level names."""
    for node in tree.body:
        if isinstance(node, ast.Assign) and any(
            isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets
        ):
            if isinstance(node.value, (ast.List, ast.Tuple)):
                return [
                    elt.value
                    for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                ]
    top_level = [
        s.name
        for s in (*result.functions, *result.classes, *result.variables)
        if not s.parent
    ]
    return [name for name in dict.fromkeys(top_level) if not name.startswith("_")]
