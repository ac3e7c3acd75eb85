"""Tree-sitter based symbol extraction for JavaScript and TypeScript."""

from __future__ import annotations

import functools
import importlib
from pathlib import Path

from tree_sitter import Language, Node, Parser

from ctxintel.parser.models import ImportStatement, Symbol, SymbolKind, SymbolTable

# grammar name -> (module, factory function)
_GRAMMARS: dict[str, tuple[str, str]] = {
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}

_FUNCTION_DECLARATIONS = {"function_declaration", "generator_function_declaration"}
_CLASS_DECLARATIONS = {"class_declaration", "abstract_class_declaration", "class"}
_FUNCTION_VALUES = {
    "arrow_function",
    "function",
    "function_expression",
    "generator_function",
}
_TYPE_DECLARATIONS: dict[str, SymbolKind] = {
    "interface_declaration": SymbolKind.INTERFACE,
    "type_alias_declaration": SymbolKind.TYPE_ALIAS,
    "enum_declaration": SymbolKind.ENUM,
}


@functools.lru_cache(maxsize=None)
def _get_language(grammar: str) -> Language:
    """Get a tree-sitter Language object for the given grammar."""
    if grammar not in _GRAMMARS:
        raise ValueError(f"No tree-sitter grammar for: {grammar}")
    module_name, factory = _GRAMMARS[grammar]
    module = importlib.import_module(module_name)
    return Language(getattr(module, factory)())


def _grammar_for(file_path: str, language: str) -> str:
    if Path(file_path).suffix.lower() == ".tsx":
        return "tsx"
    return language


def parse_tree_sitter_file(
    file_path: str, language: str, source: str | None = None
) -> SymbolTable:
    """Parse a JS/TS file into a symbol table.

    Tree-sitter recovers from syntax errors, so a damaged file still yields
    the symbols of its intact parts; the damage is noted in ``errors``.
    """
    if source is None:
        source = Path(file_path).read_text(encoding="utf-8", errors="replace")

    # Parsers are cheap and not shareable across threads
    parser = Parser(_get_language(_grammar_for(file_path, language)))
    tree = parser.parse(source.encode("utf-8"))

    result = SymbolTable(file_path=file_path, language=language)
    if tree.root_node.has_error:
        result.errors.append("syntax errors present; symbols taken from recoverable nodes")

    _walk(tree.root_node, result, class_name="", in_function=False)
    result.exports = list(dict.fromkeys(result.exports))
    return result


def _text(node: Node | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _string_value(node: Node | None) -> str | None:
    """Return the contents of a string literal node, or None for anything else."""
    if node is None or node.type != "string":
        return None
    raw = _text(node)
    if len(raw) >= 2 and raw[0] in "'\"" and raw[-1] == raw[0]:
        return raw[1:-1]
    return None


def _signature(node: Node) -> str:
    return _text(node).split("\n")[0].strip()[:200]


def _symbol(node: Node, name: str, kind: SymbolKind, parent: str = "") -> Symbol:
    return Symbol(
        name=name,
        kind=kind,
        line_start=node.start_point[0] + 1,
        line_end=node.end_point[0] + 1,
        signature=_signature(node),
        parent=parent,
    )


def _walk(node: Node, result: SymbolTable, class_name: str, in_function: bool) -> None:
    """Walk the syntax tree collecting declarations, imports and exports."""
    for child in node.children:
        kind = child.type

        if kind == "import_statement":
            _collect_import(child, result)

        elif kind == "export_statement":
            _collect_export(child, result)
            _walk(child, result, class_name, in_function)

        elif kind in _FUNCTION_DECLARATIONS:
            name = _text(child.child_by_field_name("name"))
            if name:
                result.functions.append(_symbol(child, name, SymbolKind.FUNCTION))
            _walk(child, result, "", True)

        elif kind in _CLASS_DECLARATIONS:
            name = _text(child.child_by_field_name("name"))
            if name:
                result.classes.append(_symbol(child, name, SymbolKind.CLASS))
            _walk(child, result, name, in_function)

        elif kind == "method_definition":
            name = _text(child.child_by_field_name("name"))
            if name:
                result.functions.append(
                    _symbol(child, name, SymbolKind.METHOD, parent=class_name)
                )
            _walk(child, result, "", True)

        elif kind == "variable_declarator":
            _collect_declarator(child, result, in_function)
            _walk(child, result, class_name, in_function)

        elif kind in _TYPE_DECLARATIONS:
            name = _text(child.child_by_field_name("name"))
            if name:
                result.types.append(_symbol(child, name, _TYPE_DECLARATIONS[kind]))

        elif kind == "call_expression":
            _collect_call_import(child, result)
            _walk(child, result, class_name, in_function)

        else:
            _walk(child, result, class_name, in_function)


def _collect_import(node: Node, result: SymbolTable) -> None:
    source = _string_value(node.child_by_field_name("source"))
    if source is None:
        return
    specifiers: list[str] = []
    for clause in node.children:
        if clause.type != "import_clause":
            continue
        for part in clause.children:
            if part.type == "identifier":
                specifiers.append(_text(part))
            elif part.type == "namespace_import":
                specifiers.append("* as " + _text(part.named_children[-1]) if part.named_children else "*")
            elif part.type == "named_imports":
                for item in part.named_children:
                    if item.type == "import_specifier":
                        specifiers.append(_text(item.child_by_field_name("name")))
    result.imports.append(
        ImportStatement(source=source, specifiers=specifiers, line=node.start_point[0] + 1)
    )


def _collect_export(node: Node, result: SymbolTable) -> None:
    source = _string_value(node.child_by_field_name("source"))
    names: list[str] = []

    for part in node.children:
        if part.type == "default":
            names.append("default")
        elif part.type == "export_clause":
            for item in part.named_children:
                if item.type == "export_specifier":
                    alias = item.child_by_field_name("alias")
                    names.append(_text(alias or item.child_by_field_name("name")))
        elif part.type == "*" and source is not None:
            names.append("*")

    declaration = node.child_by_field_name("declaration")
    if declaration is not None:
        name = _text(declaration.child_by_field_name("name"))
        if name:
            names.append(name)
        for declarator in declaration.named_children:
            if declarator.type == "variable_declarator":
                names.append(_text(declarator.child_by_field_name("name")))

    result.exports.extend(n for n in names if n)
    if source is not None:
        result.imports.append(
            ImportStatement(source=source, specifiers=names, line=node.start_point[0] + 1)
        )


def _collect_declarator(node: Node, result: SymbolTable, in_function: bool) -> None:
    name_node = node.child_by_field_name("name")
    if name_node is None or name_node.type != "identifier":
        return
    value = node.child_by_field_name("value")
    if value is not None and value.type in _FUNCTION_VALUES:
        result.functions.append(_symbol(node, _text(name_node), SymbolKind.FUNCTION))
    elif not in_function:
        result.variables.append(_symbol(node, _text(name_node), SymbolKind.VARIABLE))


def _collect_call_import(node: Node, result: SymbolTable) -> None:
    """``require('x')`` and ``import('x')`` count as imports of ``x``."""
    func = node.child_by_field_name("function")
    if func is None:
        return
    is_require = func.type == "identifier" and _text(func) == "require"
    is_dynamic = func.type == "import"
    if not (is_require or is_dynamic):
        return
    args = node.child_by_field_name("arguments")
    if args is None or not args.named_children:
        return
    source = _string_value(args.named_children[0])
    if source is None:
        return
    result.imports.append(
        ImportStatement(source=source, line=node.start_point[0] + 1, dynamic=True)
    )
