"""Tests for the dependency graph builder and graph."""

from __future__ import annotations

import csv
import io
import json
import os
import threading
from pathlib import Path

import pytest

from ctxintel.config import IndexerConfig
from ctxintel.exceptions import ExportFormatError, GraphError
from ctxintel.graph.builder import (
    DependencyGraphBuilder,
    classify_specifier,
    resolve_python,
)
from ctxintel.graph.dependency_graph import Cycle, DependencyGraph
from ctxintel.graph.models import Classification, DependencyEdge, EdgeKind
from ctxintel.parser.core import SymbolSource
from ctxintel.parser.models import SymbolTable


def _edge(source: str, target: str, kind: EdgeKind = EdgeKind.IMPORT) -> DependencyEdge:
    return DependencyEdge(source=source, target=target, kind=kind)


def _path(root: Path, rel: str) -> str:
    return str((root / rel).resolve())


class TestClassification:
    def test_relative_is_internal(self):
        assert classify_specifier("./utils", "javascript") == Classification.INTERNAL
        assert classify_specifier("../auth", "typescript") == Classification.INTERNAL

    def test_bare_is_external(self):
        assert classify_specifier("express", "javascript") == Classification.EXTERNAL
        assert classify_specifier("@scope/pkg", "javascript") == Classification.EXTERNAL

    def test_alias_prefixes(self):
        assert classify_specifier("@/components/Button", "javascript") == Classification.ALIAS
        assert classify_specifier("~/lib", "javascript") == Classification.ALIAS
        aliases = {"#app/": "src/"}
        assert classify_specifier("#app/auth", "javascript", aliases) == Classification.ALIAS

    def test_absolute_is_unknown(self):
        assert classify_specifier("/opt/lib/x", "javascript") == Classification.UNKNOWN

    def test_python(self):
        assert classify_specifier(".cart", "python") == Classification.INTERNAL
        assert classify_specifier("decimal", "python") == Classification.EXTERNAL


class TestBuilder:
    def test_single_import_edge(self, two_file_project: Path):
        a = _path(two_file_project, "a.js")
        b = _path(two_file_project, "b.js")
        result = DependencyGraphBuilder().build([a, b])
        graph = result.graph

        forward = graph.forward(a)
        assert len(forward) == 1
        assert forward[0].target == b
        assert forward[0].kind == EdgeKind.IMPORT
        assert forward[0].classification == Classification.INTERNAL
        assert forward[0].specifier == "./b"
        assert graph.dependents(b) == [a]
        assert graph.forward(b) == []

    def test_file_without_imports(self, two_file_project: Path):
        b = _path(two_file_project, "b.js")
        graph = DependencyGraphBuilder().build([b]).graph
        assert b in graph
        assert graph.forward(b) == []
        assert graph.reverse(b) == []

    def test_unresolved_target_makes_no_edge(self, two_file_project: Path):
        a = _path(two_file_project, "a.js")
        graph = DependencyGraphBuilder().build([a]).graph
        assert graph.forward(a) == []

    def test_build_from_project(self, js_project: Path):
        result = DependencyGraphBuilder().build_from_roots(js_project)
        graph = result.graph
        auth = _path(js_project, "src/auth.js")
        utils = _path(js_project, "src/utils.js")
        api = _path(js_project, "src/api/index.js")
        test = _path(js_project, "auth.test.js")

        assert result.errors == []
        assert len(graph) == 5  # json and md files are not graph nodes
        assert graph.dependencies(auth) == [utils]
        assert graph.dependencies(api) == [auth]
        assert set(graph.dependents(auth)) == {api, test}

    def test_externals_recorded_without_edges(self, js_project: Path):
        result = DependencyGraphBuilder().build_from_roots(js_project)
        auth = _path(js_project, "src/auth.js")
        assert result.records[auth].externals == ["express"]
        assert result.graph.file_attrs(auth)["externals"] == ["express"]
        assert all(e.classification != Classification.EXTERNAL for e in result.graph.edges())

    def test_index_resolution(self, tmp_path: Path):
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "index.ts").write_text("export const x = 1;\n")
        (tmp_path / "main.ts").write_text("import { x } from './lib';\n")
        graph = DependencyGraphBuilder().build_from_roots(tmp_path).graph
        assert graph.dependencies(_path(tmp_path, "main.ts")) == [_path(tmp_path, "lib/index.ts")]

    def test_configured_alias(self, tmp_path: Path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "auth.js").write_text("export function login() {}\n")
        (tmp_path / "app.js").write_text("import { login } from '#app/auth';\n")
        builder = DependencyGraphBuilder(IndexerConfig(aliases={"#app/": "src/"}), root=tmp_path)
        graph = builder.build_from_roots(tmp_path).graph
        edges = graph.forward(_path(tmp_path, "app.js"))
        assert [e.target for e in edges] == [_path(tmp_path, "src/auth.js")]
        assert edges[0].classification == Classification.ALIAS

    def test_python_imports_and_package_edges(self, py_project: Path):
        builder = DependencyGraphBuilder(root=py_project)
        result = builder.build_from_roots(py_project)
        graph = result.graph
        cart = _path(py_project, "shop/cart.py")
        pricing = _path(py_project, "shop/pricing.py")
        init = _path(py_project, "shop/__init__.py")

        kinds = {(e.target, e.kind) for e in graph.forward(cart)}
        assert (pricing, EdgeKind.IMPORT) in kinds
        assert (init, EdgeKind.PACKAGE) in kinds
        assert graph.dependencies(init) == [cart]

    def test_parse_errors_do_not_stop_the_batch(self, py_project: Path):
        result = DependencyGraphBuilder(root=py_project).build_from_roots(py_project)
        broken = _path(py_project, "broken.py")
        assert [e.path for e in result.errors] == [broken]
        assert result.errors[0].kind == "parse"
        assert broken not in result.graph
        assert _path(py_project, "shop/cart.py") in result.graph

    def test_missing_root_is_an_error(self, tmp_path: Path):
        result = DependencyGraphBuilder().build_from_roots([tmp_path / "missing"])
        assert len(result.graph) == 0
        assert result.errors[0].kind == "io"

    def test_rebuild_sees_edits(self, two_file_project: Path):
        builder = DependencyGraphBuilder()
        a = two_file_project / "a.js"
        assert builder.build_from_roots(two_file_project).graph.forward(str(a.resolve()))

        a.write_text("export const a = 2;\n")
        stat = a.stat()
        os.utime(a, (stat.st_atime, stat.st_mtime + 10))
        assert builder.build_from_roots(two_file_project).graph.forward(str(a.resolve())) == []


    def test_rebuild_resolves_new_targets(self, tmp_path: Path):
        source = RecordingSymbolSource()
        builder = DependencyGraphBuilder(symbol_source=source)
        a = tmp_path / "a.js"
        a.write_text("import { b } from './b';\n")
        assert builder.build_from_roots(tmp_path).graph.forward(str(a.resolve())) == []

        (tmp_path / "b.js").write_text("export const b = 1;\n")
        graph = builder.build_from_roots(tmp_path).graph
        assert [e.target for e in graph.forward(str(a.resolve()))] == [_path(tmp_path, "b.js")]
        first, second = source.tables[str(a.resolve())]
        assert second is first

    def test_parse_timeout_is_recorded(self, two_file_project: Path):
        slow = two_file_project / "slow.js"
        slow.write_text("export const slow = 1;\n")
        source = SlowSymbolSource(slow_name="slow.js")
        config = IndexerConfig(workers=3, parse_timeout_s=0.2)
        try:
            result = DependencyGraphBuilder(config, source).build(
                [two_file_project / "a.js", two_file_project / "b.js", slow]
            )
        finally:
            source.release.set()

        assert [(e.path, e.kind) for e in result.errors] == [(str(slow.resolve()), "timeout")]
        assert str(slow.resolve()) not in result.graph.files()
        assert len(result.graph.edges()) == 1


class RecordingSymbolSource(SymbolSource):
    def __init__(self) -> None:
        super().__init__()
        self.tables: dict[str, list[SymbolTable]] = {}

    def parse(self, path: str) -> SymbolTable:
        table = super().parse(path)
        self.tables.setdefault(path, []).append(table)
        return table


class SlowSymbolSource(SymbolSource):
    """Blocks on one file until ``release`` is set."""

    def __init__(self, slow_name: str) -> None:
        super().__init__()
        self.slow_name = slow_name
        self.release = threading.Event()

    def parse(self, path: str) -> SymbolTable:
        if os.path.basename(path) == self.slow_name:
            self.release.wait(timeout=5)
        return super().parse(path)


class TestResolvePython:
    def test_parent_package(self, tmp_path: Path):
        pkg = tmp_path / "pkg"
        sub = pkg / "sub"
        sub.mkdir(parents=True)
        (pkg / "__init__.py").write_text("")
        (pkg / "util.py").write_text("")
        (sub / "__init__.py").write_text("")
        mod = sub / "mod.py"
        mod.write_text("")
        assert resolve_python(str(mod), "..util", ["x"]) == [str((pkg / "util.py").resolve())]

    def test_from_dot_import_submodule(self, tmp_path: Path):
        (tmp_path / "__init__.py").write_text("")
        (tmp_path / "helpers.py").write_text("")
        mod = tmp_path / "main.py"
        resolved = resolve_python(str(mod), ".", ["helpers"])
        assert resolved == [str((tmp_path / "helpers.py").resolve())]

    def test_unresolvable(self, tmp_path: Path):
        assert resolve_python(str(tmp_path / "main.py"), ".nothing", []) == []


class TestDependencyGraph:
    def test_reverse_is_inverse_of_forward(self, js_project: Path):
        graph = DependencyGraphBuilder().build_from_roots(js_project).graph
        for path in graph.files():
            for edge in graph.forward(path):
                assert edge in graph.reverse(edge.target)
            for edge in graph.reverse(path):
                assert edge in graph.forward(edge.source)

    def test_parallel_edges_are_kept(self):
        graph = DependencyGraph()
        graph.add_edge(_edge("a", "b"))
        graph.add_edge(_edge("a", "b", EdgeKind.PACKAGE))
        assert len(graph.forward("a")) == 2
        assert graph.dependencies("a") == ["b"]

    def test_no_cycle(self):
        graph = DependencyGraph()
        graph.add_edge(_edge("a", "b"))
        graph.add_edge(_edge("b", "c"))
        assert not graph.has_cycle()
        assert graph.find_cycles() == []

    def test_diamond_is_not_a_cycle(self):
        graph = DependencyGraph()
        for s, t in [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]:
            graph.add_edge(_edge(s, t))
        assert graph.find_cycles() == []

    def test_simple_cycle(self):
        graph = DependencyGraph()
        graph.add_edge(_edge("a", "b"))
        graph.add_edge(_edge("b", "a"))
        cycles = graph.find_cycles()
        assert graph.has_cycle()
        assert len(cycles) == 1
        assert cycles[0].nodes == ["a", "b", "a"]
        assert cycles[0].length == 2
        assert cycles[0].severity == "low"

    def test_self_import(self):
        graph = DependencyGraph()
        graph.add_edge(_edge("a", "a"))
        assert graph.find_cycles()[0].nodes == ["a", "a"]

    def test_cycle_severity(self):
        assert Cycle(nodes=list("abcda")).severity == "medium"
        assert Cycle(nodes=list("abcdefgha")).severity == "high"

    def test_stats(self, js_project: Path):
        graph = DependencyGraphBuilder().build_from_roots(js_project).graph
        stats = graph.stats()
        assert stats["files"] == 5
        assert stats["edges"] == 3
        assert stats["cycles"] == 0
        assert stats["external_imports"] == 2
        top_path, top_count = stats["most_depended_on"][0]
        assert top_path == _path(js_project, "src/auth.js")
        assert top_count == 2


class TestExport:
    def test_json_round_trip(self, js_project: Path):
        graph = DependencyGraphBuilder().build_from_roots(js_project).graph
        restored = DependencyGraph.from_json(graph.export("json"))
        assert restored.same_structure(graph)
        assert graph.same_structure(restored)

    def test_json_shape(self, two_file_project: Path):
        graph = DependencyGraphBuilder().build_from_roots(two_file_project).graph
        data = json.loads(graph.export("json"))
        assert data["version"] == 1
        assert len(data["files"]) == 2
        assert data["edges"][0]["kind"] == "import"
        assert data["edges"][0]["classification"] == "internal"

    def test_dot(self, two_file_project: Path):
        graph = DependencyGraphBuilder().build_from_roots(two_file_project).graph
        dot = graph.export("dot", relative_to=str(two_file_project.resolve()))
        assert dot.startswith("digraph dependencies {")
        assert '"a.js" -> "b.js" [label="import"];' in dot
        assert dot.rstrip().endswith("}")

    def test_csv(self, two_file_project: Path):
        graph = DependencyGraphBuilder().build_from_roots(two_file_project).graph
        text = graph.export("CSV", relative_to=str(two_file_project.resolve()))
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[0] == ["from_file", "to_file", "dependency_type", "classification"]
        assert rows[1] == ["a.js", "b.js", "import", "internal"]

    def test_unknown_format(self):
        with pytest.raises(ExportFormatError):
            DependencyGraph().export("yaml")

    def test_malformed_json(self):
        with pytest.raises(GraphError):
            DependencyGraph.from_json("{not json")
        with pytest.raises(GraphError):
            DependencyGraph.from_dict({"files": [{"no_path": 1}], "edges": []})
