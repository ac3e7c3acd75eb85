"""The canonical file dependency graph.

Wraps a ``networkx.MultiDiGraph`` keyed by absolute file path. Several edges
may connect the same pair of files (an ``import`` edge and a ``package``
edge, or two imports of the same module), so a multigraph keeps every one.
Forward adjacency is the out-edges of a node and reverse adjacency is its
in-edges, which makes the reverse view the exact inverse of the forward one.

Conversion to plain data only happens at the export/import boundary.
"""

from __future__ import annotations

import csv
import io
import json
import os
from collections import Counter
from dataclasses import dataclass
from itertools import count
from typing import Any

import networkx as nx

from ctxintel.exceptions import ExportFormatError, GraphError
from ctxintel.graph.models import DependencyEdge, EdgeKind

EXPORT_FORMATS = ("json", "dot", "csv")
JSON_VERSION = 1

_ON_PATH = 1
_DONE = 2


@dataclass
class Cycle:
    """A dependency cycle, listed as a closed path (first node repeated last)."""

    nodes: list[str]

    @property
    def length(self) -> int:
        return len(self.nodes) - 1

    @property
    def severity(self) -> str:
        if self.length <= 3:
            return "low"
        if self.length <= 6:
            return "medium"
        return "high"


class DependencyGraph:
    """Forward and reverse file adjacency with cycle detection and export."""

    def __init__(self) -> None:
        self.graph = nx.MultiDiGraph()
        self._seq = count()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_file(self, path: str, **attrs: Any) -> None:
        if path in self.graph:
            self.graph.nodes[path].update(attrs)
        else:
            self.graph.add_node(path, **attrs)

    def add_edge(self, edge: DependencyEdge) -> None:
        """Add a resolved edge. Both endpoints become nodes."""
        if edge.source not in self.graph:
            self.add_file(edge.source)
        if edge.target not in self.graph:
            self.add_file(edge.target)
        self.graph.add_edge(edge.source, edge.target, edge=edge, seq=next(self._seq))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, path: object) -> bool:
        return path in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def files(self) -> list[str]:
        return list(self.graph.nodes)

    def file_attrs(self, path: str) -> dict[str, Any]:
        return dict(self.graph.nodes[path]) if path in self.graph else {}

    def edges(self) -> list[DependencyEdge]:
        """All edges in insertion order."""
        data = sorted(self.graph.edges(data=True), key=lambda e: e[2]["seq"])
        return [d["edge"] for _, _, d in data]

    def forward(self, path: str) -> list[DependencyEdge]:
        """Edges from ``path`` to the files it depends on, in import order."""
        if path not in self.graph:
            return []
        data = sorted(self.graph.out_edges(path, data=True), key=lambda e: e[2]["seq"])
        return [d["edge"] for _, _, d in data]

    def reverse(self, path: str) -> list[DependencyEdge]:
        """Edges into ``path`` from the files that depend on it."""
        if path not in self.graph:
            return []
        data = sorted(self.graph.in_edges(path, data=True), key=lambda e: e[2]["seq"])
        return [d["edge"] for _, _, d in data]

    def dependencies(self, path: str) -> list[str]:
        return list(dict.fromkeys(e.target for e in self.forward(path)))

    def dependents(self, path: str) -> list[str]:
        return list(dict.fromkeys(e.source for e in self.reverse(path)))

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def has_cycle(self) -> bool:
        return bool(self._walk_cycles(stop_at_first=True))

    def find_cycles(self) -> list[Cycle]:
        """Cycles found by one depth-first pass, each reported once."""
        return self._walk_cycles(stop_at_first=False)

    def _walk_cycles(self, stop_at_first: bool) -> list[Cycle]:
        # Iterative DFS with an explicit path stack. A cycle is a back edge to
        # a node still on the current path, not merely an already visited one.
        state: dict[str, int] = {}
        cycles: list[Cycle] = []
        seen: set[tuple[str, ...]] = set()

        for start in self.graph.nodes:
            if start in state:
                continue
            state[start] = _ON_PATH
            path = [start]
            stack = [(start, iter(self.dependencies(start)))]

            while stack:
                node, successors = stack[-1]
                nxt = next(successors, None)
                if nxt is None:
                    stack.pop()
                    path.pop()
                    state[node] = _DONE
                    continue

                status = state.get(nxt)
                if status == _ON_PATH:
                    loop = path[path.index(nxt):]
                    pivot = loop.index(min(loop))
                    key = tuple(loop[pivot:] + loop[:pivot])
                    if key not in seen:
                        seen.add(key)
                        cycles.append(Cycle(nodes=loop + [nxt]))
                        if stop_at_first:
                            return cycles
                elif status is None:
                    state[nxt] = _ON_PATH
                    path.append(nxt)
                    stack.append((nxt, iter(self.dependencies(nxt))))

        return cycles

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self, top: int = 10) -> dict[str, Any]:
        edges = self.edges()
        kinds = Counter(e.kind.value for e in edges)
        classes = Counter(e.classification.value for e in edges)
        in_degree = Counter({path: len(self.dependents(path)) for path in self.graph.nodes})
        externals = sum(len(self.graph.nodes[n].get("externals", [])) for n in self.graph.nodes)
        return {
            "files": self.graph.number_of_nodes(),
            "edges": len(edges),
            "edge_kinds": dict(kinds),
            "classifications": dict(classes),
            "external_imports": externals,
            "most_depended_on": [
                (path, n) for path, n in in_degree.most_common(top) if n > 0
            ],
            "cycles": len(self.find_cycles()),
        }

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export(self, fmt: str, relative_to: str | None = None) -> str:
        """Serialize the graph as ``json``, ``dot`` or ``csv``.

        ``relative_to`` shortens paths in dot/csv output. JSON always keeps
        absolute paths so :meth:`from_json` rebuilds the same graph.
        """
        fmt = fmt.lower()
        if fmt == "json":
            return json.dumps(self.to_dict(), indent=2)
        if fmt == "dot":
            return self._to_dot(relative_to)
        if fmt == "csv":
            return self._to_csv(relative_to)
        raise ExportFormatError(fmt, EXPORT_FORMATS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": JSON_VERSION,
            "files": [{"path": path, **attrs} for path, attrs in self.graph.nodes(data=True)],
            "edges": [edge.model_dump(mode="json") for edge in self.edges()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DependencyGraph":
        graph = cls()
        try:
            for entry in data["files"]:
                attrs = dict(entry)
                graph.add_file(attrs.pop("path"), **attrs)
            for raw in data["edges"]:
                graph.add_edge(DependencyEdge.model_validate(raw))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise GraphError(f"Malformed dependency graph data: {e}") from e
        return graph

    @classmethod
    def from_json(cls, text: str) -> "DependencyGraph":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GraphError(f"Dependency graph JSON is invalid: {e}") from e
        return cls.from_dict(data)

    def same_structure(self, other: "DependencyGraph") -> bool:
        """True when both graphs have the same files and the same ordered edges."""
        return (
            sorted(self.files()) == sorted(other.files())
            and all(self.forward(p) == other.forward(p) for p in self.files())
        )

    def _label(self, path: str, relative_to: str | None) -> str:
        if relative_to:
            return os.path.relpath(path, relative_to)
        return path

    def _to_dot(self, relative_to: str | None) -> str:
        lines = ["digraph dependencies {", "  rankdir=LR;", "  node [shape=box];"]
        for path in self.graph.nodes:
            lines.append(f"  {json.dumps(self._label(path, relative_to))};")
        for edge in self.edges():
            style = ", style=dashed" if edge.kind == EdgeKind.PACKAGE else ""
            lines.append(
                f"  {json.dumps(self._label(edge.source, relative_to))} -> "
                f"{json.dumps(self._label(edge.target, relative_to))} "
                f'[label="{edge.kind.value}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines) + "\n"

    def _to_csv(self, relative_to: str | None) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["from_file", "to_file", "dependency_type", "classification"])
        for edge in self.edges():
            writer.writerow([
                self._label(edge.source, relative_to),
                self._label(edge.target, relative_to),
                edge.kind.value,
                edge.classification.value,
            ])
        return buf.getvalue()

