"""File dependency graph: import resolution, adjacency, cycles and export."""

from ctxintel.graph.builder import BuildResult, DependencyGraphBuilder, GraphOptions
from ctxintel.graph.dependency_graph import EXPORT_FORMATS, Cycle, DependencyGraph
from ctxintel.graph.models import Classification, DependencyEdge, EdgeKind, FileRecord

__all__ = [
    "EXPORT_FORMATS",
    "BuildResult",
    "Classification",
    "Cycle",
    "DependencyEdge",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "EdgeKind",
    "FileRecord",
    "GraphOptions",
]
