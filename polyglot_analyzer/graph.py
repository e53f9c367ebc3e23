"""Cross-language dependency graph construction."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .models import (
    DependencyEdge,
    DependencyNode,
    ExportInfo,
    ImportInfo,
    InterfaceDescriptor,
    ParseResult,
    SourceFile,
)

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    nodes: Dict[str, DependencyNode] = field(default_factory=dict)
    edges: List[DependencyEdge] = field(default_factory=list)
    cross_language_edges: List[DependencyEdge] = field(default_factory=list)

    def add_node(self, node: DependencyNode) -> None:
        self.nodes[node.id] = node

    def add_edge(
        self,
        source: str,
        target: str,
        edge_type: str,
        interface_type: Optional[str] = None,
        import_source: Optional[str] = None,
    ) -> DependencyEdge:
        """Create an edge between two existing nodes.

        Endpoint languages are copied from the nodes, which is what makes
        ``edge.cross_language`` agree with the graph.
        """
        edge = DependencyEdge(
            source=source,
            target=target,
            edge_type=edge_type,
            source_language=self.nodes[source].language,
            target_language=self.nodes[target].language,
            interface_type=interface_type,
            import_source=import_source,
        )
        self.edges.append(edge)
        if edge.cross_language:
            self.cross_language_edges.append(edge)
        return edge

    def outgoing(self, node_id: str) -> List[DependencyEdge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> List[DependencyEdge]:
        return [e for e in self.edges if e.target == node_id]

    def languages(self) -> List[str]:
        return sorted({n.language for n in self.nodes.values()})

    def summary(self) -> Dict[str, object]:
        return {
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "cross_language_edge_count": len(self.cross_language_edges),
            "languages": self.languages(),
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "nodes": [
                {
                    "id": node.id,
                    "language": node.language,
                    "exports": [e.name for e in node.exports],
                    "imports": [i.source for i in node.imports],
                }
                for node in self.nodes.values()
            ],
            "edges": [e.to_dict() for e in self.edges],
            "summary": self.summary(),
        }


# ===================================================================
# Import resolution
# ===================================================================

class ImportResolver(ABC):
    """Maps an import declaration to the id of a graph node."""

    @abstractmethod
    def resolve(
        self,
        import_info: ImportInfo,
        source_node: DependencyNode,
        nodes: Dict[str, DependencyNode],
    ) -> Optional[str]:
        ...


class SubstringImportResolver(ImportResolver):
    """Matches a normalized import source against node relative paths.

    This is a containment heuristic, not a module resolver. When several
    nodes match, the first id in sorted order wins and the ambiguity is
    logged.
    """

    @staticmethod
    def normalize(source: str, language: str) -> str:
        needle = source.strip()
        if language == "python":
            return needle.lstrip(".").replace(".", "/")
        while needle.startswith(("./", "../")):
            needle = needle[2:] if needle.startswith("./") else needle[3:]
        return needle

    def resolve(
        self,
        import_info: ImportInfo,
        source_node: DependencyNode,
        nodes: Dict[str, DependencyNode],
    ) -> Optional[str]:
        needle = self.normalize(import_info.source, source_node.language)
        if not needle:
            return None
        matches = sorted(
            node_id for node_id in nodes
            if node_id != source_node.id and needle in node_id
        )
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Ambiguous import '%s' in %s matches %d files (%s); using %s",
                import_info.source, source_node.id, len(matches),
                ", ".join(matches[:5]), matches[0],
            )
        return matches[0]


# ===================================================================
# Builder
# ===================================================================

def _exports_for(result: ParseResult) -> List[ExportInfo]:
    exports = [
        ExportInfo(
            name=fn.name,
            kind="function",
            signature={
                "parameters": list(fn.parameters),
                "is_async": fn.is_async,
                "line_start": fn.line_start,
            },
        )
        for fn in result.functions if fn.exported
    ]
    exports.extend(
        ExportInfo(name=cls.name, kind="class", signature={"methods": list(cls.methods)})
        for cls in result.classes if cls.exported
    )
    return exports


def _interfaces_related(a: InterfaceDescriptor, b: InterfaceDescriptor) -> bool:
    return a.interface_type == b.interface_type or (bool(a.path) and a.path == b.path)


class GraphBuilder:
    def __init__(self, resolver: Optional[ImportResolver] = None):
        self.resolver = resolver or SubstringImportResolver()

    def build(
        self,
        results: Iterable[Tuple[SourceFile, ParseResult]],
        interfaces: Iterable[InterfaceDescriptor] = (),
    ) -> DependencyGraph:
        graph = DependencyGraph()
        for source_file, result in results:
            if not result.success:
                continue
            graph.add_node(DependencyNode(
                id=source_file.relative_path,
                language=source_file.language,
                file=source_file,
                exports=_exports_for(result),
                imports=list(result.imports),
            ))

        self._add_import_edges(graph)
        self._add_interface_edges(graph, list(interfaces))
        logger.debug(
            "Built graph: %d nodes, %d edges (%d cross-language)",
            len(graph.nodes), len(graph.edges), len(graph.cross_language_edges),
        )
        return graph

    def _add_import_edges(self, graph: DependencyGraph) -> None:
        seen: Set[Tuple[str, str]] = set()
        for node_id in sorted(graph.nodes):
            node = graph.nodes[node_id]
            try:
                resolved = []
                for import_info in node.imports:
                    target = self.resolver.resolve(import_info, node, graph.nodes)
                    if target is not None and target in graph.nodes:
                        resolved.append((target, import_info.source))
            except Exception as exc:
                logger.warning("Import resolution failed for %s: %s", node_id, exc)
                continue
            for target, import_source in resolved:
                if (node_id, target) in seen:
                    continue
                seen.add((node_id, target))
                graph.add_edge(node_id, target, "import", import_source=import_source)

    def _add_interface_edges(self, graph: DependencyGraph, interfaces: List[InterfaceDescriptor]) -> None:
        seen: Set[Tuple[FrozenSet[str], str]] = set()
        for i, first in enumerate(interfaces):
            for second in interfaces[i + 1:]:
                if first.file == second.file:
                    continue
                if first.file not in graph.nodes or second.file not in graph.nodes:
                    continue
                if not _interfaces_related(first, second):
                    continue
                key = (frozenset((first.file, second.file)), first.interface_type)
                if key in seen:
                    continue
                seen.add(key)
                graph.add_edge(first.file, second.file, "interface", interface_type=first.interface_type)
