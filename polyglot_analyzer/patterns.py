"""Architectural pattern and anti-pattern detection over a finished graph."""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, FrozenSet, Iterable, List, Set

from .graph import DependencyGraph
from .models import DependencyEdge, InterfaceDescriptor, Pattern, Recommendation

logger = logging.getLogger(__name__)

RECOMMENDATIONS = {
    "microservices": "Consider API documentation and service contracts",
    "api-layer": "Ensure proper API documentation and versioning",
    "shared-library": "Consider packaging as a proper library with clear interfaces",
    "communication-pattern": "Document communication protocols and error handling",
    "cross-language-circular-dependency": (
        "Break circular dependencies by introducing interfaces or event-driven patterns"
    ),
}

CROSS_LANGUAGE_EDGE_LIMIT = 10
INTERFACE_TYPE_LIMIT = 3


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------

def find_clusters(graph: DependencyGraph) -> List[List[str]]:
    """Weakly connected groups of two or more nodes joined by same-language edges."""
    neighbours: Dict[str, Set[str]] = defaultdict(set)
    for edge in graph.edges:
        if edge.cross_language:
            continue
        neighbours[edge.source].add(edge.target)
        neighbours[edge.target].add(edge.source)

    clusters = []
    visited: Set[str] = set()
    for node_id in sorted(graph.nodes):
        if node_id in visited:
            continue
        cluster = []
        stack = [node_id]
        visited.add(node_id)
        while stack:
            current = stack.pop()
            cluster.append(current)
            for nxt in sorted(neighbours[current]):
                if nxt not in visited:
                    visited.add(nxt)
                    stack.append(nxt)
        if len(cluster) > 1:
            clusters.append(sorted(cluster))
    return clusters


def find_cycles(graph: DependencyGraph) -> List[List[DependencyEdge]]:
    """Depth-first cycle search over every edge; each cycle is reported once."""
    adjacency: Dict[str, List[DependencyEdge]] = defaultdict(list)
    for edge in graph.edges:
        adjacency[edge.source].append(edge)

    cycles: List[List[DependencyEdge]] = []
    seen: Set[FrozenSet[int]] = set()
    visited: Set[str] = set()

    for start in sorted(graph.nodes):
        if start in visited:
            continue
        visited.add(start)
        # (node, index of next outgoing edge); path_edges[i] enters stack[i + 1]
        stack = [(start, 0)]
        on_stack = {start: 0}
        path_edges: List[DependencyEdge] = []
        while stack:
            node, idx = stack[-1]
            out = adjacency[node]
            if idx >= len(out):
                stack.pop()
                del on_stack[node]
                if path_edges:
                    path_edges.pop()
                continue
            stack[-1] = (node, idx + 1)
            edge = out[idx]
            if edge.target in on_stack:
                cycle = path_edges[on_stack[edge.target]:] + [edge]
                key = frozenset(id(e) for e in cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif edge.target not in visited:
                visited.add(edge.target)
                on_stack[edge.target] = len(stack)
                stack.append((edge.target, 0))
                path_edges.append(edge)
    return cycles


# ---------------------------------------------------------------------------
# Detector passes
# ---------------------------------------------------------------------------

def detect_microservices(graph: DependencyGraph) -> List[Pattern]:
    clusters = find_clusters(graph)
    if len(clusters) <= 1:
        return []
    cluster_of = {node: i for i, members in enumerate(clusters) for node in members}
    cross_cluster = [
        e for e in graph.cross_language_edges
        if cluster_of.get(e.source, e.source) != cluster_of.get(e.target, e.target)
    ]
    if not cross_cluster:
        return []
    confidence = max(
        0.1,
        min(0.8, len(clusters) * 0.2) - min(0.3, len(cross_cluster) * 0.05),
    )
    return [Pattern(
        type="microservices",
        confidence=round(confidence, 4),
        description="Microservices architecture detected with language-separated services",
        recommendation=RECOMMENDATIONS["microservices"],
        details={"clusters": len(clusters), "cross_language_dependencies": len(cross_cluster)},
    )]


def detect_api_layer(graph: DependencyGraph) -> List[Pattern]:
    candidates = []
    for node_id in sorted(graph.nodes):
        incoming = graph.incoming(node_id)
        if len(incoming) > 3 and any(e.cross_language for e in incoming):
            candidates.append(node_id)
    if not candidates:
        return []
    return [Pattern(
        type="api-layer",
        confidence=round(min(0.9, len(candidates) * 0.3), 4),
        description="API layer pattern detected with cross-language dependencies",
        recommendation=RECOMMENDATIONS["api-layer"],
        details={"files": candidates},
    )]


def detect_shared_libraries(graph: DependencyGraph) -> List[Pattern]:
    patterns = []
    for node_id in sorted(graph.nodes):
        outgoing = [e for e in graph.outgoing(node_id) if e.cross_language]
        if len(outgoing) > 2:
            patterns.append(Pattern(
                type="shared-library",
                confidence=round(min(0.9, len(outgoing) * 0.2), 4),
                description=f"Shared library pattern detected in {node_id}",
                recommendation=RECOMMENDATIONS["shared-library"],
                details={"file": node_id, "cross_language_dependents": len(outgoing)},
            ))
    return patterns


def detect_communication(graph: DependencyGraph) -> List[Pattern]:
    groups: Dict[str, List[DependencyEdge]] = defaultdict(list)
    for edge in graph.cross_language_edges:
        groups[edge.edge_type].append(edge)
    return [
        Pattern(
            type="communication-pattern",
            confidence=0.8,
            description=f"{edge_type} communication pattern detected across languages",
            recommendation=RECOMMENDATIONS["communication-pattern"],
            details={"subtype": edge_type, "connection_count": len(edges)},
        )
        for edge_type, edges in sorted(groups.items())
        if len(edges) > 1
    ]


def detect_anti_patterns(graph: DependencyGraph) -> List[Pattern]:
    return [
        Pattern(
            type="cross-language-circular-dependency",
            confidence=0.9,
            description="Circular dependency detected across language boundaries",
            recommendation=RECOMMENDATIONS["cross-language-circular-dependency"],
            severity="high",
            details={"cycle": [f"{e.source} -> {e.target}" for e in cycle]},
        )
        for cycle in find_cycles(graph)
        if any(e.cross_language for e in cycle)
    ]


DETECTOR_PASSES: List[Callable[[DependencyGraph], List[Pattern]]] = [
    detect_microservices,
    detect_api_layer,
    detect_shared_libraries,
    detect_communication,
    detect_anti_patterns,
]


def detect_patterns(graph: DependencyGraph, max_workers: int = len(DETECTOR_PASSES)) -> List[Pattern]:
    """Run every detector pass concurrently; output keeps pass order."""
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="patterns") as pool:
        futures = [pool.submit(detector, graph) for detector in DETECTOR_PASSES]
        patterns: List[Pattern] = []
        for detector, future in zip(DETECTOR_PASSES, futures):
            try:
                patterns.extend(future.result())
            except Exception as exc:
                logger.warning("Pattern detector %s failed: %s", detector.__name__, exc)
    return patterns


def generate_recommendations(
    graph: DependencyGraph,
    patterns: Iterable[Pattern],
    interfaces: Iterable[InterfaceDescriptor],
) -> List[Recommendation]:
    recommendations = []
    cross_count = len(graph.cross_language_edges)
    if cross_count > CROSS_LANGUAGE_EDGE_LIMIT:
        recommendations.append(Recommendation(
            type="architecture",
            priority="high",
            title="Consider Cross-Language Dependency Reduction",
            description=(
                f"Found {cross_count} cross-language dependencies. Consider consolidating "
                "related functionality within language boundaries."
            ),
            action="Refactor to reduce cross-language coupling",
        ))

    interface_types = sorted({i.interface_type for i in interfaces})
    if len(interface_types) > INTERFACE_TYPE_LIMIT:
        recommendations.append(Recommendation(
            type="standardization",
            priority="medium",
            title="Standardize Cross-Language Interfaces",
            description=(
                f"Multiple interface types detected: {', '.join(interface_types)}. "
                "Consider standardizing on fewer interface types."
            ),
            action="Define consistent API standards across languages",
        ))

    for pattern in patterns:
        if not pattern.recommendation:
            continue
        recommendations.append(Recommendation(
            type="pattern",
            priority=pattern.severity or "medium",
            title=f"{pattern.type} Pattern Recommendation",
            description=pattern.recommendation,
            action=f"Apply {pattern.type} best practices",
        ))
    return recommendations
