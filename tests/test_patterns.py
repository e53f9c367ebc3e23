"""Tests for architectural pattern detection and recommendations."""

import pytest

from polyglot_analyzer.graph import DependencyGraph
from polyglot_analyzer.models import DependencyNode, InterfaceDescriptor, Pattern, SourceFile
from polyglot_analyzer.patterns import (
    RECOMMENDATIONS,
    detect_anti_patterns,
    detect_api_layer,
    detect_communication,
    detect_microservices,
    detect_patterns,
    detect_shared_libraries,
    find_clusters,
    find_cycles,
    generate_recommendations,
)


def _graph(nodes, edges, edge_type="import"):
    """Build a graph from ``{id: language}`` and ``[(source, target), ...]``."""
    graph = DependencyGraph()
    for node_id, language in nodes.items():
        graph.add_node(DependencyNode(
            id=node_id,
            language=language,
            file=SourceFile(path=node_id, relative_path=node_id, language=language, extension=""),
        ))
    for source, target in edges:
        graph.add_edge(source, target, edge_type)
    return graph


def test_two_node_cross_language_cycle():
    graph = _graph({"a.py": "python", "b.go": "go"}, [("a.py", "b.go"), ("b.go", "a.py")])

    anti = detect_anti_patterns(graph)
    assert len(anti) == 1
    assert anti[0].type == "cross-language-circular-dependency"
    assert anti[0].severity == "high"
    assert anti[0].confidence == pytest.approx(0.9)
    assert anti[0].details["cycle"] == ["a.py -> b.go", "b.go -> a.py"]


def test_same_language_cycle_is_not_an_anti_pattern():
    graph = _graph({"a.py": "python", "b.py": "python"}, [("a.py", "b.py"), ("b.py", "a.py")])

    assert len(find_cycles(graph)) == 1
    assert detect_anti_patterns(graph) == []


def test_three_node_cycle_found_once():
    graph = _graph(
        {"a.py": "python", "b.go": "go", "c.ts": "typescript"},
        [("a.py", "b.go"), ("b.go", "c.ts"), ("c.ts", "a.py")],
    )
    cycles = find_cycles(graph)
    assert len(cycles) == 1
    assert len(cycles[0]) == 3


def test_acyclic_graph_has_no_cycles():
    graph = _graph({"a.py": "python", "b.go": "go", "c.go": "go"}, [("a.py", "b.go"), ("b.go", "c.go")])
    assert find_cycles(graph) == []


def test_clusters_follow_same_language_edges():
    graph = _graph(
        {"a.py": "python", "b.py": "python", "x.go": "go", "y.go": "go", "lone.ts": "typescript"},
        [("a.py", "b.py"), ("y.go", "x.go"), ("a.py", "x.go")],
    )
    assert find_clusters(graph) == [["a.py", "b.py"], ["x.go", "y.go"]]


def test_microservices_confidence():
    graph = _graph(
        {"a.py": "python", "b.py": "python", "x.go": "go", "y.go": "go"},
        [("a.py", "b.py"), ("x.go", "y.go"), ("a.py", "x.go"), ("b.py", "y.go")],
    )
    patterns = detect_microservices(graph)

    assert len(patterns) == 1
    # min(0.8, 2 * 0.2) - min(0.3, 2 * 0.05)
    assert patterns[0].confidence == pytest.approx(0.3)
    assert patterns[0].details == {"clusters": 2, "cross_language_dependencies": 2}


def test_microservices_needs_two_clusters():
    graph = _graph({"a.py": "python", "b.py": "python", "x.go": "go"}, [("a.py", "b.py"), ("a.py", "x.go")])
    assert detect_microservices(graph) == []


def test_api_layer():
    nodes = {"api.go": "go", "a.py": "python", "b.go": "go", "c.go": "go", "d.go": "go"}
    edges = [(src, "api.go") for src in ["a.py", "b.go", "c.go", "d.go"]]
    patterns = detect_api_layer(_graph(nodes, edges))

    assert len(patterns) == 1
    assert patterns[0].details["files"] == ["api.go"]
    assert patterns[0].confidence == pytest.approx(0.3)


def test_api_layer_requires_cross_language_caller():
    nodes = {"api.go": "go", "a.go": "go", "b.go": "go", "c.go": "go", "d.go": "go"}
    edges = [(src, "api.go") for src in ["a.go", "b.go", "c.go", "d.go"]]
    assert detect_api_layer(_graph(nodes, edges)) == []


def test_shared_library():
    nodes = {"lib.py": "python", "a.go": "go", "b.ts": "typescript", "c.js": "javascript"}
    edges = [("lib.py", target) for target in ["a.go", "b.ts", "c.js"]]
    patterns = detect_shared_libraries(_graph(nodes, edges))

    assert len(patterns) == 1
    assert patterns[0].details == {"file": "lib.py", "cross_language_dependents": 3}
    assert patterns[0].confidence == pytest.approx(0.6)


def test_communication_pattern():
    graph = _graph(
        {"a.py": "python", "b.go": "go", "c.ts": "typescript"},
        [("a.py", "b.go"), ("b.go", "c.ts")],
        edge_type="interface",
    )
    patterns = detect_communication(graph)

    assert len(patterns) == 1
    assert patterns[0].confidence == pytest.approx(0.8)
    assert patterns[0].details == {"subtype": "interface", "connection_count": 2}


def test_detect_patterns_keeps_pass_order():
    graph = _graph(
        {"a.py": "python", "b.go": "go"},
        [("a.py", "b.go"), ("b.go", "a.py")],
    )
    types = [p.type for p in detect_patterns(graph)]
    assert types == ["communication-pattern", "cross-language-circular-dependency"]


# ===========================================================================
# Recommendations
# ===========================================================================

def test_recommendation_per_pattern():
    graph = _graph({"a.py": "python"}, [])
    patterns = [
        Pattern(type="api-layer", confidence=0.3, description="", recommendation=RECOMMENDATIONS["api-layer"]),
        Pattern(type="cross-language-circular-dependency", confidence=0.9, description="",
                recommendation="Break it", severity="high"),
    ]
    recs = generate_recommendations(graph, patterns, [])

    assert [(r.type, r.priority) for r in recs] == [("pattern", "medium"), ("pattern", "high")]
    assert recs[0].description == RECOMMENDATIONS["api-layer"]


def test_architecture_recommendation_for_many_cross_language_edges():
    nodes = {f"n{i}.py": "python" for i in range(11)}
    nodes["hub.go"] = "go"
    graph = _graph(nodes, [(f"n{i}.py", "hub.go") for i in range(11)])

    recs = generate_recommendations(graph, [], [])
    assert [(r.type, r.priority) for r in recs] == [("architecture", "high")]


def test_standardization_recommendation_for_many_interface_types():
    interfaces = [
        InterfaceDescriptor(language="x", file="f", interface_type=kind)
        for kind in ["rest-api", "grpc", "graphql", "typescript-interface"]
    ]
    recs = generate_recommendations(_graph({}, []), [], interfaces)

    assert [(r.type, r.priority) for r in recs] == [("standardization", "medium")]
