"""Tests for graph export formats."""

import json
from pathlib import Path

from conftest import make_result
from polyglot_analyzer.graph import GraphBuilder
from polyglot_analyzer.graph_export import export_dot, export_html, export_json
from polyglot_analyzer.models import SourceFile


def _graph():
    files = [
        ("app.py", "python"),
        ("gateway.go", "go"),
        ("models.py", "python"),
        ("web/view.js", "javascript"),
    ]
    results = {
        "app.py": make_result(imports=["gateway", "models"], functions=["main"]),
        "gateway.go": make_result(),
        "models.py": make_result(),
        "web/view.js": make_result(),
    }
    return GraphBuilder().build([
        (SourceFile(path=name, relative_path=name, language=lang, extension=""), results[name])
        for name, lang in files
    ])


def test_export_dot(temp_dir: Path):
    output = temp_dir / "graph.dot"
    export_dot(_graph(), output)
    content = output.read_text(encoding="utf-8")

    assert content.startswith("digraph Dependencies {")
    assert content.rstrip().endswith("}")
    assert '"app.py" -> "gateway.go" [label="import", style=bold, color="red"];' in content
    assert '"app.py" -> "models.py" [label="import"];' in content
    assert 'fillcolor="#00ADD8"' in content


def test_export_json(temp_dir: Path):
    output = temp_dir / "graph.json"
    export_json(_graph(), output)
    payload = json.loads(output.read_text(encoding="utf-8"))

    assert [n["id"] for n in payload["nodes"]] == ["app.py", "gateway.go", "models.py", "web/view.js"]
    assert payload["nodes"][0]["exports"] == ["main"]
    assert payload["summary"]["cross_language_edge_count"] == 1
    assert {(e["source"], e["target"], e["cross_language"]) for e in payload["edges"]} == {
        ("app.py", "gateway.go", True),
        ("app.py", "models.py", False),
    }


def test_focus_limits_edges_and_nodes(temp_dir: Path):
    output = temp_dir / "graph.json"
    export_json(_graph(), output, focus="gateway")
    payload = json.loads(output.read_text(encoding="utf-8"))

    assert [n["id"] for n in payload["nodes"]] == ["app.py", "gateway.go"]
    assert len(payload["edges"]) == 1


def test_unknown_focus_exports_everything(temp_dir: Path):
    output = temp_dir / "graph.json"
    export_json(_graph(), output, focus="nothing-matches")
    payload = json.loads(output.read_text(encoding="utf-8"))

    assert len(payload["nodes"]) == 4


def test_export_html(temp_dir: Path):
    output = temp_dir / "graph.html"
    export_html(_graph(), output)
    content = output.read_text(encoding="utf-8")

    assert "<title>Dependency Graph</title>" in content
    assert '"gateway.go"' in content
