"""Dependency graph export helpers for DOT, JSON and simple standalone HTML."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from .graph import DependencyGraph
from .models import DependencyEdge

LANGUAGE_COLORS = {
    "python": "#3572A5",
    "javascript": "#f1e05a",
    "typescript": "#3178c6",
    "go": "#00ADD8",
}


def export_dot(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    selected = _focused_subgraph(graph, focus)

    lines = ["digraph Dependencies {"]
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box, style=filled];")

    for node_id in selected["nodes"]:
        node = graph.nodes[node_id]
        color = LANGUAGE_COLORS.get(node.language, "#cccccc")
        label = f"{node.language}\\n{node_id}"
        lines.append(f'  "{_esc(node_id)}" [label="{_esc(label)}", fillcolor="{color}"];')

    for edge in selected["edges"]:
        label = edge.interface_type or edge.edge_type
        style = ', style=bold, color="red"' if edge.cross_language else ""
        lines.append(
            f'  "{_esc(edge.source)}" -> "{_esc(edge.target)}" [label="{_esc(label)}"{style}];'
        )

    lines.append("}")
    output_file.write_text("\n".join(lines), encoding="utf-8")


def export_json(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    output_file.write_text(json.dumps(_payload(graph, focus), indent=2), encoding="utf-8")


def export_html(graph: DependencyGraph, output_file: Path, focus: str = "") -> None:
    payload = _payload(graph, focus)
    output_file.write_text(_basic_html_export(payload), encoding="utf-8")


def _payload(graph: DependencyGraph, focus: str) -> Dict[str, object]:
    selected = _focused_subgraph(graph, focus)
    return {
        "nodes": [
            {
                "id": node_id,
                "language": graph.nodes[node_id].language,
                "exports": [e.name for e in graph.nodes[node_id].exports],
            }
            for node_id in selected["nodes"]
        ],
        "edges": [e.to_dict() for e in selected["edges"]],
        "summary": graph.summary(),
    }


def _basic_html_export(graph_payload: dict) -> str:
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Dependency Graph</title>
  <style>
    body {{ font-family: ui-monospace, SFMono-Regular, Menlo, monospace; margin: 20px; }}
    #container {{ display: grid; grid-template-columns: 1fr 1fr; gap: 18px; }}
    .panel {{ border: 1px solid #ddd; border-radius: 8px; padding: 10px; }}
    ul {{ list-style: none; padding: 0; margin: 0; }}
    li {{ margin: 4px 0; }}
    .cross {{ color: #c0392b; font-weight: bold; }}
  </style>
</head>
<body>
  <h1>Dependency Graph</h1>
  <div id="container">
    <div class="panel">
      <h2>Files</h2>
      <ul id="nodes"></ul>
    </div>
    <div class="panel">
      <h2>Dependencies</h2>
      <ul id="edges"></ul>
    </div>
  </div>
  <script>
    const graph = {json.dumps(graph_payload)};
    const nodesEl = document.getElementById('nodes');
    const edgesEl = document.getElementById('edges');
    graph.nodes.forEach(n => {{
      const li = document.createElement('li');
      li.textContent = `${{n.id}} (${{n.language}})`;
      nodesEl.appendChild(li);
    }});
    graph.edges.forEach(e => {{
      const li = document.createElement('li');
      li.textContent = `${{e.source}} --${{e.type}}--> ${{e.target}}`;
      if (e.cross_language) li.className = 'cross';
      edgesEl.appendChild(li);
    }});
  </script>
</body>
</html>
"""


def _focused_subgraph(graph: DependencyGraph, focus: str) -> Dict[str, List]:
    if not focus:
        return {"nodes": sorted(graph.nodes), "edges": list(graph.edges)}

    focus_ids = {node_id for node_id in graph.nodes if focus in node_id}
    if not focus_ids:
        return {"nodes": sorted(graph.nodes), "edges": list(graph.edges)}

    edge_subset: List[DependencyEdge] = [
        e for e in graph.edges if e.source in focus_ids or e.target in focus_ids
    ]
    node_subset = set(focus_ids)
    for e in edge_subset:
        node_subset.add(e.source)
        node_subset.add(e.target)
    return {"nodes": sorted(node_subset), "edges": edge_subset}


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
