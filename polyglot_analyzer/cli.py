"""Typer-based CLI for multi-language project analysis."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .analyzer import AnalysisReport, ProjectAnalyzer
from .cli_cache import cache_app
from .cli_watch import watch
from .config_manager import ConfigError, load_analysis_config
from .discovery import DiscoveryError
from .graph_export import export_dot, export_html, export_json
from .models import SourceFile
from .parser import detect_language

console = Console()

app = typer.Typer(
    help="🔎 Polyglot Analyzer: fault-tolerant structure analysis for Python, JS, TS and Go.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(cache_app, name="cache")
app.command("watch")(watch)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"Polyglot Analyzer v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """Polyglot Analyzer: parse, recover, cache and map cross-language dependencies."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _open_analyzer(project_path: Path, no_cache: bool = False) -> ProjectAnalyzer:
    try:
        cfg = load_analysis_config(project_root=project_path)
    except ConfigError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(code=1)
    if no_cache:
        cfg.enabled = False
    return ProjectAnalyzer(project_path, analysis_config=cfg)


def _run_analysis(project_path: Path, no_cache: bool) -> AnalysisReport:
    with _open_analyzer(project_path, no_cache) as analyzer:
        try:
            return analyzer.analyze_directory()
        except DiscoveryError as exc:
            console.print(f"[red]✗[/red] {exc}")
            raise typer.Exit(code=1)


def _print_report(report: AnalysisReport) -> None:
    summary = report.graph.summary()
    console.print(
        Panel.fit(
            f"[bold]Files:[/bold] {summary['node_count']}   "
            f"[bold]Edges:[/bold] {summary['edge_count']}   "
            f"[bold]Cross-language:[/bold] {report.cross_language_edge_count}   "
            f"[bold]Failed:[/bold] {len(report.failed_files)}",
            title="📊 Analysis Summary",
            border_style="cyan",
        )
    )

    langs = Table(title="Languages", show_header=True)
    langs.add_column("Language", style="cyan")
    langs.add_column("Files", justify="right")
    for language, count in report.language_distribution.items():
        langs.add_row(language, str(count))
    console.print(langs)

    degraded = {p: r for p, r in report.results.items() if r.strategy != "primary"}
    if degraded:
        table = Table(title="Degraded Parses", show_header=True)
        table.add_column("File", style="cyan")
        table.add_column("Strategy")
        table.add_column("Confidence", justify="right")
        table.add_column("Error", style="dim")
        for path, result in sorted(degraded.items()):
            table.add_row(path, result.strategy, f"{result.confidence:.1f}", result.error or "")
        console.print(table)

    if report.patterns:
        table = Table(title="Patterns", show_header=True)
        table.add_column("Type", style="magenta")
        table.add_column("Confidence", justify="right")
        table.add_column("Description")
        for pattern in report.patterns:
            style = "red" if pattern.severity == "high" else ""
            table.add_row(
                f"[{style}]{pattern.type}[/{style}]" if style else pattern.type,
                f"{pattern.confidence:.2f}",
                pattern.description,
            )
        console.print(table)

    if report.recommendations:
        console.print("\n[bold]💡 Recommendations[/bold]")
        for rec in report.recommendations:
            console.print(f"  [yellow]{rec.priority.upper():>6}[/yellow]  {rec.title}: {rec.description}")

    for failed in report.failed_files:
        console.print(f"[red]✗[/red] {failed['file']}: {failed['error']}")


@app.command("analyze")
def analyze(
    project_path: Path = typer.Argument(Path("."), help="Project root to analyze."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the analysis cache."),
):
    """Analyze every supported file and report cross-language structure."""
    report = _run_analysis(project_path, no_cache)
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)


@app.command("parse")
def parse(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Source file to parse."),
    root: Optional[Path] = typer.Option(None, "--root", "-r", help="Project root (defaults to the file's directory)."),
    as_json: bool = typer.Option(False, "--json", help="Print the parse result as JSON."),
):
    """Parse a single file through the primary → recovery → fallback pipeline."""
    language = detect_language(str(file_path))
    if language is None:
        raise typer.BadParameter(f"Unsupported file type: {file_path.suffix}")

    project_root = (root or file_path.parent).resolve()
    resolved = file_path.resolve()
    try:
        relative = resolved.relative_to(project_root).as_posix()
    except ValueError:
        relative = resolved.name
    source = SourceFile(
        path=str(resolved),
        relative_path=relative,
        language=language,
        extension=resolved.suffix.lower(),
    )

    with _open_analyzer(project_root) as analyzer:
        result = analyzer.parse_file(source)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    table = Table(title=f"🧩 {relative}", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Language", language)
    table.add_row("Strategy", result.strategy)
    table.add_row("Confidence", f"{result.confidence:.1f}")
    table.add_row("Complexity", str(result.complexity))
    table.add_row("Functions", ", ".join(f.name for f in result.functions) or "-")
    table.add_row("Classes", ", ".join(c.name for c in result.classes) or "-")
    table.add_row("Imports", ", ".join(i.source for i in result.imports) or "-")
    if result.error:
        table.add_row("Error", f"[red]{result.error}[/red]")
    if result.warning:
        table.add_row("Warning", f"[yellow]{result.warning}[/yellow]")
    console.print(table)


@app.command("export")
def export(
    project_path: Path = typer.Argument(Path("."), help="Project root to analyze."),
    fmt: str = typer.Option("dot", "--format", "-f", help="Export format: dot, json or html."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path."),
    focus: str = typer.Option("", "--focus", help="Only export edges touching matching files."),
):
    """Export the dependency graph to Graphviz DOT, JSON or standalone HTML."""
    fmt = fmt.lower()
    if fmt not in {"dot", "json", "html"}:
        raise typer.BadParameter("Format must be one of: dot, json, html")

    report = _run_analysis(project_path, no_cache=False)
    if output is None:
        output = Path.cwd() / f"{project_path.resolve().name}_graph.{fmt}"

    if fmt == "dot":
        export_dot(report.graph, output, focus=focus)
    elif fmt == "json":
        export_json(report.graph, output, focus=focus)
    else:
        export_html(report.graph, output, focus=focus)

    typer.echo(f"Exported graph to {output}")
