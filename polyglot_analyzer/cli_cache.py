"""Cache management commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import config
from .cache import AnalysisCache, FileCacheStore
from .config_manager import ConfigError, load_analysis_config

console = Console()

cache_app = typer.Typer(help="🗄️  Inspect and maintain the analysis cache")


def _open_cache(project_root: Optional[Path] = None) -> AnalysisCache:
    try:
        cfg = load_analysis_config(project_root=project_root or Path.cwd())
    except ConfigError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(code=1)
    return AnalysisCache(cfg, store=FileCacheStore(config.CACHE_DIR))


@cache_app.command("stats")
def stats():
    """Show cache location, size and counters."""
    cache = _open_cache()
    counters = cache.get_stats()
    store = cache.store
    keys = list(store.keys())

    table = Table(title="Analysis Cache", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    if isinstance(store, FileCacheStore):
        table.add_row("Location", str(store.root))
    table.add_row("Enabled", "yes" if cache.enabled else "no")
    table.add_row("Max age", cache.config.cache_max_age)
    table.add_row("Max size", cache.config.cache_max_size)
    table.add_row("Entries", str(len(keys)))
    table.add_row("Size (bytes)", str(store.size()))
    for name in ("hits", "misses", "writes", "deletes", "errors"):
        table.add_row(name.capitalize(), str(int(counters[name])))
    table.add_row("Hit rate", f"{counters['hit_rate'] * 100:.2f}%")
    console.print(table)


@cache_app.command("clear")
def clear(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation.")):
    """Delete every cache entry."""
    if not yes and not typer.confirm("Delete all cached analysis results?"):
        raise typer.Exit(code=0)
    if _open_cache().clear():
        console.print("[green]✓[/green] Cache cleared.")
    else:
        console.print("[red]✗[/red] Could not clear cache.")
        raise typer.Exit(code=1)


@cache_app.command("invalidate-branch")
def invalidate_branch(branch: str = typer.Argument(..., help="Branch whose entries to delete.")):
    """Delete every entry recorded for BRANCH."""
    count = _open_cache().invalidate_branch(branch)
    console.print(f"[green]✓[/green] Invalidated {count} entr{'y' if count == 1 else 'ies'} for branch '{branch}'.")


@cache_app.command("invalidate-file")
def invalidate_file(
    file_path: Path = typer.Argument(..., help="File whose entries to delete."),
    root: Path = typer.Option(Path("."), "--root", "-r", help="Project root."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Only this branch."),
):
    """Delete cached results for one file (all branches unless --branch)."""
    count = _open_cache(root).invalidate_file(str(file_path), str(root), branch)
    console.print(f"[green]✓[/green] Invalidated {count} entr{'y' if count == 1 else 'ies'} for {file_path}.")


@cache_app.command("cleanup")
def cleanup():
    """Remove expired entries and evict least recently used ones over the size limit."""
    outcome = _open_cache().cleanup()
    console.print(
        f"[green]✓[/green] Removed {outcome['expired']} expired and {outcome['evicted']} "
        f"evicted entries; {outcome['remaining_bytes']} bytes remain."
    )
