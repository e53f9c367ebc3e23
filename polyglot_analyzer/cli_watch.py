"""Watch mode: invalidate cached analysis when source files change."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Set

import typer
from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from . import config
from .cache import AnalysisCache, FileCacheStore
from .config_manager import ConfigError, load_analysis_config
from .parser import LANGUAGE_MAP

console = Console()


class CacheInvalidationHandler(FileSystemEventHandler):
    """Collects changed source files and invalidates them after a debounce window."""

    def __init__(
        self,
        cache: AnalysisCache,
        project_root: Path,
        debounce_seconds: float = 2.0,
        on_invalidate: Callable[[Path, int], None] = lambda path, count: None,
    ):
        super().__init__()
        self.cache = cache
        self.project_root = Path(project_root).resolve()
        self.debounce_seconds = debounce_seconds
        self.on_invalidate = on_invalidate
        self.last_flush = time.time()
        self._pending: Set[str] = set()
        self._lock = threading.Lock()

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)
        for raw in paths:
            self._track(Path(raw))
        if time.time() - self.last_flush >= self.debounce_seconds:
            self.flush()

    def _track(self, file_path: Path) -> None:
        if file_path.suffix.lower() not in LANGUAGE_MAP:
            return
        # Skip hidden/temp files
        try:
            relative = file_path.resolve().relative_to(self.project_root)
        except ValueError:
            return
        if any(part.startswith(".") for part in relative.parts):
            return
        with self._lock:
            self._pending.add(str(file_path))

    def flush(self) -> int:
        with self._lock:
            files = sorted(self._pending)
            self._pending.clear()
            self.last_flush = time.time()

        total = 0
        for f in files:
            count = self.cache.invalidate_file(f, str(self.project_root))
            total += count
            self.on_invalidate(Path(f), count)
        return total


def watch(
    path: Path = typer.Argument(Path("."), help="Project root to watch for changes."),
    interval: float = typer.Option(2.0, "--interval", "-i", help="Debounce interval in seconds."),
):
    """👀 Watch a project and invalidate cached results for changed files.

    Example:
      polyglot watch
      polyglot watch ./services --interval 5
    """
    watch_path = path.resolve()
    if not watch_path.is_dir():
        console.print(f"[red]✗[/red] Path not found: {path}")
        raise typer.Exit(1)

    try:
        cfg = load_analysis_config(project_root=watch_path)
    except ConfigError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)
    cache = AnalysisCache(cfg, store=FileCacheStore(config.CACHE_DIR))

    def report(file_path: Path, count: int) -> None:
        console.print(f"  [green]✓[/green] {file_path.name} changed, {count} cache entr{'y' if count == 1 else 'ies'} invalidated")

    handler = CacheInvalidationHandler(cache, watch_path, debounce_seconds=interval, on_invalidate=report)

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{watch_path}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {interval}s")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    observer = Observer()
    observer.schedule(handler, str(watch_path), recursive=True)
    observer.start()

    try:
        while True:
            time.sleep(1)
            if time.time() - handler.last_flush >= interval:
                handler.flush()
    except KeyboardInterrupt:
        observer.stop()
        console.print("\n[yellow]Stopped watching.[/yellow]")

    observer.join()
