"""Project-level analysis: parse every file, then build graph and patterns."""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import config
from .cache import AnalysisCache, detect_git_branch, detect_git_commit
from .config_manager import AnalysisConfig, load_analysis_config
from .discovery import discover_source_files
from .graph import DependencyGraph, GraphBuilder, ImportResolver
from .interfaces import extract_interfaces
from .models import InterfaceDescriptor, ParseResult, Pattern, Recommendation, SourceFile
from .orchestrator import EventCallback, ParseOrchestrator
from .parser import ParserRegistry
from .patterns import detect_patterns, generate_recommendations

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    graph: DependencyGraph
    interfaces: List[InterfaceDescriptor] = field(default_factory=list)
    patterns: List[Pattern] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    language_distribution: Dict[str, int] = field(default_factory=dict)
    cross_language_edge_count: int = 0
    failed_files: List[Dict[str, str]] = field(default_factory=list)
    results: Dict[str, ParseResult] = field(default_factory=dict)

    @property
    def anti_patterns(self) -> List[Pattern]:
        return [p for p in self.patterns if p.severity == "high"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph": self.graph.to_dict(),
            "interfaces": [asdict(i) for i in self.interfaces],
            "patterns": [asdict(p) for p in self.patterns],
            "recommendations": [asdict(r) for r in self.recommendations],
            "language_distribution": dict(self.language_distribution),
            "cross_language_edge_count": self.cross_language_edge_count,
            "failed_files": list(self.failed_files),
            "strategies": {path: r.strategy for path, r in self.results.items()},
        }


class ProjectAnalyzer:
    """Cache-aware, parallel multi-language analysis of one project.

    Example:
        >>> analyzer = ProjectAnalyzer(Path("."))
        >>> report = analyzer.analyze_directory()
    """

    def __init__(
        self,
        project_root: Path,
        analysis_config: Optional[AnalysisConfig] = None,
        registry: Optional[ParserRegistry] = None,
        orchestrator: Optional[ParseOrchestrator] = None,
        cache: Optional[AnalysisCache] = None,
        resolver: Optional[ImportResolver] = None,
        branch: Optional[str] = None,
        commit_hash: Optional[str] = None,
        max_workers: int = config.MAX_WORKERS,
        on_event: Optional[EventCallback] = None,
    ):
        self.project_root = Path(project_root).expanduser().resolve()
        self.config = analysis_config or load_analysis_config(project_root=self.project_root)
        self.registry = registry or ParserRegistry.default()
        self.orchestrator = orchestrator or ParseOrchestrator(on_event=on_event)
        self.cache = cache or AnalysisCache(self.config)
        self.graph_builder = GraphBuilder(resolver)
        self.branch = branch or detect_git_branch(self.project_root)
        self.commit_hash = commit_hash if commit_hash is not None else detect_git_commit(self.project_root)
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def parse_file(self, file: SourceFile, content: Optional[str] = None) -> ParseResult:
        """Parse one file, consulting the cache first.

        Cache entries are keyed on the text actually parsed, so passing an
        edited *content* for a file that exists on disk neither reads nor
        replaces the entry for the saved version.

        Raises ``OSError`` only when *content* is omitted and the file
        cannot be read.
        """
        on_disk = Path(file.path).is_file()
        if content is None:
            content = Path(file.path).read_text(encoding="utf-8", errors="replace")

        root = str(self.project_root)
        if on_disk:
            cached = self.cache.get(file.path, root, self.branch, self.commit_hash, content=content)
            if cached is not None:
                logger.debug("Cache hit for %s", file.relative_path)
                return cached

        parser = self.registry.get_parser(file.language)
        result = self.orchestrator.parse(file.path, content, file.language, parser)

        if on_disk and result.strategy != "empty":
            self.cache.set(file.path, root, result, self.branch, self.commit_hash, content=content)
        return result

    def _process(self, file: SourceFile) -> Tuple[SourceFile, ParseResult, List[InterfaceDescriptor]]:
        result = self.parse_file(file)
        return file, result, extract_interfaces(result, file)

    # ------------------------------------------------------------------
    # Whole project
    # ------------------------------------------------------------------

    def analyze_project(self, files: Iterable[SourceFile]) -> AnalysisReport:
        files = list(files)
        parsed: List[Tuple[SourceFile, ParseResult]] = []
        interfaces: List[InterfaceDescriptor] = []
        failed: List[Dict[str, str]] = []

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="analyze") as pool:
            futures = [(f, pool.submit(self._process, f)) for f in files]
            for source_file, future in futures:
                try:
                    _, result, found = future.result()
                except Exception as exc:
                    logger.warning("Analysis failed for %s: %s", source_file.relative_path, exc)
                    failed.append({"file": source_file.relative_path, "error": str(exc)})
                    continue
                parsed.append((source_file, result))
                interfaces.extend(found)

        graph = self.graph_builder.build(parsed, interfaces)
        patterns = detect_patterns(graph)
        recommendations = generate_recommendations(graph, patterns, interfaces)
        distribution = Counter(f.language for f, r in parsed if r.success)

        logger.info(
            "Analyzed %d files (%d failed): %d edges, %d cross-language, %d patterns",
            len(parsed), len(failed), len(graph.edges),
            len(graph.cross_language_edges), len(patterns),
        )
        return AnalysisReport(
            graph=graph,
            interfaces=interfaces,
            patterns=patterns,
            recommendations=recommendations,
            language_distribution=dict(sorted(distribution.items())),
            cross_language_edge_count=len(graph.cross_language_edges),
            failed_files=failed,
            results={f.relative_path: r for f, r in parsed},
        )

    def analyze_directory(self, root: Optional[Path] = None) -> AnalysisReport:
        """Discover files under *root* (default: the project root) and analyze them.

        Raises:
            DiscoveryError: the root is missing or not a directory.
        """
        files = discover_source_files(root or self.project_root, self.config)
        return self.analyze_project(files)

    def get_cache_stats(self) -> Dict[str, float]:
        return self.cache.get_stats()
