"""Source file discovery for a project tree."""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Set

from .config_manager import AnalysisConfig
from .models import SourceFile
from .parser import LANGUAGE_MAP

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", "vendor",
}


class DiscoveryError(Exception):
    """Raised when the project root cannot be walked."""


def _excluded(relative: str, patterns: List[str]) -> bool:
    return any(fnmatch.fnmatch(relative, pattern) for pattern in patterns)


def iter_source_files(
    project_root: Path,
    analysis_config: Optional[AnalysisConfig] = None,
) -> Iterator[SourceFile]:
    cfg = analysis_config or AnalysisConfig()
    root = Path(project_root).expanduser()
    if not root.exists():
        raise DiscoveryError(f"Project root does not exist: {root}")
    if not root.is_dir():
        raise DiscoveryError(f"Project root is not a directory: {root}")
    root = root.resolve()

    languages = set(cfg.supported_languages)
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative_parts = path.relative_to(root).parts
        if any(part in SKIP_DIRS or part.startswith(".") for part in relative_parts[:-1]):
            continue
        language = LANGUAGE_MAP.get(path.suffix.lower())
        if language is None or language not in languages:
            continue
        relative = "/".join(relative_parts)
        if _excluded(relative, cfg.exclude_patterns):
            continue
        yield SourceFile(
            path=str(path),
            relative_path=relative,
            language=language,
            extension=path.suffix.lower(),
        )


def discover_source_files(
    project_root: Path,
    analysis_config: Optional[AnalysisConfig] = None,
) -> List[SourceFile]:
    """Every analyzable file under *project_root*, sorted by relative path.

    Raises:
        DiscoveryError: the root is missing or not a directory.
    """
    files = list(iter_source_files(project_root, analysis_config))
    logger.debug("Discovered %d source files under %s", len(files), project_root)
    return files
