"""Configuration manager for the analysis pipeline using TOML files."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from . import config

logger = logging.getLogger(__name__)

_DURATION_UNITS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}
_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}
_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)$")


class ConfigError(Exception):
    """Raised when a configuration file exists but cannot be read."""


@dataclass
class AnalysisConfig:
    enabled: bool = True
    cache_max_age: str = config.DEFAULT_CACHE_MAX_AGE
    cache_max_size: str = config.DEFAULT_CACHE_MAX_SIZE
    supported_languages: List[str] = field(
        default_factory=lambda: list(config.DEFAULT_SUPPORTED_LANGUAGES)
    )
    exclude_patterns: List[str] = field(
        default_factory=lambda: list(config.DEFAULT_EXCLUDE_PATTERNS)
    )

    @property
    def max_age_seconds(self) -> float:
        return parse_duration(self.cache_max_age)

    @property
    def max_size_bytes(self) -> int:
        return parse_size(self.cache_max_size)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_duration(value: str, default: str = config.DEFAULT_CACHE_MAX_AGE) -> float:
    """Convert a duration string such as ``'30m'`` or ``'2h'`` to seconds.

    Unrecognised values fall back to *default* (two hours).
    """
    match = _DURATION_RE.match(str(value).strip()) or _DURATION_RE.match(default)
    if match is None:
        raise ValueError(f"Invalid default duration: {default!r}")
    amount, unit = match.groups()
    return float(int(amount) * _DURATION_UNITS[unit])


def parse_size(value: str, default: str = config.DEFAULT_CACHE_MAX_SIZE) -> int:
    """Convert a size string such as ``'100MB'`` to bytes."""
    match = _SIZE_RE.match(str(value).strip().upper()) or _SIZE_RE.match(default.upper())
    if match is None:
        raise ValueError(f"Invalid default size: {default!r}")
    amount, unit = match.groups()
    return int(float(amount) * _SIZE_UNITS[unit])


def _config_candidates(project_root: Optional[Path]) -> List[Path]:
    candidates = []
    if project_root is not None:
        candidates.append(Path(project_root) / config.PROJECT_CONFIG_NAME)
    candidates.append(config.CONFIG_FILE)
    return candidates


def load_full_config(path: Path) -> Dict[str, Any]:
    """Load the entire TOML file at *path* (all sections).

    Raises:
        ConfigError: the file exists but is not readable TOML.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigError(f"Could not read configuration {path}: {exc}") from exc


def load_analysis_config(
    path: Optional[Path] = None,
    project_root: Optional[Path] = None,
) -> AnalysisConfig:
    """Load the ``[analysis]`` section.

    Looks at *path* when given, otherwise at ``<project_root>/.polyglot.toml``
    and then the global config file. Missing files yield defaults.
    """
    candidates = [Path(path)] if path is not None else _config_candidates(project_root)
    for candidate in candidates:
        if not candidate.exists():
            continue
        section = load_full_config(candidate).get("analysis", {})
        defaults = AnalysisConfig()
        logger.debug("Loaded analysis config from %s", candidate)
        return AnalysisConfig(
            enabled=bool(section.get("enabled", defaults.enabled)),
            cache_max_age=str(section.get("cache_max_age", defaults.cache_max_age)),
            cache_max_size=str(section.get("cache_max_size", defaults.cache_max_size)),
            supported_languages=list(
                section.get("supported_languages", defaults.supported_languages)
            ),
            exclude_patterns=list(section.get("exclude_patterns", defaults.exclude_patterns)),
        )
    return AnalysisConfig()


def save_analysis_config(cfg: AnalysisConfig, path: Optional[Path] = None) -> bool:
    """Write *cfg* to the ``[analysis]`` section, preserving other sections."""
    target = Path(path) if path is not None else config.CONFIG_FILE
    full: Dict[str, Any] = {}
    if target.exists():
        try:
            full = load_full_config(target)
        except ConfigError as exc:
            logger.warning("Overwriting unreadable config %s: %s", target, exc)
    full["analysis"] = cfg.to_dict()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            toml.dump(full, f)
        return True
    except OSError as exc:
        logger.warning("Could not save config %s: %s", target, exc)
        return False
