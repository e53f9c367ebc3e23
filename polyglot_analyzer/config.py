"""Configuration paths and defaults for the local analysis cache."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("POLYGLOT_HOME", str(Path.home() / ".polyglot"))).expanduser()
CACHE_DIR = BASE_DIR / "ast-cache"
CONFIG_FILE = BASE_DIR / "config.toml"
PROJECT_CONFIG_NAME = ".polyglot.toml"

DEFAULT_BRANCH = "main"
DEFAULT_CACHE_MAX_AGE = "2h"
DEFAULT_CACHE_MAX_SIZE = "100MB"
DEFAULT_SUPPORTED_LANGUAGES = ["javascript", "typescript", "python", "go"]
DEFAULT_EXCLUDE_PATTERNS = ["node_modules/**", "dist/**", "build/**", ".git/**"]

# Stage budgets, in seconds
PRIMARY_PARSE_TIMEOUT = 5.0
RECOVERY_STRATEGY_TIMEOUT = 0.05
FALLBACK_STRATEGY_TIMEOUT = 0.1

MAX_WORKERS = min(32, (os.cpu_count() or 1) + 4)
