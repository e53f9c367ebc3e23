"""Pytest configuration and fixtures for Polyglot Analyzer tests."""

import shutil
import tempfile
import time
from pathlib import Path
from typing import Generator

import pytest

from polyglot_analyzer.cache import AnalysisCache, CacheStats, FileCacheStore
from polyglot_analyzer.config_manager import AnalysisConfig
from polyglot_analyzer.models import FunctionInfo, ImportInfo, ParseResult, SourceFile
from polyglot_analyzer.parser import Parser, ParserError


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path_factory, monkeypatch):
    """Keep every test away from the real ~/.polyglot directory."""
    home = tmp_path_factory.mktemp("polyglot-home")
    monkeypatch.setattr("polyglot_analyzer.config.BASE_DIR", home)
    monkeypatch.setattr("polyglot_analyzer.config.CACHE_DIR", home / "ast-cache")
    monkeypatch.setattr("polyglot_analyzer.config.CONFIG_FILE", home / "config.toml")
    return home


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def analysis_config() -> AnalysisConfig:
    return AnalysisConfig()


@pytest.fixture
def cache(temp_dir: Path, analysis_config: AnalysisConfig) -> AnalysisCache:
    """A file-backed cache with private storage and private counters."""
    return AnalysisCache(
        analysis_config,
        store=FileCacheStore(temp_dir / "cache"),
        stats=CacheStats(),
    )


@pytest.fixture
def project_root(temp_dir: Path) -> Path:
    root = temp_dir / "project"
    root.mkdir()
    return root


def make_source(root: Path, relative: str, content: str, language: str) -> SourceFile:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return SourceFile(
        path=str(path),
        relative_path=relative,
        language=language,
        extension=path.suffix,
    )


def make_result(imports=(), functions=(), success=True) -> ParseResult:
    return ParseResult(
        success=success,
        ast={},
        functions=[FunctionInfo(name=name, line_start=1, exported=True) for name in functions],
        imports=[ImportInfo(source=source) for source in imports],
    )


# ---------------------------------------------------------------------------
# Fake primary parsers
# ---------------------------------------------------------------------------

class StaticParser(Parser):
    """Always returns the same structure."""

    def __init__(self, result: ParseResult):
        self.result = result
        self.calls = 0

    def supports_language(self, language: str) -> bool:
        return True

    def parse(self, content: str, path: str = "") -> ParseResult:
        self.calls += 1
        return self.result


class FailingParser(Parser):
    def __init__(self, message: str = "Unexpected token }", exc_type=ParserError):
        self.message = message
        self.exc_type = exc_type

    def supports_language(self, language: str) -> bool:
        return True

    def parse(self, content: str, path: str = "") -> ParseResult:
        raise self.exc_type(self.message)


def burn_cpu(seconds: float) -> None:
    """Spin until this thread has used *seconds* of CPU time."""
    end = time.thread_time() + seconds
    while time.thread_time() < end:
        pass


class SlowParser(Parser):
    def __init__(self, delay: float):
        self.delay = delay

    def supports_language(self, language: str) -> bool:
        return True

    def parse(self, content: str, path: str = "") -> ParseResult:
        time.sleep(self.delay)
        return ParseResult(success=True)


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing parser."""
    return '''"""Sample module for testing."""

import os
from .helpers import slugify


def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"


async def fetch(url):
    if url and url.startswith("http"):
        return url
    return None


class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        return a + b

    def multiply(self, a: int, b: int) -> int:
        result = 0
        for _ in range(b):
            result = self.add(result, a)
        return result


def _private():
    pass
'''
