"""Content-addressed analysis cache scoped by project, branch and commit.

Entries live in a :class:`CacheStore`; the default store writes one JSON
file per key under ``~/.polyglot/ast-cache``. Expiry is measured from the
entry's modification time and checked on every ``get``. A hit rewrites the
entry's ``access_time`` without touching its modification time, and that
field alone orders LRU eviction in :meth:`AnalysisCache.cleanup`.

Every store failure is logged and counted; the cache then acts as a miss.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from . import config
from .config_manager import AnalysisConfig
from .models import CacheEntry, ParseResult
from .parser import detect_language

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".ast"
LRU_TARGET_RATIO = 0.8


# ---------------------------------------------------------------------------
# Git helpers
# ---------------------------------------------------------------------------

def _git(project_root: Path, *args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(project_root),
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git %s failed in %s: %s", " ".join(args), project_root, exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def detect_git_branch(project_root: Path) -> str:
    """Current branch name, or ``main`` outside a repository or when detached."""
    branch = _git(project_root, "rev-parse", "--abbrev-ref", "HEAD")
    if not branch or branch == "HEAD":
        return config.DEFAULT_BRANCH
    return branch


def detect_git_commit(project_root: Path) -> Optional[str]:
    return _git(project_root, "rev-parse", "HEAD")


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def sanitize_branch(branch: str) -> str:
    """Make a branch name safe as a path segment (``feature/x:y`` -> ``feature_x_y``)."""
    return re.sub(r"[^A-Za-z0-9._-]", "_", branch or config.DEFAULT_BRANCH)


class CacheKeyGenerator:
    """Derives ``<language>/<branch>-<digest16>/<relative path>`` keys.

    The digest covers the project root, relative path, branch, commit hash
    and a SHA-256 of the content, so editing a file makes its old key
    unreachable. The content is the text passed in, or the file on disk
    when none is given.
    """

    def resolve(self, file_path: str, project_root: str) -> Tuple[Path, str]:
        root = Path(project_root).resolve()
        path = Path(file_path)
        if not path.is_absolute():
            path = root / path
        path = path.resolve()
        try:
            relative = path.relative_to(root).as_posix()
        except ValueError:
            relative = path.as_posix().lstrip("/")
        return path, relative

    def content_hash(self, path: Path, content: Optional[str] = None) -> str:
        if content is not None:
            return hashlib.sha256(content.encode("utf-8", errors="surrogatepass")).hexdigest()
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for block in iter(lambda: f.read(65536), b""):
                digest.update(block)
        return digest.hexdigest()

    def generate_key(
        self,
        file_path: str,
        project_root: str,
        branch: str = config.DEFAULT_BRANCH,
        commit_hash: Optional[str] = None,
        content: Optional[str] = None,
    ) -> str:
        """Raises ``OSError`` when *content* is omitted and the file cannot be read."""
        path, relative = self.resolve(file_path, project_root)
        fingerprint = "\0".join([
            str(Path(project_root).resolve()),
            relative,
            branch,
            commit_hash or "",
            self.content_hash(path, content),
        ])
        digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:16]
        language = detect_language(relative) or "unknown"
        return f"{language}/{sanitize_branch(branch)}-{digest}/{relative}"

    @staticmethod
    def parse_key(key: str) -> Optional[Dict[str, str]]:
        parts = key.split("/", 2)
        if len(parts) != 3 or "-" not in parts[1]:
            return None
        branch_part, _, digest = parts[1].rpartition("-")
        return {
            "language": parts[0],
            "branch": branch_part,
            "digest": digest,
            "relative_path": parts[2],
        }


# ---------------------------------------------------------------------------
# Backing store
# ---------------------------------------------------------------------------

class CacheStore(ABC):
    """Key/value store for serialized cache entries."""

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def read(self, key: str) -> str: ...

    @abstractmethod
    def write(self, key: str, data: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Return False if the key was not present."""

    @abstractmethod
    def mtime(self, key: str) -> float: ...

    @abstractmethod
    def update(self, key: str, data: str) -> bool:
        """Replace an existing entry, keeping its modification time.

        Return False if the key was not present.
        """

    @abstractmethod
    def keys(self) -> Iterator[str]: ...

    @abstractmethod
    def entry_size(self, key: str) -> int: ...

    @abstractmethod
    def clear(self) -> None: ...

    def size(self) -> int:
        total = 0
        for key in self.keys():
            try:
                total += self.entry_size(key)
            except OSError:
                continue
        return total


class FileCacheStore(CacheStore):
    """One ``<key>.ast`` JSON file per entry under *root*."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root is not None else config.CACHE_DIR

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}{ENTRY_SUFFIX}"

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: str) -> str:
        return self.path_for(key).read_text(encoding="utf-8")

    def write(self, key: str, data: str) -> None:
        target = self.path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=".tmp-", suffix=ENTRY_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> bool:
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            return False
        return True

    def mtime(self, key: str) -> float:
        return self.path_for(key).stat().st_mtime

    def update(self, key: str, data: str) -> bool:
        path = self.path_for(key)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return False
        self.write(key, data)
        os.utime(path, (stat.st_atime, stat.st_mtime))
        return True

    def keys(self) -> Iterator[str]:
        if not self.root.exists():
            return
        for path in sorted(self.root.rglob(f"*{ENTRY_SUFFIX}")):
            if path.is_file() and not path.name.startswith(".tmp-"):
                yield path.relative_to(self.root).as_posix()[: -len(ENTRY_SUFFIX)]

    def entry_size(self, key: str) -> int:
        return self.path_for(key).stat().st_size

    def clear(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        self.root.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

class CacheStats:
    """Lock-guarded counters. Reset only through :meth:`reset`."""

    FIELDS = ("hits", "misses", "writes", "deletes", "errors")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in self.FIELDS}

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            data: Dict[str, float] = dict(self._counts)
        lookups = data["hits"] + data["misses"]
        data["hit_rate"] = data["hits"] / lookups if lookups else 0.0
        return data

    def reset(self) -> None:
        with self._lock:
            self._counts = {name: 0 for name in self.FIELDS}


DEFAULT_STATS = CacheStats()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AnalysisCache:
    """Parse-result cache.

    Example:
        >>> cache = AnalysisCache()
        >>> cache.set("src/app.ts", "/repo", result, branch="main")
        >>> cache.get("src/app.ts", "/repo", branch="main")
    """

    def __init__(
        self,
        analysis_config: Optional[AnalysisConfig] = None,
        store: Optional[CacheStore] = None,
        key_generator: Optional[CacheKeyGenerator] = None,
        stats: Optional[CacheStats] = None,
    ):
        self.config = analysis_config or AnalysisConfig()
        self.store = store or FileCacheStore()
        self.key_generator = key_generator or CacheKeyGenerator()
        self.stats = stats or DEFAULT_STATS

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _is_expired(self, key: str) -> bool:
        return time.time() - self.store.mtime(key) > self.config.max_age_seconds

    def get(
        self,
        file_path: str,
        project_root: str,
        branch: str = config.DEFAULT_BRANCH,
        commit_hash: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Optional[ParseResult]:
        """Cached result for *file_path*, keyed on *content* when given.

        A source file that no longer exists is a plain miss.
        """
        if not self.enabled:
            return None
        try:
            key = self.key_generator.generate_key(file_path, project_root, branch, commit_hash, content)
        except FileNotFoundError:
            self.stats.increment("misses")
            return None
        except OSError as exc:
            self.stats.increment("errors")
            logger.warning("Cache read error for %s: %s", file_path, exc)
            return None

        try:
            if not self.store.exists(key):
                self.stats.increment("misses")
                return None
            if self._is_expired(key):
                self._delete(key)
                self.stats.increment("misses")
                return None
            entry = CacheEntry.from_dict(json.loads(self.store.read(key)))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self.stats.increment("errors")
            logger.warning("Cache read error for %s: %s", file_path, exc)
            return None

        self.stats.increment("hits")
        self._record_access(key, entry)
        return entry.result

    def _record_access(self, key: str, entry: CacheEntry) -> None:
        entry.access_time = _now_iso()
        try:
            self.store.update(key, json.dumps(entry.to_dict(), indent=2))
        except (OSError, TypeError, ValueError) as exc:
            self.stats.increment("errors")
            logger.warning("Could not record access for %s: %s", key, exc)

    def set(
        self,
        file_path: str,
        project_root: str,
        result: ParseResult,
        branch: str = config.DEFAULT_BRANCH,
        commit_hash: Optional[str] = None,
        content: Optional[str] = None,
    ) -> bool:
        """Store *result* for *file_path*, keyed on *content* when given."""
        if not self.enabled:
            return False
        try:
            key = self.key_generator.generate_key(file_path, project_root, branch, commit_hash, content)
            now = _now_iso()
            entry = CacheEntry(
                cache_key=key,
                file_path=str(file_path),
                branch=branch,
                commit_hash=commit_hash,
                timestamp=now,
                access_time=now,
                result=result,
            )
            self.store.write(key, json.dumps(entry.to_dict(), indent=2))
        except (OSError, TypeError, ValueError) as exc:
            self.stats.increment("errors")
            logger.warning("Cache write error for %s: %s", file_path, exc)
            return False

        self.stats.increment("writes")
        return True

    def _delete(self, key: str) -> bool:
        try:
            deleted = self.store.delete(key)
        except OSError as exc:
            self.stats.increment("errors")
            logger.warning("Cache delete error for %s: %s", key, exc)
            return False
        if deleted:
            self.stats.increment("deletes")
        return deleted

    def _stored_branch(self, key: str) -> Optional[str]:
        try:
            return json.loads(self.store.read(key)).get("branch")
        except (OSError, ValueError, AttributeError) as exc:
            self.stats.increment("errors")
            logger.warning("Unreadable cache entry %s: %s", key, exc)
            return None

    def _last_access(self, key: str) -> float:
        """Recorded ``access_time`` of an entry, or its mtime if that is unreadable."""
        try:
            stamp = json.loads(self.store.read(key))["access_time"]
            return datetime.fromisoformat(stamp).timestamp()
        except (ValueError, KeyError, TypeError) as exc:
            logger.debug("No usable access time in %s: %s", key, exc)
            return self.store.mtime(key)

    def _keys(self) -> List[str]:
        try:
            return list(self.store.keys())
        except OSError as exc:
            self.stats.increment("errors")
            logger.warning("Could not list cache entries: %s", exc)
            return []

    def invalidate_file(
        self,
        file_path: str,
        project_root: str,
        branch: Optional[str] = None,
    ) -> int:
        """Delete entries for one file: on *branch* only, or on every branch."""
        _, relative = self.key_generator.resolve(file_path, project_root)
        count = 0
        for key in self._keys():
            parsed = self.key_generator.parse_key(key)
            if parsed is None or parsed["relative_path"] != relative:
                continue
            if branch is not None and self._stored_branch(key) != branch:
                continue
            if self._delete(key):
                count += 1
        logger.debug("Invalidated %d cache entries for %s", count, relative)
        return count

    def invalidate_branch(self, branch: str) -> int:
        """Delete every entry whose stored branch equals *branch*."""
        count = 0
        for key in self._keys():
            if self._stored_branch(key) == branch and self._delete(key):
                count += 1
        logger.info("Invalidated %d cache entries for branch %s", count, branch)
        return count

    def clear(self) -> bool:
        try:
            self.store.clear()
        except OSError as exc:
            self.stats.increment("errors")
            logger.warning("Cache clear error: %s", exc)
            return False
        return True

    def cleanup(self) -> Dict[str, int]:
        """Drop expired entries, then evict least recently accessed entries
        until the store is under 80% of ``cache_max_size``."""
        expired = 0
        live: List[Tuple[float, int, str]] = []
        for key in self._keys():
            try:
                if self._is_expired(key):
                    if self._delete(key):
                        expired += 1
                    continue
                live.append((self._last_access(key), self.store.entry_size(key), key))
            except OSError as exc:
                self.stats.increment("errors")
                logger.warning("Cache cleanup error for %s: %s", key, exc)

        total = sum(size for _, size, _ in live)
        evicted = 0
        if total > self.config.max_size_bytes:
            target = self.config.max_size_bytes * LRU_TARGET_RATIO
            for _, size, key in sorted(live):
                if total <= target:
                    break
                if self._delete(key):
                    total -= size
                    evicted += 1

        logger.info("Cache cleanup: %d expired, %d evicted, %d bytes remain", expired, evicted, total)
        return {"expired": expired, "evicted": evicted, "remaining_bytes": total}

    def get_stats(self) -> Dict[str, float]:
        return self.stats.snapshot()

    def reset_stats(self) -> None:
        self.stats.reset()
