"""Tests for the branch-aware analysis cache."""

import json
import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from conftest import make_result
from polyglot_analyzer.cache import (
    AnalysisCache,
    CacheKeyGenerator,
    CacheStats,
    FileCacheStore,
    detect_git_branch,
    sanitize_branch,
)
from polyglot_analyzer.config_manager import AnalysisConfig


def _write(root, name, content="export const x = 1;\n"):
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _age(cache, key, seconds):
    path = cache.store.path_for(key)
    old = time.time() - seconds
    os.utime(path, (old, old))


# ===========================================================================
# Keys
# ===========================================================================

def test_key_layout(project_root):
    _write(project_root, "src/f.ts")
    key = CacheKeyGenerator().generate_key("src/f.ts", str(project_root), "feature/x")

    assert key.startswith("typescript/feature_x-")
    assert key.endswith("/src/f.ts")

    parsed = CacheKeyGenerator.parse_key(key)
    assert parsed["language"] == "typescript"
    assert parsed["branch"] == "feature_x"
    assert len(parsed["digest"]) == 16
    assert parsed["relative_path"] == "src/f.ts"


def test_key_changes_with_content_and_commit(project_root):
    path = _write(project_root, "f.ts")
    generator = CacheKeyGenerator()
    first = generator.generate_key(str(path), str(project_root))

    assert generator.generate_key(str(path), str(project_root), commit_hash="abc123") != first

    path.write_text("export const x = 2;\n", encoding="utf-8")
    assert generator.generate_key(str(path), str(project_root)) != first


def test_absolute_and_relative_paths_share_a_key(project_root):
    path = _write(project_root, "f.ts")
    generator = CacheKeyGenerator()
    assert generator.generate_key(str(path), str(project_root)) == generator.generate_key("f.ts", str(project_root))


def test_sanitize_branch():
    assert sanitize_branch("feature/x:y") == "feature_x_y"
    assert sanitize_branch("release-1.2") == "release-1.2"
    assert sanitize_branch("") == "main"


def test_branch_defaults_to_main_outside_git(temp_dir):
    assert detect_git_branch(temp_dir) == "main"


# ===========================================================================
# get / set
# ===========================================================================

def test_set_then_get(cache, project_root):
    _write(project_root, "f.ts")
    assert cache.set("f.ts", str(project_root), make_result(functions=["x"]), branch="main")

    cached = cache.get("f.ts", str(project_root), branch="main")
    assert cached is not None
    assert [f.name for f in cached.functions] == ["x"]

    stats = cache.get_stats()
    assert stats["writes"] == 1
    assert stats["hits"] == 1


def test_entries_are_scoped_by_branch(cache, project_root):
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result(), branch="main")

    assert cache.get("f.ts", str(project_root), branch="feature-x") is None
    assert cache.get_stats()["misses"] == 1


def test_content_change_is_a_miss(cache, project_root):
    path = _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result())

    path.write_text("export const y = 2;\n", encoding="utf-8")
    assert cache.get("f.ts", str(project_root)) is None


def test_expired_entry_is_deleted(cache, project_root):
    """An entry older than cache_max_age is a miss even though the file exists."""
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result())
    key = cache.key_generator.generate_key("f.ts", str(project_root))
    _age(cache, key, 3 * 60 * 60)

    assert cache.get("f.ts", str(project_root)) is None
    assert not cache.store.exists(key)
    stats = cache.get_stats()
    assert stats["misses"] == 1
    assert stats["deletes"] == 1


def test_hit_records_access_time_and_keeps_mtime(cache, project_root):
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result())
    key = cache.key_generator.generate_key("f.ts", str(project_root))
    path = cache.store.path_for(key)
    old = time.time() - 600
    os.utime(path, (old, old))
    before = json.loads(path.read_text(encoding="utf-8"))

    assert cache.get("f.ts", str(project_root)) is not None
    after = json.loads(path.read_text(encoding="utf-8"))
    assert abs(path.stat().st_mtime - old) < 1
    assert after["timestamp"] == before["timestamp"]
    assert datetime.fromisoformat(after["access_time"]) > datetime.fromisoformat(before["access_time"])


def test_key_follows_supplied_content(project_root):
    path = _write(project_root, "f.ts", "export const x = 1;\n")
    generator = CacheKeyGenerator()
    on_disk = generator.generate_key(str(path), str(project_root))

    assert generator.generate_key(str(path), str(project_root), content="export const x = 1;\n") == on_disk
    assert generator.generate_key(str(path), str(project_root), content="export const x = 2;\n") != on_disk


def test_unsaved_content_never_reads_the_saved_entry(cache, project_root):
    _write(project_root, "f.ts", "export const saved = 1;\n")
    cache.set("f.ts", str(project_root), make_result(functions=["saved"]))

    assert cache.get("f.ts", str(project_root), content="export const edited = 1;\n") is None
    cache.set("f.ts", str(project_root), make_result(functions=["edited"]), content="export const edited = 1;\n")

    saved = cache.get("f.ts", str(project_root))
    assert [f.name for f in saved.functions] == ["saved"]


def test_entry_is_json_with_branch(cache, project_root):
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result(), branch="dev", commit_hash="abc")
    key = cache.key_generator.generate_key("f.ts", str(project_root), "dev", "abc")

    payload = json.loads(cache.store.path_for(key).read_text(encoding="utf-8"))
    assert payload["branch"] == "dev"
    assert payload["commit_hash"] == "abc"
    assert payload["result"]["success"] is True


def test_disabled_cache(temp_dir, project_root):
    stats = CacheStats()
    cache = AnalysisCache(AnalysisConfig(enabled=False), store=FileCacheStore(temp_dir / "c"), stats=stats)
    _write(project_root, "f.ts")

    assert cache.set("f.ts", str(project_root), make_result()) is False
    assert cache.get("f.ts", str(project_root)) is None
    assert stats.snapshot()["misses"] == 0


def test_missing_source_file_is_a_miss(cache, project_root):
    assert cache.get("gone.ts", str(project_root)) is None
    stats = cache.get_stats()
    assert stats["misses"] == 1
    assert stats["errors"] == 0


def test_set_for_missing_source_file_fails(cache, project_root):
    assert cache.set("gone.ts", str(project_root), make_result()) is False
    assert cache.get_stats()["writes"] == 0


def test_store_failures_act_as_misses(temp_dir, project_root):
    class BrokenStore(FileCacheStore):
        def read(self, key):
            raise OSError("disk unplugged")

    cache = AnalysisCache(store=BrokenStore(temp_dir / "c"), stats=CacheStats())
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result())

    assert cache.get("f.ts", str(project_root)) is None
    assert cache.get_stats()["errors"] == 1


# ===========================================================================
# Invalidation
# ===========================================================================

def test_invalidate_branch_leaves_other_branches(cache, project_root):
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result(), branch="main")
    cache.set("f.ts", str(project_root), make_result(), branch="feature/x")

    assert cache.invalidate_branch("main") == 1
    assert cache.get("f.ts", str(project_root), branch="main") is None
    assert cache.get("f.ts", str(project_root), branch="feature/x") is not None


def test_invalidate_file(cache, project_root):
    _write(project_root, "f.ts")
    _write(project_root, "g.ts")
    cache.set("f.ts", str(project_root), make_result(), branch="main")
    cache.set("f.ts", str(project_root), make_result(), branch="dev")
    cache.set("g.ts", str(project_root), make_result(), branch="main")

    assert cache.invalidate_file("f.ts", str(project_root), branch="dev") == 1
    assert cache.get("f.ts", str(project_root), branch="main") is not None

    assert cache.invalidate_file(str(project_root / "f.ts"), str(project_root)) == 1
    assert cache.get("f.ts", str(project_root), branch="main") is None
    assert cache.get("g.ts", str(project_root), branch="main") is not None


def test_clear_keeps_stats(cache, project_root):
    _write(project_root, "f.ts")
    cache.set("f.ts", str(project_root), make_result())
    cache.get("f.ts", str(project_root))

    assert cache.clear()
    assert list(cache.store.keys()) == []
    assert cache.get_stats()["hits"] == 1

    cache.reset_stats()
    assert cache.get_stats()["hits"] == 0


def test_hit_rate(cache, project_root):
    _write(project_root, "f.ts")
    cache.get("f.ts", str(project_root))
    cache.set("f.ts", str(project_root), make_result())
    cache.get("f.ts", str(project_root))

    assert cache.get_stats()["hit_rate"] == 0.5


# ===========================================================================
# Cleanup
# ===========================================================================

def test_cleanup_removes_expired(cache, project_root):
    _write(project_root, "f.ts")
    _write(project_root, "g.ts")
    cache.set("f.ts", str(project_root), make_result())
    cache.set("g.ts", str(project_root), make_result())
    _age(cache, cache.key_generator.generate_key("f.ts", str(project_root)), 3 * 60 * 60)

    report = cache.cleanup()
    assert report["expired"] == 1
    assert report["evicted"] == 0
    assert len(list(cache.store.keys())) == 1


def _accessed(cache, key, seconds_ago):
    payload = json.loads(cache.store.read(key))
    payload["access_time"] = datetime.fromtimestamp(time.time() - seconds_ago, timezone.utc).isoformat()
    cache.store.update(key, json.dumps(payload, indent=2))


def test_cleanup_evicts_least_recently_accessed(cache, project_root):
    keys = {}
    for seconds_ago, name in [(300, "a.ts"), (200, "b.ts"), (100, "c.ts")]:
        _write(project_root, name)
        cache.set(name, str(project_root), make_result())
        keys[name] = cache.key_generator.generate_key(name, str(project_root))
        _accessed(cache, keys[name], seconds_ago)

    total = sum(cache.store.entry_size(key) for key in keys.values())
    cache.config.cache_max_size = f"{total - 1}B"

    report = cache.cleanup()
    assert report["expired"] == 0
    assert report["evicted"] == 1
    assert not cache.store.exists(keys["a.ts"])
    assert cache.store.exists(keys["b.ts"])
    assert cache.store.exists(keys["c.ts"])
    assert report["remaining_bytes"] <= (total - 1) * 0.8


def test_maintenance_reads_do_not_count_as_access(cache, project_root):
    """Only a hit moves an entry to the back of the eviction order."""
    root = str(project_root)
    _write(project_root, "hit.py", "x = 1\n")
    _write(project_root, "idle.py", "y = 2\n")
    cache.set("hit.py", root, make_result())
    time.sleep(0.01)
    cache.set("idle.py", root, make_result())
    time.sleep(0.01)
    assert cache.get("hit.py", root) is not None

    assert cache.invalidate_branch("some-other-branch") == 0
    assert cache.invalidate_file("idle.py", root, branch="some-other-branch") == 0

    hit_key = cache.key_generator.generate_key("hit.py", root)
    idle_key = cache.key_generator.generate_key("idle.py", root)
    total = cache.store.size()
    cache.config.cache_max_size = f"{total - 1}B"

    report = cache.cleanup()
    assert report["evicted"] == 1
    assert cache.store.exists(hit_key)
    assert not cache.store.exists(idle_key)


# ===========================================================================
# Concurrency
# ===========================================================================

def test_concurrent_set_and_get_on_one_key(cache, project_root):
    """Racing writers and readers leave one intact entry from some writer."""
    _write(project_root, "f.ts")
    root = str(project_root)
    names = [f"writer_{i}" for i in range(16)]

    def work(name):
        cache.set("f.ts", root, make_result(functions=[name]))
        return cache.get("f.ts", root)

    with ThreadPoolExecutor(max_workers=16) as pool:
        seen = list(pool.map(work, names * 4))

    final = cache.get("f.ts", root)
    assert [f.name for f in final.functions][0] in names
    for result in seen:
        assert result is None or [f.name for f in result.functions][0] in names
    assert cache.get_stats()["writes"] == 64
    assert len(list(cache.store.keys())) == 1


def test_stats_counters_are_exact_under_contention():
    stats = CacheStats()

    def bump(_):
        for _ in range(1000):
            stats.increment("hits")
            stats.increment("misses")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(bump, range(8)))

    snapshot = stats.snapshot()
    assert snapshot["hits"] == 8000
    assert snapshot["misses"] == 8000
    assert snapshot["hit_rate"] == 0.5
