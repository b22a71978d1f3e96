"""Tests for cache directory eviction."""

from __future__ import annotations

import logging

import pytest

from scrub.core.backup import BackupManager
from scrub.core import cache
from scrub.core.cache import CacheEvictor, cache_report, clear_directory
from scrub.models.clean_result import CacheStat
from scrub.utils import dir_size


def _fill(directory, sizes):
    directory.mkdir(parents=True, exist_ok=True)
    for i, size in enumerate(sizes):
        (directory / f"f{i}.bin").write_bytes(b"x" * size)
    return directory


@pytest.fixture
def evictor(backup_root):
    return CacheEvictor(["Cache", "GPUCache", "User/workspaceStorage"], BackupManager(backup_root))


class TestClearDirectory:
    def test_keeps_directory_itself(self, tmp_path):
        target = _fill(tmp_path / "Cache", [10, 20])
        _fill(target / "nested" / "deeper", [5])
        result = clear_directory(target)
        assert target.is_dir()
        assert list(target.iterdir()) == []
        assert result.removed_files == 3
        assert result.failed == 0

    def test_symlink_target_survives(self, tmp_path):
        outside = _fill(tmp_path / "outside", [100])
        target = tmp_path / "Cache"
        target.mkdir()
        (target / "link").symlink_to(outside, target_is_directory=True)
        clear_directory(target)
        assert list(target.iterdir()) == []
        assert (outside / "f0.bin").exists()

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(OSError):
            clear_directory(tmp_path / "absent")

    def test_second_pass_on_empty_directory(self, tmp_path):
        target = _fill(tmp_path / "Cache", [10, 20])
        clear_directory(target)
        result = clear_directory(target)
        assert result.removed == 0
        assert result.failed == 0
        assert target.is_dir()


class TestCacheEvictor:
    def test_cache_info(self, tmp_path, evictor):
        _fill(tmp_path / "app" / "Cache", [1000])
        _fill(tmp_path / "app" / "sub" / "Cache", [24])
        info = evictor.cache_info(tmp_path / "app")
        assert info == {"Cache": 1024}

    def test_run_clears_and_reports(self, tmp_path, evictor, backup_root):
        root = tmp_path / "app"
        _fill(root / "Cache", [1024, 1024, 2048])
        _fill(root / "User" / "workspaceStorage" / "abc", [512])
        (root / "User" / "settings.json").write_text("{}")

        updates = []
        summary = evictor.run(root, "demo", lambda msg, pct: updates.append((msg, pct)))

        assert summary.stats["Cache"].dir_count == 1
        assert summary.stats["Cache"].total_files == 3
        assert summary.stats["Cache"].freed_bytes == 4096
        assert summary.stats["User/workspaceStorage"].freed_bytes == 512
        assert summary.stats["GPUCache"].dir_count == 0
        assert summary.cleaned_dirs == 2
        assert summary.freed_bytes == 4608

        assert dir_size(root / "Cache") == 0
        assert (root / "Cache").is_dir()
        assert (root / "User" / "settings.json").exists()

        percents = [pct for _, pct in updates]
        assert percents[0] == 80 and percents[-1] == 95
        assert percents == sorted(percents)

        backups = sorted(p.name for p in backup_root.iterdir())
        assert backups[0].startswith("demo_cache_Cache_")
        assert (backup_root / backups[0] / "f2.bin").stat().st_size == 2048

    def test_evicting_twice(self, tmp_path, evictor):
        target = _fill(tmp_path / "app" / "Cache", [1024, 3072])
        first = CacheStat()
        evictor.evict(target, first, "demo")
        second = CacheStat()
        evictor.evict(target, second, "demo")
        assert first.freed_bytes == 4096
        assert second.freed_bytes == 0
        assert second.cleaned_dirs == 1

    def test_retries_when_first_pass_leaves_files(self, tmp_path, evictor, monkeypatch, caplog):
        target = _fill(tmp_path / "app" / "Cache", [1024, 1024, 2048])
        real_remove = cache._remove_file
        failures = []

        def flaky_remove(path):
            if not failures:
                failures.append(path)
                raise PermissionError(13, "Permission denied", path)
            real_remove(path)

        monkeypatch.setattr(cache, "_remove_file", flaky_remove)
        stat_ = CacheStat()
        with caplog.at_level(logging.WARNING):
            evictor.evict(target, stat_, "demo")

        assert len(failures) == 1
        assert list(target.iterdir()) == []
        assert stat_.freed_bytes == 4096
        assert "not completely cleared" in caplog.text

    def test_nothing_to_clear(self, tmp_path, evictor):
        root = tmp_path / "app"
        root.mkdir()
        updates = []
        summary = evictor.run(root, "demo", lambda msg, pct: updates.append(pct))
        assert summary.cleaned_dirs == 0 and summary.freed_bytes == 0
        assert updates[-1] == 95

    def test_dry_run_keeps_files(self, tmp_path, backup_root):
        evictor = CacheEvictor(["Cache"], BackupManager(backup_root), dry_run=True)
        root = tmp_path / "app"
        _fill(root / "Cache", [100])
        summary = evictor.run(root, "demo")
        assert (root / "Cache" / "f0.bin").exists()
        assert summary.cleaned_dirs == 0
        assert summary.stats["Cache"].total_size == 100

    def test_report(self, tmp_path, evictor):
        root = tmp_path / "app"
        _fill(root / "Cache", [2048])
        summary = evictor.run(root, "demo")
        report = cache_report("demo", summary)
        assert "- Cache: cleared 1/1 directories, freed 2.0 KB" in report
        assert "GPUCache" not in report
        assert report.splitlines()[-1] == "Total: cleared 1/1 cache directories, freed 2.0 KB"
