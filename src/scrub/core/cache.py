"""Cache directory discovery, eviction and verification."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from scrub.core.backup import BackupManager
from scrub.errors import BackupError
from scrub.models.clean_result import CacheStat, CacheSummary
from scrub.utils import dir_info, dir_size, find_directories, format_size

log = logging.getLogger(__name__)

PhaseProgress = Callable[[str, float], None]  # (message, percent)

PROGRESS_START = 80.0
PROGRESS_SPAN = 15.0
PROGRESS_END = 95.0


@dataclass(slots=True)
class ClearResult:
    """What a single clearing pass over one directory removed."""

    removed_files: int = 0
    removed_dirs: int = 0
    failed: int = 0

    @property
    def removed(self) -> int:
        return self.removed_files + self.removed_dirs


def _remove_file(path: str) -> None:
    try:
        os.unlink(path)
    except PermissionError:
        os.chmod(path, stat.S_IREAD | stat.S_IWRITE)
        os.unlink(path)


def clear_directory(directory: Path | str) -> ClearResult:
    """Delete everything inside *directory*, keeping the directory itself.

    Symlinks are unlinked without following them.  Sub-directories are
    emptied first and then removed.  Items that cannot be removed are
    counted and logged.

    Raises:
        OSError: If *directory* itself cannot be listed.
    """
    result = ClearResult()
    with os.scandir(directory) as it:
        entries = list(it)

    for entry in entries:
        try:
            if entry.is_symlink() or not entry.is_dir(follow_symlinks=False):
                _remove_file(entry.path)
                result.removed_files += 1
                continue

            try:
                sub = clear_directory(entry.path)
                result.removed_files += sub.removed_files
                result.removed_dirs += sub.removed_dirs
            except OSError as e:
                log.debug("Could not empty %s, removing it whole: %s", entry.path, e)
            shutil.rmtree(entry.path)
            result.removed_dirs += 1
        except OSError as e:
            log.warning("Failed to remove %s: %s", entry.path, e)
            result.failed += 1

    if result.failed:
        log.warning("%d items in %s could not be removed", result.failed, directory)
    log.debug(
        "Cleared %s: %d files, %d directories removed",
        directory,
        result.removed_files,
        result.removed_dirs,
    )
    return result


class CacheEvictor:
    """Clears configured cache directories below an application root."""

    def __init__(
        self,
        cache_directories: Iterable[str],
        backups: BackupManager,
        *,
        dry_run: bool = False,
    ) -> None:
        self.cache_directories = list(cache_directories)
        self.backups = backups
        self.dry_run = dry_run

    def discover(self, root: Path | str) -> dict[str, list[Path]]:
        """Map each cache kind to the directories found for it."""
        return {name: find_directories(root, name) for name in self.cache_directories}

    def cache_info(self, root: Path | str) -> dict[str, int]:
        """Bytes occupied per cache kind, for kinds that were found."""
        info: dict[str, int] = {}
        for name, dirs in self.discover(root).items():
            if dirs:
                info[name] = sum(dir_size(d) for d in dirs)
                log.info("Cache %s: %d directories, %s", name, len(dirs), format_size(info[name]))
        return info

    def run(
        self,
        root: Path | str,
        app_name: str,
        on_progress: PhaseProgress | None = None,
    ) -> CacheSummary:
        """Back up and clear every cache directory under *root*."""
        summary = CacheSummary()
        kinds = len(self.cache_directories) or 1

        if on_progress:
            on_progress(f"Searching cache directories ({len(self.cache_directories)} kinds)", PROGRESS_START)

        found = self.discover(root)
        for name, dirs in found.items():
            stat_ = summary.stats.setdefault(name, CacheStat())
            stat_.dir_count = len(dirs)
            for d in dirs:
                size, files = dir_info(d)
                stat_.total_size += size
                stat_.total_files += files

        if not any(found.values()):
            log.warning("No cache directories found under %s", root)
            if on_progress:
                on_progress("No cache directories found", PROGRESS_END)
            return summary

        for kind_index, (name, dirs) in enumerate(found.items()):
            for i, directory in enumerate(dirs):
                if on_progress:
                    percent = PROGRESS_START + (kind_index + i / len(dirs)) * PROGRESS_SPAN / kinds
                    on_progress(f"Clearing {name} ({i + 1}/{len(dirs)}): {directory.name}", percent)
                self.evict(directory, summary.stats[name], app_name)

        log.info(
            "Cache cleaning for %s: %d directories cleared, %s freed",
            app_name,
            summary.cleaned_dirs,
            format_size(summary.freed_bytes),
        )
        if on_progress:
            on_progress(
                f"Cache reset finished: cleared {summary.cleaned_dirs} directories, "
                f"freed {format_size(summary.freed_bytes)}",
                PROGRESS_END,
            )
        return summary

    def evict(self, directory: Path, stat_: CacheStat, app_name: str) -> None:
        """Back up and clear one directory, with a single verification retry."""
        if not directory.is_dir():
            return

        size_before = dir_size(directory)
        try:
            self.backups.backup(directory, f"{app_name}_cache_{directory.name}")
        except BackupError as e:
            log.warning("Backup of %s failed, continuing: %s", directory, e)

        if self.dry_run:
            log.info("Would clear cache directory %s (%s)", directory, format_size(size_before))
            return

        try:
            clear_directory(directory)
        except OSError as e:
            log.error("Failed to clear cache directory %s: %s", directory, e)
        else:
            stat_.cleaned_dirs += 1

        size_after = dir_size(directory)
        if size_after > 0:
            log.warning("%s not completely cleared, %s remain", directory, format_size(size_after))
            try:
                clear_directory(directory)
            except OSError as e:
                log.error("Second clearing pass of %s failed: %s", directory, e)
            else:
                final_size = dir_size(directory)
                if final_size < size_after:
                    log.info(
                        "Second pass improved %s: %s -> %s",
                        directory,
                        format_size(size_after),
                        format_size(final_size),
                    )
                size_after = final_size

        stat_.freed_bytes += max(size_before - size_after, 0)
        log.info("Cleared cache directory %s, freed %s", directory, format_size(size_before - size_after))


def cache_report(app_name: str, summary: CacheSummary) -> str:
    """Human-readable summary of a cache eviction run."""
    lines = [f"===== {app_name} cache report ====="]
    for name, stat_ in summary.stats.items():
        if stat_.dir_count:
            lines.append(
                f"- {name}: cleared {stat_.cleaned_dirs}/{stat_.dir_count} directories, "
                f"freed {format_size(stat_.freed_bytes)}"
            )
    lines.append("")
    lines.append(
        f"Total: cleared {summary.cleaned_dirs}/{summary.dir_count} cache directories, "
        f"freed {format_size(summary.freed_bytes)}"
    )
    return "\n".join(lines)
