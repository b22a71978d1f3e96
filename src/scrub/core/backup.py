"""Timestamped backups of files and directory trees."""

from __future__ import annotations

import logging
import os
import re
import shutil
import time
import zipfile
from datetime import datetime
from pathlib import Path

from scrub.errors import BackupError
from scrub.models.clean_result import BackupRecord

log = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
ARCHIVE_SUFFIX = ".zip"

_UNSAFE_LABEL_CHARS = re.compile(r"[\\/:*?\"<>|]+")


def default_backup_root() -> Path:
    return Path.home() / "Scrub_Backups"


class BackupManager:
    """Copies files and trees into a single backup root before mutation.

    Every entry in the root is named ``<label>_<YYYYMMDD_HHMMSS>`` with a
    ``.zip`` suffix when compression is enabled.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        *,
        enabled: bool = True,
        compression: bool = False,
    ) -> None:
        self.root = Path(root) if root else default_backup_root()
        self.enabled = enabled
        self.compression = compression
        self.records: list[BackupRecord] = []
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.error("Failed to create backup directory %s: %s", self.root, e)

    def backup(self, source: Path | str, label: str) -> Path | None:
        """Back up *source* and return the produced path.

        Returns None without doing anything when backups are disabled.

        Raises:
            BackupError: If the source does not exist or copying fails.
        """
        if not self.enabled:
            return None

        source = Path(source)
        if not source.exists():
            raise BackupError(f"Source path does not exist: {source}")

        created_at = datetime.now()
        target = self._target_path(label, created_at)
        try:
            if self.compression:
                self._write_archive(source, target)
            elif source.is_dir():
                shutil.copytree(source, target, symlinks=True)
            else:
                shutil.copy2(source, target)
        except OSError as e:
            _remove_quietly(target)
            raise BackupError(f"Failed to back up {source}: {e}") from e

        self.records.append(BackupRecord(source=source, backup_path=target, created_at=created_at))
        log.info("Created backup of %s at %s", source, target)
        return target

    def _target_path(self, label: str, created_at: datetime) -> Path:
        safe_label = _UNSAFE_LABEL_CHARS.sub("_", label).strip() or "backup"
        suffix = ARCHIVE_SUFFIX if self.compression else ""
        stem = f"{safe_label}_{created_at.strftime(TIMESTAMP_FORMAT)}"
        target = self.root / f"{stem}{suffix}"
        counter = 1
        while target.exists():
            target = self.root / f"{stem}_{counter}{suffix}"
            counter += 1
        return target

    @staticmethod
    def _write_archive(source: Path, target: Path) -> None:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            if source.is_dir():
                for item in sorted(source.rglob("*")):
                    if item.is_file() and not item.is_symlink():
                        archive.write(item, item.relative_to(source).as_posix())
            else:
                archive.write(source, source.name)

    def prune_older_than(self, retention_days: int) -> list[Path]:
        """Remove top-level backups older than *retention_days*.

        Disabled when *retention_days* is zero or negative.

        Returns:
            The backup entries that were removed.
        """
        if retention_days <= 0:
            return []

        cutoff = time.time() - retention_days * 86400
        removed: list[Path] = []
        try:
            entries = list(self.root.iterdir())
        except OSError as e:
            log.warning("Cannot read backup directory %s: %s", self.root, e)
            return removed

        for entry in entries:
            try:
                mtime = entry.lstat().st_mtime
            except OSError:
                continue
            if mtime >= cutoff:
                continue
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as e:
                log.warning("Failed to remove old backup %s: %s", entry, e)
            else:
                log.info("Removed old backup %s", entry)
                removed.append(entry)
        return removed

    def list_backups(self) -> list[Path]:
        """Return the entries under the backup root, newest first."""
        try:
            entries = list(self.root.iterdir())
        except OSError:
            return []
        return sorted(entries, key=lambda p: p.lstat().st_mtime, reverse=True)

    def restore(self, backup: Path | str, destination: Path | str) -> Path:
        """Copy a backup entry back to *destination*.

        Archives are extracted into *destination*; mirrored trees are merged
        into it and mirrored files overwrite it.

        Raises:
            BackupError: If the backup is missing, unsafe, or copying fails.
        """
        backup = Path(backup)
        destination = Path(destination)
        if not backup.exists():
            raise BackupError(f"Backup does not exist: {backup}")

        try:
            if backup.suffix == ARCHIVE_SUFFIX and zipfile.is_zipfile(backup):
                _extract_archive(backup, destination)
            elif backup.is_dir():
                shutil.copytree(backup, destination, symlinks=True, dirs_exist_ok=True)
            else:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(backup, destination)
        except (OSError, zipfile.BadZipFile) as e:
            raise BackupError(f"Failed to restore {backup}: {e}") from e

        log.info("Restored %s to %s", backup, destination)
        return destination


def _extract_archive(archive_path: Path, destination: Path) -> None:
    destination.mkdir(parents=True, exist_ok=True)
    base = destination.resolve()
    with zipfile.ZipFile(archive_path) as archive:
        for member in archive.namelist():
            target = (base / member).resolve()
            if target != base and base not in target.parents:
                raise BackupError(f"Archive member escapes destination: {member}")
        archive.extractall(base)


def _remove_quietly(path: Path) -> None:
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            os.unlink(path)
    except OSError:
        log.debug("Could not remove partial backup %s", path)
