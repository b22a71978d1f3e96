"""Result dataclasses accumulated by the reset phases."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True, slots=True)
class BackupRecord:
    """A backup produced before a destructive change."""

    source: Path
    backup_path: Path
    created_at: datetime


@dataclass(slots=True)
class FileOutcome:
    """Outcome of mutating identifiers in a single file."""

    updated_keys: int = 0
    deleted_keys: int = 0
    success: bool = True

    @property
    def changed(self) -> bool:
        return self.updated_keys > 0 or self.deleted_keys > 0


@dataclass(slots=True)
class MutationSummary:
    """Aggregate counts for the identifier mutation phase."""

    files_found: int = 0
    files_processed: int = 0
    updated_keys: int = 0
    deleted_keys: int = 0
    failed_files: int = 0

    def add(self, outcome: FileOutcome) -> None:
        self.files_processed += 1
        self.updated_keys += outcome.updated_keys
        self.deleted_keys += outcome.deleted_keys
        if not outcome.success:
            self.failed_files += 1


@dataclass(slots=True)
class SanitizeOutcome:
    """Outcome of keyword/account sanitization of one database."""

    rows_affected: int = 0
    success: bool = True

    @property
    def cleaned(self) -> bool:
        return self.rows_affected > 0


@dataclass(slots=True)
class DatabaseSummary:
    """Aggregate counts for the database sanitization phase."""

    files_found: int = 0
    files_processed: int = 0
    files_cleaned: int = 0
    rows_affected: int = 0
    failed_files: int = 0

    def add(self, outcome: SanitizeOutcome) -> None:
        self.files_processed += 1
        if outcome.cleaned:
            self.files_cleaned += 1
            self.rows_affected += outcome.rows_affected
        if not outcome.success:
            self.failed_files += 1


@dataclass(slots=True)
class CacheStat:
    """Counters for one cache-directory kind, e.g. ``GPUCache``."""

    dir_count: int = 0
    total_size: int = 0
    total_files: int = 0
    cleaned_dirs: int = 0
    freed_bytes: int = 0


@dataclass(slots=True)
class CacheSummary:
    """Per-kind cache statistics for one eviction run."""

    stats: dict[str, CacheStat] = field(default_factory=dict)

    @property
    def dir_count(self) -> int:
        return sum(s.dir_count for s in self.stats.values())

    @property
    def cleaned_dirs(self) -> int:
        return sum(s.cleaned_dirs for s in self.stats.values())

    @property
    def freed_bytes(self) -> int:
        return sum(s.freed_bytes for s in self.stats.values())


@dataclass(slots=True)
class ResetReport:
    """Everything one ``clean_application`` run produced."""

    app_name: str
    path: str
    mutation: MutationSummary = field(default_factory=MutationSummary)
    databases: DatabaseSummary = field(default_factory=DatabaseSummary)
    cache: CacheSummary = field(default_factory=CacheSummary)
    backups: list[BackupRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
