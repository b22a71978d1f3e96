"""Scrub data models."""

from scrub.models.profile import ApplicationProfile, DiscoveredApplication
from scrub.models.progress import ProgressUpdate
from scrub.models.scan_result import DATABASE_EXTENSIONS, CandidateFile, TableDescriptor
from scrub.models.clean_result import (
    BackupRecord,
    CacheStat,
    CacheSummary,
    DatabaseSummary,
    FileOutcome,
    MutationSummary,
    ResetReport,
    SanitizeOutcome,
)

__all__ = [
    "ApplicationProfile",
    "BackupRecord",
    "CacheStat",
    "CacheSummary",
    "CandidateFile",
    "DATABASE_EXTENSIONS",
    "DatabaseSummary",
    "DiscoveredApplication",
    "FileOutcome",
    "MutationSummary",
    "ProgressUpdate",
    "ResetReport",
    "SanitizeOutcome",
    "TableDescriptor",
]
