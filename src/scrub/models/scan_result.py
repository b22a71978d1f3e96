"""Dataclasses describing what a scan of application data found."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DATABASE_EXTENSIONS = (".vscdb", ".db", ".sqlite", ".sqlite3")


@dataclass(frozen=True, slots=True)
class CandidateFile:
    """A file that may hold identifiers, matched by name or extension."""

    path: Path

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    @property
    def kind(self) -> str:
        """``database``, ``json`` or ``other``."""
        if self.extension in DATABASE_EXTENSIONS:
            return "database"
        if self.extension == ".json":
            return "json"
        return "other"


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    """A table holding key/value settings and its inferred columns."""

    table: str
    key_column: str
    value_column: str
