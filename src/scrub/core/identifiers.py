"""Telemetry and session identifier mutation across JSON and SQLite files."""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from scrub.core.backup import BackupManager
from scrub.core.database import DatabaseSanitizer
from scrub.errors import BackupError
from scrub.models.clean_result import FileOutcome, MutationSummary
from scrub.models.scan_result import CandidateFile
from scrub.utils import find_database_files, find_files_by_name

log = logging.getLogger(__name__)

PhaseProgress = Callable[[str, float], None]  # (message, percent)

PROGRESS_START = 20.0
PROGRESS_FILES_FROM = 22.0
PROGRESS_FILES_SPAN = 18.0
PROGRESS_END = 45.0


@dataclass(slots=True)
class _JsonCounts:
    updated: int = 0
    deleted: int = 0


def mutate_json(
    data: dict[str, Any],
    telemetry_keys: Iterable[str],
    session_keys: Iterable[str],
    machine_id: str,
    session_id: str,
) -> tuple[int, int]:
    """Rewrite identifiers in a parsed JSON object, in place.

    Telemetry keys holding a string are overwritten with *session_id* when
    the key mentions ``session``, else with *machine_id*.  Session keys are
    deleted.  Nested objects, including objects inside arrays, are visited.

    Returns:
        (keys_updated, keys_deleted) tuple.
    """
    counts = _JsonCounts()
    _mutate_object(data, list(telemetry_keys), list(session_keys), machine_id, session_id, counts)
    return counts.updated, counts.deleted


def _mutate_object(
    data: dict[str, Any],
    telemetry_keys: list[str],
    session_keys: list[str],
    machine_id: str,
    session_id: str,
    counts: _JsonCounts,
) -> None:
    for key in telemetry_keys:
        if isinstance(data.get(key), str):
            data[key] = session_id if "session" in key.lower() else machine_id
            counts.updated += 1

    for key in session_keys:
        if key in data:
            del data[key]
            counts.deleted += 1

    for value in data.values():
        if isinstance(value, dict):
            _mutate_object(value, telemetry_keys, session_keys, machine_id, session_id, counts)
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    _mutate_object(item, telemetry_keys, session_keys, machine_id, session_id, counts)


class IdentifierMutator:
    """Finds identity-bearing files under an application root and resets them."""

    def __init__(
        self,
        telemetry_keys: Iterable[str],
        session_keys: Iterable[str],
        target_files: Iterable[str],
        backups: BackupManager,
        database: DatabaseSanitizer,
        *,
        dry_run: bool = False,
    ) -> None:
        self.telemetry_keys = list(telemetry_keys)
        self.session_keys = list(session_keys)
        self.target_files = list(target_files)
        self.backups = backups
        self.database = database
        self.dry_run = dry_run

    def find_candidates(self, root: Path | str) -> list[CandidateFile]:
        """Files named in the target list, or every database file as fallback."""
        found = find_files_by_name(root, self.target_files)
        if not found:
            log.warning("No target files under %s, falling back to database files", root)
            found = find_database_files(root)
        return found

    def run(
        self,
        root: Path | str,
        app_name: str,
        on_progress: PhaseProgress | None = None,
    ) -> MutationSummary:
        """Mutate identifiers in every candidate file under *root*.

        Per-file failures are counted and never stop the loop.
        """
        candidates = self.find_candidates(root)
        summary = MutationSummary(files_found=len(candidates))
        total = len(candidates)

        if on_progress:
            on_progress(f"Processing {total} identifier files", PROGRESS_START)

        for index, candidate in enumerate(candidates):
            if on_progress:
                percent = PROGRESS_FILES_FROM + index * PROGRESS_FILES_SPAN / (total + 1)
                on_progress(f"Processing file ({index + 1}/{total}): {candidate.path.name}", percent)

            if not candidate.path.exists():
                log.warning("File disappeared, skipping: %s", candidate.path)
                summary.failed_files += 1
                continue

            if candidate.kind == "other":
                log.debug("Unsupported file type, skipping: %s", candidate.path)
                continue

            self._backup(candidate.path, f"{app_name}_telemetry_{candidate.path.name}")

            if candidate.kind == "database":
                outcome = self.database.mutate_identifiers(
                    candidate.path, self.telemetry_keys, self.session_keys
                )
            else:
                outcome = self.process_json_file(candidate.path)

            summary.add(outcome)
            if outcome.changed:
                log.info(
                    "Reset identifiers in %s (updated %d, deleted %d)",
                    candidate.path,
                    outcome.updated_keys,
                    outcome.deleted_keys,
                )

        if on_progress:
            on_progress(
                f"Identifier reset finished (processed: {summary.files_processed}, "
                f"updated: {summary.updated_keys}, deleted: {summary.deleted_keys}, "
                f"failed: {summary.failed_files})",
                PROGRESS_END,
            )
        return summary

    def _backup(self, path: Path, label: str) -> None:
        try:
            backup_path = self.backups.backup(path, label)
        except BackupError as e:
            log.warning("Backup of %s failed, continuing: %s", path, e)
        else:
            if backup_path:
                log.debug("Backed up %s to %s", path, backup_path)

    def process_json_file(self, path: Path | str) -> FileOutcome:
        """Mutate identifiers in one JSON document.

        Empty files and documents whose root is an array are left alone and
        reported as success.  Rewrites go through a temporary file and a
        rename; on failure the original is restored from a sibling ``.bak``.
        """
        path = Path(path)
        safety_copy = path.with_name(path.name + ".bak")
        try:
            shutil.copy2(path, safety_copy)
            has_safety_copy = True
        except OSError as e:
            log.debug("Could not create safety copy of %s: %s", path, e)
            has_safety_copy = False

        try:
            return self._rewrite_json(path, safety_copy if has_safety_copy else None)
        finally:
            if has_safety_copy:
                try:
                    safety_copy.unlink()
                except OSError:
                    log.debug("Could not remove safety copy %s", safety_copy)

    def _rewrite_json(self, path: Path, safety_copy: Path | None) -> FileOutcome:
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Failed to read JSON file %s: %s", path, e)
            return FileOutcome(success=False)

        if not raw.strip():
            log.warning("JSON file is empty: %s", path)
            return FileOutcome()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log.error("Failed to parse JSON file %s: %s", path, e)
            return FileOutcome(success=False)

        if isinstance(data, list):
            log.warning("JSON file has an array root, not supported: %s", path)
            return FileOutcome()
        if not isinstance(data, dict):
            log.warning("JSON file has a scalar root, nothing to do: %s", path)
            return FileOutcome()

        updated, deleted = mutate_json(
            data,
            self.telemetry_keys,
            self.session_keys,
            str(uuid.uuid4()),
            str(uuid.uuid4()),
        )
        outcome = FileOutcome(updated_keys=updated, deleted_keys=deleted)
        if not outcome.changed:
            log.debug("JSON file needs no changes: %s", path)
            return outcome
        if self.dry_run:
            log.info("Would rewrite %s (updated %d, deleted %d)", path, updated, deleted)
            return outcome

        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            try:
                shutil.copymode(path, tmp_path)
            except OSError as e:
                log.warning("Could not copy permissions to %s: %s", tmp_path, e)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            log.error("Failed to write JSON file %s: %s", path, e)
            _discard(tmp_path)
            if safety_copy is not None:
                _restore(safety_copy, path)
            return FileOutcome(success=False)

        log.info("Updated JSON file %s (updated %d, deleted %d)", path, updated, deleted)
        return outcome


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        log.debug("Could not remove temporary file %s: %s", path, e)


def _restore(safety_copy: Path, path: Path) -> None:
    try:
        shutil.copy2(safety_copy, path)
    except OSError as e:
        log.error("Failed to restore %s from %s: %s", path, safety_copy, e)
    else:
        log.info("Restored original %s", path)
