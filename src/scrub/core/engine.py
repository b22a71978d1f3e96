"""Reset orchestration engine."""

from __future__ import annotations

import enum
import logging
import queue
import threading
from pathlib import Path

from scrub.config import Config
from scrub.core.backup import BackupManager
from scrub.core.cache import CacheEvictor, cache_report
from scrub.core.database import DatabaseSanitizer
from scrub.core.discovery import Discovery
from scrub.core.identifiers import IdentifierMutator
from scrub.core.processes import ProcessInspector, PsutilInspector
from scrub.core.progress import ProgressReporter, QueueReporter
from scrub.errors import ApplicationNotFound, ApplicationRunning, BackupError
from scrub.models.clean_result import CacheSummary, DatabaseSummary, ResetReport
from scrub.models.profile import DiscoveredApplication
from scrub.models.progress import ProgressUpdate
from scrub.utils import find_database_files, format_size

log = logging.getLogger(__name__)

PROGRESS_DISCOVER = 10.0
PROGRESS_DISCOVERED = 15.0
PROGRESS_TELEMETRY = 20.0
PROGRESS_DATABASE = 50.0
PROGRESS_DATABASE_SPAN = 15.0
PROGRESS_DATABASE_END = 65.0
PROGRESS_CACHE = 80.0
PROGRESS_DONE = 100.0


class EngineState(enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DISCOVERING = "discovering"
    PRUNING_BACKUPS = "pruning_backups"
    MUTATING_IDENTIFIERS = "mutating_identifiers"
    SANITIZING_DATABASES = "sanitizing_databases"
    EVICTING_CACHE = "evicting_cache"
    COMPLETE = "complete"
    ERROR = "error"


class ResetEngine:
    """Sequences discovery, backup, identifier, database and cache phases.

    Phases run synchronously inside :meth:`clean_application`; callers that
    need a responsive front-end run it on a worker thread and read updates
    from :attr:`progress_queue`.
    """

    def __init__(
        self,
        config: Config,
        *,
        inspector: ProcessInspector | None = None,
        reporter: ProgressReporter | None = None,
        logger: logging.Logger | None = None,
        backup_root: Path | str | None = None,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.log = logger or log
        self.reporter = reporter or QueueReporter()
        self.dry_run = dry_run
        self.state = EngineState.IDLE
        self._last_progress = 0.0

        options = config.cleaning_options
        backup_options = config.backup_options
        self.backups = BackupManager(
            backup_root or backup_options.directory or None,
            enabled=backup_options.enabled,
            compression=backup_options.compression,
        )
        self.database = DatabaseSanitizer(options.cache_table_patterns, dry_run=dry_run)
        self.identifiers = IdentifierMutator(
            options.telemetry_keys,
            options.session_keys,
            options.database_files,
            self.backups,
            self.database,
            dry_run=dry_run,
        )
        self.cache = CacheEvictor(options.cache_directories, self.backups, dry_run=dry_run)
        self.discovery = Discovery(config.applications, inspector or PsutilInspector())
        self.discovery.discover()

    # ── queries ──────────────────────────────────────────────────────────

    @property
    def progress_queue(self) -> queue.Queue[ProgressUpdate] | None:
        """Receive side of the progress stream, when the reporter is queue-backed."""
        return getattr(self.reporter, "queue", None)

    @property
    def backup_directory(self) -> Path:
        return self.backups.root

    def discover(self) -> dict[str, str]:
        """Re-run discovery and return application name -> data path."""
        return self.discovery.rediscover()

    def app_paths(self) -> dict[str, str]:
        """Data paths from the last discovery."""
        return self.discovery.resolved_paths()

    def applications(self) -> dict[str, DiscoveredApplication]:
        """Fresh discovery records including running state and size."""
        result: dict[str, DiscoveredApplication] = {}
        for name, path in self.discover().items():
            profile = self.config.applications[name]
            app = DiscoveredApplication(name=name, display_name=profile.display_name, path=path)
            if path:
                app.running = self.is_running(name)
                app.size = self.format_size(self.directory_size(path))
            result[name] = app
        return result

    def is_running(self, app_name: str) -> bool:
        return self.discovery.is_running(app_name)

    def directory_size(self, path: Path | str) -> int:
        return self.discovery.directory_size(str(path))

    def format_size(self, size_bytes: int) -> str:
        return self.discovery.format_size(size_bytes)

    # ── cleaning ─────────────────────────────────────────────────────────

    def clean_application(
        self,
        app_name: str,
        cancel: threading.Event | None = None,
    ) -> ResetReport | None:
        """Reset one application's identity, databases and caches.

        Only precondition failures raise; everything after validation is
        logged, counted and reported through progress updates.

        Args:
            app_name: Configured application name.
            cancel: Checked once before the run starts; a set event skips
                the run and returns None.

        Raises:
            ApplicationNotFound: If the application has no discovered path.
            ApplicationRunning: If it is running and the safety check is on.
        """
        if cancel is not None and cancel.is_set():
            self.log.info("Cancelled before cleaning %s", app_name)
            return None

        self._last_progress = 0.0
        self.state = EngineState.VALIDATING
        self._send("start", f"Starting reset of {app_name}", 0, app_name)

        app_path = self.discovery.path_of(app_name)
        if not app_path:
            self._fail(app_name, f"Application {app_name} not found")
            raise ApplicationNotFound(app_name)
        if self.config.safety_options.check_running_processes and self.is_running(app_name):
            self._fail(app_name, f"Application {app_name} is running")
            raise ApplicationRunning(app_name)

        report = ResetReport(app_name=app_name, path=app_path)
        backups_before = len(self.backups.records)

        self.state = EngineState.DISCOVERING
        self._send("discover", "Analysing application data", PROGRESS_DISCOVER, app_name)
        try:
            cache_info = self.discover_cache_info(app_path)
            total = sum(cache_info.values())
            self._send(
                "discover",
                f"Found {len(cache_info)} cache kinds, {format_size(total)} in total",
                PROGRESS_DISCOVERED,
                app_name,
            )
        except Exception:
            self.log.exception("Cache discovery failed for %s", app_name)
            report.errors.append("discovery")

        self.state = EngineState.PRUNING_BACKUPS
        try:
            self.backups.prune_older_than(self.config.backup_options.retention_days)
        except Exception:
            self.log.exception("Pruning old backups failed")
            report.errors.append("prune")

        self.state = EngineState.MUTATING_IDENTIFIERS
        self._send("phase", "Resetting telemetry identifiers", PROGRESS_TELEMETRY, app_name, "telemetry")
        try:
            report.mutation = self.identifiers.run(
                app_path, app_name, self._phase_progress("telemetry", app_name)
            )
        except Exception:
            self.log.exception("Failed to modify telemetry for %s", app_name)
            report.errors.append("telemetry")

        self.state = EngineState.SANITIZING_DATABASES
        self._send("phase", "Resetting databases", PROGRESS_DATABASE, app_name, "database")
        try:
            report.databases = self.clean_databases(app_path, app_name)
        except Exception:
            self.log.exception("Failed to clean databases for %s", app_name)
            report.errors.append("database")

        self.state = EngineState.EVICTING_CACHE
        self._send("phase", "Resetting cache directories", PROGRESS_CACHE, app_name, "cache")
        try:
            report.cache = self.clean_cache(app_path, app_name)
        except Exception:
            self.log.exception("Failed to clean cache for %s", app_name)
            report.errors.append("cache")

        report.backups = self.backups.records[backups_before:]
        self.state = EngineState.COMPLETE
        self._send("complete", f"Successfully reset {app_name}", PROGRESS_DONE, app_name)
        return report

    def clean_all(self, cancel: threading.Event | None = None) -> dict[str, ResetReport | Exception]:
        """Reset every discovered application, one at a time.

        Precondition failures are collected per application instead of
        stopping the batch.  *cancel* is honoured between applications.
        """
        results: dict[str, ResetReport | Exception] = {}
        for name, path in self.app_paths().items():
            if not path:
                continue
            if cancel is not None and cancel.is_set():
                self.log.info("Cancelled, skipping remaining applications")
                break
            try:
                report = self.clean_application(name)
            except (ApplicationNotFound, ApplicationRunning) as exc:
                self.log.warning("Skipping %s: %s", name, exc)
                results[name] = exc
                continue
            if report is not None:
                results[name] = report
        return results

    def clean_databases(self, root: Path | str, app_name: str) -> DatabaseSummary:
        """Back up and sanitize every database file under *root*."""
        on_progress = self._phase_progress("database", app_name)
        files = find_database_files(root)
        summary = DatabaseSummary(files_found=len(files))
        if not files:
            self.log.warning("No database files found for %s", app_name)
            on_progress("No database files found", PROGRESS_DATABASE_END)
            return summary

        on_progress(f"Found {len(files)} database files", PROGRESS_DATABASE)
        keywords = self.config.cleaning_options.database_keywords
        for index, candidate in enumerate(files):
            percent = PROGRESS_DATABASE + index * PROGRESS_DATABASE_SPAN / (len(files) + 1)
            on_progress(f"Processing database ({index + 1}/{len(files)}): {candidate.path.name}", percent)

            try:
                self.backups.backup(candidate.path, f"{app_name}_database_{candidate.path.name}")
            except BackupError as e:
                self.log.warning("Backup of %s failed, continuing: %s", candidate.path, e)

            outcome = self.database.clean_advanced(candidate.path, keywords)
            summary.add(outcome)
            if outcome.cleaned:
                self.log.info("Sanitized %s (%d rows)", candidate.path, outcome.rows_affected)

        on_progress(
            f"Database reset finished (cleaned: {summary.files_cleaned}/{summary.files_processed}, "
            f"rows: {summary.rows_affected}, failed: {summary.failed_files})",
            PROGRESS_DATABASE_END,
        )
        return summary

    def discover_cache_info(self, root: Path | str) -> dict[str, int]:
        """Bytes occupied per configured cache kind found under *root*."""
        return self.cache.cache_info(root)

    def clean_cache(self, root: Path | str, app_name: str) -> CacheSummary:
        """Back up and clear every cache directory under *root*."""
        summary = self.cache.run(root, app_name, self._phase_progress("cache", app_name))
        self.log.info("%s", cache_report(app_name, summary))
        return summary

    # ── progress ─────────────────────────────────────────────────────────

    def _phase_progress(self, phase: str, app_name: str):
        def on_progress(message: str, percent: float) -> None:
            self._send(phase, message, percent, app_name, phase)

        return on_progress

    def _send(self, kind: str, message: str, percent: float, app_name: str = "", phase: str = "") -> None:
        """Hand an update to the reporter; percentages never go backwards."""
        self._last_progress = max(self._last_progress, min(float(percent), PROGRESS_DONE))
        update = ProgressUpdate(
            kind=kind,
            message=message,
            progress=self._last_progress,
            app_name=app_name,
            phase=phase,
        )
        try:
            self.reporter.report(update)
        except Exception:
            self.log.exception("Progress reporter failed")

    def _fail(self, app_name: str, message: str) -> None:
        self.state = EngineState.ERROR
        self.log.error("%s", message)
        self._send("error", message, self._last_progress, app_name)
