"""CLI interface for Scrub."""

from __future__ import annotations

import json
import logging
import logging.handlers
import queue
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, TypeVar

import click

from scrub.config import Config, LoggingOptions, default_config_path, load_config, save_config
from scrub.core.backup import BackupManager
from scrub.core.database import DatabaseSanitizer
from scrub.core.engine import ResetEngine
from scrub.errors import BackupError, ConfigError, DatabaseError, PreconditionError
from scrub.models.clean_result import ResetReport
from scrub.models.progress import ProgressUpdate
from scrub.utils import dir_size, format_elapsed, format_size

T = TypeVar("T")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class _State:
    config: Config
    config_path: Path | None
    dry_run: bool


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _add_file_handler(path: Path, options: LoggingOptions) -> None:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max(options.max_size_mb, 1) * 1024 * 1024,
        backupCount=options.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, options.level.upper(), logging.INFO))
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > handler.level:
        root.setLevel(handler.level)


def _build_engine(state: _State) -> ResetEngine:
    return ResetEngine(state.config, dry_run=state.dry_run)


def _backup_manager(config: Config) -> BackupManager:
    options = config.backup_options
    return BackupManager(options.directory or None, enabled=options.enabled, compression=options.compression)


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ./reset_config.json or the user config dir)",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this rotating file",
)
@click.option("--dry-run", is_flag=True, help="Report what would change without changing anything")
@click.pass_context
def main(ctx: click.Context, verbose: int, config_path: Path | None, log_file: Path | None, dry_run: bool) -> None:
    """Scrub: reset the local identity of editor applications."""
    _setup_logging(verbose)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    if log_file:
        _add_file_handler(log_file, config.logging)
    ctx.obj = _State(config=config, config_path=config_path, dry_run=dry_run)


# ── progress ─────────────────────────────────────────────────────────────

def _echo_progress(update: ProgressUpdate) -> None:
    percent = f"[{update.progress:5.1f}%]"
    if update.kind == "error":
        click.echo(f"  {click.style(percent, fg='red')} {update.message}")
    elif update.done:
        click.echo(f"  {click.style(percent, fg='green', bold=True)} {update.message}")
    else:
        click.echo(f"  {click.style(percent, fg='bright_black')} {update.message}")


def _run_with_progress(engine: ResetEngine, func: Callable[..., T], *args) -> T:
    """Run *func* while a daemon thread echoes the engine's progress queue."""
    updates = engine.progress_queue
    if updates is None:
        return func(*args)

    stop = threading.Event()

    def drain() -> None:
        while not (stop.is_set() and updates.empty()):
            try:
                update = updates.get(timeout=0.1)
            except queue.Empty:
                continue
            _echo_progress(update)

    thread = threading.Thread(target=drain, name="scrub-progress", daemon=True)
    thread.start()
    try:
        return func(*args)
    finally:
        stop.set()
        thread.join()


def _print_report(report: ResetReport, elapsed: float, dry_run: bool) -> None:
    m, d, c = report.mutation, report.databases, report.cache
    click.echo(f"\n  {click.style(report.app_name, fg='cyan', bold=True)} ({report.path})")
    click.echo(
        f"    Identifiers: {m.files_processed}/{m.files_found} files, "
        f"{m.updated_keys} updated, {m.deleted_keys} deleted, {m.failed_files} failed"
    )
    click.echo(
        f"    Databases:   {d.files_cleaned}/{d.files_processed} cleaned, "
        f"{d.rows_affected} rows, {d.failed_files} failed"
    )
    click.echo(
        f"    Cache:       {c.cleaned_dirs}/{c.dir_count} directories, "
        f"freed {click.style(format_size(c.freed_bytes), fg='green', bold=True)}"
    )
    click.echo(f"    Backups:     {len(report.backups)}")
    if report.errors:
        click.echo(f"    {click.style('Failed phases:', fg='yellow')} {', '.join(report.errors)}")
    click.echo(f"    Elapsed:     {format_elapsed(elapsed)}")
    if dry_run:
        click.echo("\n(dry run, nothing was changed)")
    click.echo()


def _confirm(state: _State, yes: bool, question: str) -> bool:
    if yes or state.dry_run or not state.config.safety_options.require_confirmation:
        return True
    return click.confirm(question, default=False)


# ── discover ─────────────────────────────────────────────────────────────

@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def discover(state: _State, as_json: bool) -> None:
    """Show where each configured application keeps its data."""
    engine = _build_engine(state)
    apps = engine.applications()

    if as_json:
        data = [
            {
                "name": app.name,
                "display_name": app.display_name,
                "path": app.path,
                "found": app.found,
                "running": app.running,
                "size": app.size,
            }
            for app in apps.values()
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not apps:
        click.echo("No applications configured.")
        return

    for app in apps.values():
        if not app.found:
            click.echo(
                f"  {click.style('✗', fg='bright_black')} {app.display_name:20s} — "
                f"{click.style('not found', fg='bright_black')}"
            )
            continue
        running = click.style(" [running]", fg="yellow") if app.running else ""
        click.echo(
            f"  {click.style('✓', fg='green')} {app.display_name:20s} — "
            f"{click.style(app.size, fg='green', bold=True)}  {app.path}{running}"
        )
    click.echo()


# ── clean ────────────────────────────────────────────────────────────────

@main.command()
@click.argument("app_name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def clean(state: _State, app_name: str, yes: bool) -> None:
    """Reset one application's identifiers, databases and caches."""
    engine = _build_engine(state)
    app_path = engine.app_paths().get(app_name, "")
    if not app_path:
        click.echo(f"Application '{app_name}' not found.", err=True)
        sys.exit(1)

    if not _confirm(state, yes, f"Reset {app_name} data at {app_path}?"):
        click.echo("Aborted.")
        return

    click.echo(f"\n{click.style('🧹', bold=True)} Resetting {app_name}...\n")
    started = time.monotonic()
    try:
        report = _run_with_progress(engine, engine.clean_application, app_name)
    except PreconditionError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    if report is not None:
        _print_report(report, time.monotonic() - started, state.dry_run)
    click.echo(f"Backups are stored in {engine.backup_directory}")


@main.command("clean-all")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def clean_all(state: _State, yes: bool) -> None:
    """Reset every application that was found on this machine."""
    engine = _build_engine(state)
    found = {name: path for name, path in engine.app_paths().items() if path}
    if not found:
        click.echo("No applications found.")
        return

    for name, path in found.items():
        click.echo(f"  {click.style(name, fg='cyan', bold=True):20s} {path}")
    if not _confirm(state, yes, f"\nReset all {len(found)} applications?"):
        click.echo("Aborted.")
        return

    started = time.monotonic()
    results = _run_with_progress(engine, engine.clean_all)
    elapsed = time.monotonic() - started

    failed = 0
    for name, result in results.items():
        if isinstance(result, Exception):
            failed += 1
            click.echo(f"  {click.style('✗', fg='red')} {name:20s} — {result}")
        else:
            _print_report(result, elapsed, state.dry_run)
    click.echo(f"Reset {len(results) - failed}/{len(results)} applications in {format_elapsed(elapsed)}")
    if failed:
        sys.exit(1)


# ── backups ──────────────────────────────────────────────────────────────

@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def backups(state: _State, as_json: bool) -> None:
    """List backups, newest first."""
    manager = _backup_manager(state.config)
    entries = manager.list_backups()

    if as_json:
        data = [
            {
                "name": entry.name,
                "path": str(entry),
                "size_bytes": dir_size(entry),
                "modified": datetime.fromtimestamp(entry.lstat().st_mtime).isoformat(timespec="seconds"),
            }
            for entry in entries
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not entries:
        click.echo(f"No backups in {manager.root}.")
        return

    click.echo(f"\n  Backups in {manager.root}:\n")
    for entry in entries:
        modified = datetime.fromtimestamp(entry.lstat().st_mtime).strftime("%Y-%m-%d %H:%M")
        click.echo(f"    {entry.name:60s} {format_size(dir_size(entry)):>10s}  {modified}")
    click.echo()


@main.command()
@click.argument("backup")
@click.argument("destination", type=click.Path(path_type=Path))
@click.pass_obj
def restore(state: _State, backup: str, destination: Path) -> None:
    """Copy BACKUP (a path or a name in the backup directory) back to DESTINATION."""
    manager = _backup_manager(state.config)
    source = Path(backup)
    if not source.exists():
        source = manager.root / backup
    try:
        restored = manager.restore(source, destination)
    except BackupError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    click.echo(f"Restored {source.name} to {restored}")


# ── test-db ──────────────────────────────────────────────────────────────

@main.command("test-db")
@click.argument("path", type=click.Path(path_type=Path))
def test_db(path: Path) -> None:
    """Check that a database can be opened and show a sample of its contents."""
    try:
        tables, sample = DatabaseSanitizer().test_connection(path)
    except DatabaseError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    click.echo(f"\n  {click.style('✓', fg='green')} Connected to {path}")
    click.echo(f"  Tables ({len(tables)}): {', '.join(tables) if tables else '-'}")
    if sample:
        click.echo("\n  ItemTable sample:")
        for key, value in sample:
            shown = value if len(value) <= 60 else value[:57] + "..."
            click.echo(f"    {key:40s} {shown}")
    click.echo()


# ── config ───────────────────────────────────────────────────────────────

@main.group("config")
def config_group() -> None:
    """Configuration file commands."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_obj
def config_init(state: _State, force: bool) -> None:
    """Write the default configuration to disk."""
    path = state.config_path or default_config_path()
    if path.exists() and not force:
        click.echo(f"Configuration already exists at {path} (use --force to overwrite).", err=True)
        sys.exit(1)
    try:
        written = save_config(Config(), path)
    except ConfigError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    click.echo(f"Wrote default configuration to {written}")
