"""Shared utility functions."""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Iterable

from scrub.models.scan_result import DATABASE_EXTENSIONS, CandidateFile

log = logging.getLogger(__name__)

_PERCENT_VAR = re.compile(r"%([^%]+)%")
_DOLLAR_VAR = re.compile(r"\$(?:\{([^}]+)\}|([A-Za-z_][A-Za-z0-9_]*))")
_SIZE_UNITS = "KMGTPE"


def xdg_config_home() -> Path:
    """Return XDG_CONFIG_HOME, defaulting to ~/.config."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def current_os() -> str:
    """Map ``sys.platform`` to the OS identifiers used in path templates."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def _env(name: str) -> str:
    value = os.environ.get(name, "")
    if not value:
        log.debug("Environment variable not found: %s", name)
    return value


def expand_path(template: str) -> str:
    """Resolve a path template into an OS-native path string.

    Handles a leading ``~`` and ``$VAR``, ``${VAR}`` and ``%VAR%``
    placeholders.  Unset variables expand to an empty string.  Never
    raises; whether the result exists is for the caller to check.
    """
    result = template
    if result.startswith("~"):
        try:
            result = str(Path.home()) + result[1:]
        except RuntimeError as exc:
            log.warning("Failed to resolve home directory: %s", exc)

    result = _DOLLAR_VAR.sub(lambda m: _env(m.group(1) or m.group(2)), result)
    result = _PERCENT_VAR.sub(lambda m: _env(m.group(1)), result)
    return os.path.normpath(result.replace("/", os.sep)) if result else result


def dir_info(path: Path | str) -> tuple[int, int]:
    """Calculate total size and file count of a directory tree.

    Symlinks are not followed and unreadable entries are skipped.

    Returns:
        (total_bytes, file_count) tuple.
    """
    total = 0
    count = 0
    stack: list[Path | str] = [path]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                for entry in it:
                    try:
                        if entry.is_file(follow_symlinks=False):
                            total += entry.stat(follow_symlinks=False).st_size
                            count += 1
                        elif entry.is_dir(follow_symlinks=False):
                            stack.append(entry.path)
                    except OSError:
                        pass
        except NotADirectoryError:
            try:
                total += os.stat(current, follow_symlinks=False).st_size
                count += 1
            except OSError:
                pass
        except OSError:
            pass
    return total, count


def dir_size(path: Path | str) -> int:
    """Calculate total size of a directory tree."""
    return dir_info(path)[0]


def format_size(size_bytes: int) -> str:
    """Convert a byte count to a human-readable string using 1024 units."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    value = float(size_bytes)
    exp = -1
    while value >= 1024 and exp < len(_SIZE_UNITS) - 1:
        value /= 1024
        exp += 1
    return f"{value:.1f} {_SIZE_UNITS[exp]}B"


def is_backup_path(path: Path | str) -> bool:
    """Whether *path* looks like a backup copy that must never be touched."""
    text = str(path)
    return "backup" in text.lower() or ".bak" in text


def _walk_files(root: Path | str) -> Iterable[Path]:
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        for name in filenames:
            yield Path(dirpath) / name


def _log_walk_error(exc: OSError) -> None:
    log.debug("Error accessing path: %s", exc)


def find_files_by_name(root: Path | str, filenames: Iterable[str]) -> list[CandidateFile]:
    """Recursively find files whose base name matches one of *filenames*.

    Matching is case-insensitive.
    """
    targets = {name.lower() for name in filenames}
    found = [CandidateFile(p) for p in _walk_files(root) if p.name.lower() in targets]
    log.info("Found %d target files under %s", len(found), root)
    return found


def find_database_files(root: Path | str) -> list[CandidateFile]:
    """Recursively find database files by extension, skipping backups.

    Only the part of each path below *root* is checked for backup markers.
    """
    found: list[CandidateFile] = []
    for path in _walk_files(root):
        if path.suffix.lower() in DATABASE_EXTENSIONS and not is_backup_path(path.relative_to(root)):
            found.append(CandidateFile(path))
    log.info("Found %d database files under %s", len(found), root)
    return found


def find_directories(root: Path | str, dir_name: str) -> list[Path]:
    """Recursively find directories matching *dir_name*.

    A plain name matches on the directory's base name.  A hinted name such
    as ``User/workspaceStorage`` matches on its last segment when the parent
    directory is named after the first segment, or the path contains it.
    Symlinked directories are never matched.
    """
    parts = dir_name.split("/")
    found: list[Path] = []
    for dirpath, dirnames, _filenames in os.walk(root, onerror=_log_walk_error):
        for name in dirnames:
            path = Path(dirpath) / name
            if path.is_symlink():
                continue
            if len(parts) == 1:
                if name == dir_name:
                    found.append(path)
            elif name == parts[-1] and (path.parent.name == parts[0] or parts[0] in str(path)):
                found.append(path)
    log.debug("Found %d '%s' directories under %s", len(found), dir_name, root)
    return found


def format_elapsed(seconds: float) -> str:
    """Format an elapsed time as a human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds) // 60
    secs = seconds - minutes * 60
    return f"{minutes}m {secs:.0f}s"
