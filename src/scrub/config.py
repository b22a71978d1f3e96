"""JSON-backed reset configuration.

The configuration file (``reset_config.json``) carries the application
profiles, the identifier key lists, cache directory names and the backup,
safety and logging options.  A missing file yields the built-in defaults.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from scrub.errors import ConfigError
from scrub.models.profile import ApplicationProfile
from scrub.utils import xdg_config_home

log = logging.getLogger(__name__)

CONFIG_FILE = "reset_config.json"
_CONFIG_DIR = "scrub"


def _default_applications() -> dict[str, ApplicationProfile]:
    return {
        "cursor": ApplicationProfile(
            name="cursor",
            display_name="Cursor",
            process_names=("cursor", "cursor.exe"),
            data_paths={
                "windows": (
                    "%APPDATA%/Cursor",
                    "%LOCALAPPDATA%/Cursor",
                    "%APPDATA%/cursor-ai",
                    "%LOCALAPPDATA%/cursor-ai",
                ),
                "darwin": (
                    "~/Library/Application Support/Cursor",
                    "~/Library/Application Support/cursor-ai",
                ),
                "linux": ("~/.config/Cursor", "~/.config/cursor-ai"),
            },
        ),
        "windsurf": ApplicationProfile(
            name="windsurf",
            display_name="Windsurf",
            process_names=("windsurf", "windsurf.exe", "Windsurf"),
            data_paths={
                "windows": (
                    "%APPDATA%/Windsurf",
                    "%LOCALAPPDATA%/Windsurf",
                    "%APPDATA%/windsurf-ai",
                    "%LOCALAPPDATA%/windsurf-ai",
                    "%APPDATA%/Codeium/Windsurf",
                    "%LOCALAPPDATA%/Codeium/Windsurf",
                ),
                "darwin": (
                    "~/Library/Application Support/Windsurf",
                    "~/Library/Application Support/windsurf-ai",
                    "~/Library/Application Support/Codeium/Windsurf",
                ),
                "linux": (
                    "~/.config/Windsurf",
                    "~/.config/windsurf-ai",
                    "~/.config/Codeium/Windsurf",
                ),
            },
        ),
    }


@dataclass(slots=True)
class CleaningOptions:
    """Which keys, files, directories and tables the reset touches."""

    telemetry_keys: list[str] = field(default_factory=lambda: [
        "machineId",
        "telemetry.machineId",
        "telemetryMachineId",
        "deviceId",
        "telemetry.deviceId",
        "lastSessionId",
        "sessionId",
        "installationId",
        "sqmUserId",
        "sqmMachineId",
        "clientId",
        "instanceId",
    ])
    session_keys: list[str] = field(default_factory=lambda: [
        "lastSessionDate",
        "sessionStartTime",
        "userSession",
        "authToken",
        "accessToken",
        "refreshToken",
        "bearerToken",
        "apiKey",
        "userToken",
    ])
    database_keywords: list[str] = field(default_factory=lambda: [
        "augment",
        "account",
        "session",
        "user",
        "login",
        "auth",
        "token",
        "credential",
        "profile",
        "identity",
    ])
    cache_directories: list[str] = field(default_factory=lambda: [
        "IndexedDB",
        "Local Storage",
        "Cache",
        "Code Cache",
        "GPUCache",
        "blob_storage",
        "logs",
        "User/workspaceStorage",
        "User/History",
        "User/logs",
        "CachedData",
        "CachedExtensions",
        "ShaderCache",
        "WebStorage",
    ])
    database_files: list[str] = field(default_factory=lambda: [
        "state.vscdb",
        "storage.json",
        "preferences.json",
        "settings.json",
    ])
    cache_table_patterns: list[str] = field(default_factory=lambda: [
        "cache",
        "session",
        "temp",
        "log",
        "history",
        "recent",
        "workspace",
        "project",
    ])
    registry_patterns: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BackupOptions:
    enabled: bool = True
    compression: bool = False
    retention_days: int = 30
    max_backup_size_mb: int = 1000
    directory: str = ""


@dataclass(slots=True)
class SafetyOptions:
    require_confirmation: bool = True
    check_running_processes: bool = True
    create_restore_script: bool = True
    verify_backups: bool = True


@dataclass(slots=True)
class LoggingOptions:
    level: str = "INFO"
    file: str = "scrub.log"
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass(slots=True)
class Config:
    """Top-level reset configuration."""

    version: str = "1.0.0"
    description: str = "Application identity reset configuration"
    applications: dict[str, ApplicationProfile] = field(default_factory=_default_applications)
    cleaning_options: CleaningOptions = field(default_factory=CleaningOptions)
    backup_options: BackupOptions = field(default_factory=BackupOptions)
    safety_options: SafetyOptions = field(default_factory=SafetyOptions)
    logging: LoggingOptions = field(default_factory=LoggingOptions)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build a config from parsed JSON, falling back to defaults per field."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a JSON object")
        config = cls()
        if "version" in data:
            config.version = str(data["version"])
        if "description" in data:
            config.description = str(data["description"])
        if "applications" in data:
            config.applications = _parse_applications(data["applications"])
        config.cleaning_options = _parse_section(CleaningOptions, data, "cleaning_options")
        config.backup_options = _parse_section(BackupOptions, data, "backup_options")
        config.safety_options = _parse_section(SafetyOptions, data, "safety_options")
        config.logging = _parse_section(LoggingOptions, data, "logging")
        return config

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON layout read by ``from_dict``."""
        return {
            "version": self.version,
            "description": self.description,
            "applications": {
                name: {
                    "display_name": profile.display_name,
                    "process_names": list(profile.process_names),
                    "data_paths": {os_id: list(paths) for os_id, paths in profile.data_paths.items()},
                }
                for name, profile in self.applications.items()
            },
            "cleaning_options": asdict(self.cleaning_options),
            "backup_options": asdict(self.backup_options),
            "safety_options": asdict(self.safety_options),
            "logging": asdict(self.logging),
        }


def _parse_section(cls: type, data: dict[str, Any], key: str) -> Any:
    raw = data.get(key, {})
    if not isinstance(raw, dict):
        raise ConfigError(f"'{key}' must be a JSON object")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        log.debug("Ignoring unknown %s keys: %s", key, ", ".join(sorted(unknown)))
    return cls(**{k: v for k, v in raw.items() if k in known})


def _string_tuple(value: Any, what: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{what} must be a list of strings")
    return tuple(value)


def _parse_applications(raw: Any) -> dict[str, ApplicationProfile]:
    if not isinstance(raw, dict):
        raise ConfigError("'applications' must be a JSON object")
    apps: dict[str, ApplicationProfile] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Application '{name}' must be a JSON object")
        data_paths = entry.get("data_paths", {})
        if not isinstance(data_paths, dict):
            raise ConfigError(f"'data_paths' of application '{name}' must be a JSON object")
        apps[name] = ApplicationProfile(
            name=name,
            display_name=entry.get("display_name") or name,
            process_names=_string_tuple(entry.get("process_names", ()), f"'process_names' of application '{name}'"),
            data_paths={
                os_id: _string_tuple(paths, f"'data_paths.{os_id}' of application '{name}'")
                for os_id, paths in data_paths.items()
            },
        )
    return apps


def default_config_path() -> Path:
    """Return the config file to use when none is given explicitly.

    Prefers ``reset_config.json`` in the working directory, then the one in
    the user config directory.
    """
    local = Path(CONFIG_FILE)
    if local.exists():
        return local
    return xdg_config_home() / _CONFIG_DIR / CONFIG_FILE


def load_config(path: Path | str | None = None) -> Config:
    """Load the configuration, returning defaults when the file is missing.

    Raises:
        ConfigError: If the file exists but cannot be read or parsed.
    """
    config_path = Path(path) if path else default_config_path()
    if not config_path.exists():
        log.info("No configuration at %s, using defaults", config_path)
        return Config()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e
    try:
        return Config.from_dict(data)
    except TypeError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e


def save_config(config: Config, path: Path | str | None = None) -> Path:
    """Persist the configuration as indented JSON and return the path written.

    Raises:
        ConfigError: If the file cannot be written.
    """
    config_path = Path(path) if path else default_config_path()
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(
            json.dumps(config.to_dict(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
    except OSError as e:
        raise ConfigError(f"Failed to write config file {config_path}: {e}") from e
    return config_path
