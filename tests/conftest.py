"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from scrub.config import BackupOptions, CleaningOptions, Config, SafetyOptions
from scrub.models.profile import ApplicationProfile
from scrub.utils import current_os
from tests.helpers import FakeInspector, make_item_db


@pytest.fixture
def demo_app(tmp_path) -> Path:
    """Application root with a state database and a 4 KiB cache directory."""
    root = tmp_path / "app"
    make_item_db(
        root / "User" / "globalStorage" / "state.vscdb",
        {"machineId": "old-machine", "sessionId": "old-session", "theme": "dark"},
    )
    cache = root / "Cache"
    cache.mkdir(parents=True)
    (cache / "a.bin").write_bytes(b"a" * 1024)
    (cache / "b.bin").write_bytes(b"b" * 1024)
    (cache / "c.bin").write_bytes(b"c" * 2048)
    return root


@pytest.fixture
def backup_root(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def demo_config(demo_app, backup_root) -> Config:
    """Config with a single ``demo`` application pointing at :func:`demo_app`."""
    return Config(
        applications={
            "demo": ApplicationProfile(
                name="demo",
                display_name="Demo",
                process_names=("demo",),
                data_paths={current_os(): (str(demo_app),)},
            ),
        },
        cleaning_options=CleaningOptions(
            telemetry_keys=["machineId"],
            session_keys=["sessionId"],
            cache_directories=["Cache"],
        ),
        backup_options=BackupOptions(directory=str(backup_root)),
        safety_options=SafetyOptions(),
    )


@pytest.fixture
def fake_inspector() -> FakeInspector:
    return FakeInspector()
