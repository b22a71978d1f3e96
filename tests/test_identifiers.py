"""Tests for identifier mutation in JSON and database files."""

from __future__ import annotations

import json
import os
import stat

import pytest

from tests.helpers import make_item_db, read_item_db
from scrub.core.backup import BackupManager
from scrub.core import identifiers
from scrub.core.database import DatabaseSanitizer
from scrub.core.identifiers import IdentifierMutator, mutate_json

TELEMETRY = ["telemetry.machineId", "lastSessionId", "deviceId"]
SESSION = ["authToken"]


@pytest.fixture
def mutator(backup_root):
    return IdentifierMutator(
        TELEMETRY,
        SESSION,
        ["storage.json", "state.vscdb"],
        BackupManager(backup_root),
        DatabaseSanitizer(),
    )


class TestMutateJson:
    def test_top_level(self):
        data = {"telemetry.machineId": "old", "lastSessionId": "old", "authToken": "secret", "keep": 1}
        assert mutate_json(data, TELEMETRY, SESSION, "M", "S") == (2, 1)
        assert data == {"telemetry.machineId": "M", "lastSessionId": "S", "keep": 1}

    def test_nested_objects_and_arrays(self):
        data = {
            "profile": {"deviceId": "old", "authToken": "x"},
            "windows": [{"deviceId": "old"}, "plain", 3],
        }
        assert mutate_json(data, TELEMETRY, SESSION, "M", "S") == (2, 1)
        assert data["profile"] == {"deviceId": "M"}
        assert data["windows"] == [{"deviceId": "M"}, "plain", 3]

    def test_non_string_values_are_not_replaced(self):
        data = {"deviceId": 42, "lastSessionId": None}
        assert mutate_json(data, TELEMETRY, SESSION, "M", "S") == (0, 0)
        assert data == {"deviceId": 42, "lastSessionId": None}


class TestProcessJsonFile:
    def test_rewrites_with_fresh_ids(self, tmp_path, mutator):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"telemetry.machineId": "old", "authToken": "t"}))
        outcome = mutator.process_json_file(path)

        assert outcome.success and (outcome.updated_keys, outcome.deleted_keys) == (1, 1)
        data = json.loads(path.read_text())
        assert data["telemetry.machineId"] != "old"
        assert len(data["telemetry.machineId"]) == 36
        assert "authToken" not in data
        assert not (tmp_path / "storage.json.bak").exists()
        assert not (tmp_path / "storage.json.tmp").exists()

    def test_preserves_permissions(self, tmp_path, mutator):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"deviceId": "old"}))
        os.chmod(path, 0o600)
        mutator.process_json_file(path)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_two_runs_give_different_ids(self, tmp_path, mutator):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"deviceId": "old"}))
        mutator.process_json_file(path)
        first = json.loads(path.read_text())["deviceId"]
        mutator.process_json_file(path)
        assert json.loads(path.read_text())["deviceId"] != first

    @pytest.mark.parametrize("content", ["", "   \n", "[1, 2]", "42"])
    def test_nothing_to_do(self, tmp_path, mutator, content):
        path = tmp_path / "storage.json"
        path.write_text(content)
        outcome = mutator.process_json_file(path)
        assert outcome.success and not outcome.changed
        assert path.read_text() == content

    def test_malformed_json_fails_and_keeps_file(self, tmp_path, mutator):
        path = tmp_path / "storage.json"
        path.write_text("{broken")
        outcome = mutator.process_json_file(path)
        assert not outcome.success
        assert path.read_text() == "{broken"

    def test_failed_rename_restores_original(self, tmp_path, mutator, monkeypatch):
        path = tmp_path / "storage.json"
        original = json.dumps({"deviceId": "old", "authToken": "t"}).encode()
        path.write_bytes(original)

        def torn_replace(src, dst):
            with open(dst, "wb") as f:
                f.write(b'{"device')
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(identifiers.os, "replace", torn_replace)
        outcome = mutator.process_json_file(path)

        assert outcome.success is False
        assert path.read_bytes() == original
        assert not (tmp_path / "storage.json.tmp").exists()
        assert not (tmp_path / "storage.json.bak").exists()

    def test_dry_run_does_not_write(self, tmp_path, backup_root):
        mutator = IdentifierMutator(
            TELEMETRY, SESSION, [], BackupManager(backup_root), DatabaseSanitizer(dry_run=True), dry_run=True
        )
        path = tmp_path / "storage.json"
        original = json.dumps({"deviceId": "old"})
        path.write_text(original)
        outcome = mutator.process_json_file(path)
        assert outcome.updated_keys == 1
        assert path.read_text() == original


class TestRun:
    def test_json_and_database_targets(self, tmp_path, mutator, backup_root):
        root = tmp_path / "app"
        (root / "User").mkdir(parents=True)
        (root / "User" / "storage.json").write_text(json.dumps({"deviceId": "old", "authToken": "t"}))
        make_item_db(root / "User" / "state.vscdb", {"deviceId": "old", "authToken": "t"})

        updates = []
        summary = mutator.run(root, "demo", lambda msg, pct: updates.append(pct))

        assert summary.files_found == 2
        assert summary.files_processed == 2
        assert (summary.updated_keys, summary.deleted_keys, summary.failed_files) == (2, 2, 0)
        assert read_item_db(root / "User" / "state.vscdb")["deviceId"] != "old"
        assert updates[0] == 20 and updates[-1] == 45
        assert updates == sorted(updates)

        names = sorted(p.name for p in backup_root.iterdir())
        assert len(names) == 2
        assert names[0].startswith("demo_telemetry_state.vscdb_")
        assert names[1].startswith("demo_telemetry_storage.json_")

    def test_falls_back_to_database_files(self, tmp_path, mutator):
        root = tmp_path / "app"
        make_item_db(root / "global.db", {"deviceId": "old"})
        summary = mutator.run(root, "demo")
        assert summary.files_found == 1
        assert summary.updated_keys == 1

    def test_failures_are_counted_not_raised(self, tmp_path, mutator):
        root = tmp_path / "app"
        root.mkdir()
        (root / "storage.json").write_text("{broken")
        make_item_db(root / "state.vscdb", {"deviceId": "old"})
        summary = mutator.run(root, "demo")
        assert summary.files_processed == 2
        assert summary.failed_files == 1
        assert summary.updated_keys == 1

    def test_empty_root(self, tmp_path, mutator):
        root = tmp_path / "app"
        root.mkdir()
        summary = mutator.run(root, "demo")
        assert summary.files_found == 0 and summary.files_processed == 0
