"""Tests for the command-line interface."""

from __future__ import annotations

import json
import logging
import logging.handlers

import pytest
from click.testing import CliRunner

from tests.helpers import FakeInspector, make_item_db
from scrub.cli import main
from scrub.config import save_config
from scrub.core import engine as engine_module


@pytest.fixture(autouse=True)
def no_real_processes(monkeypatch):
    monkeypatch.setattr(engine_module, "PsutilInspector", FakeInspector)


@pytest.fixture
def config_file(tmp_path, demo_config):
    return save_config(demo_config, tmp_path / "reset_config.json")


@pytest.fixture
def run(config_file):
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(main, ["--config", str(config_file), *args], **kwargs)

    return invoke


class TestDiscover:
    def test_json(self, run, demo_app):
        result = run("discover", "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data[0]["name"] == "demo"
        assert data[0]["found"] is True
        assert data[0]["path"] == str(demo_app)
        assert data[0]["running"] is False

    def test_text(self, run):
        result = run("discover")
        assert result.exit_code == 0
        assert "Demo" in result.output


class TestClean:
    def test_clean_with_yes(self, run, demo_app):
        result = run("clean", "demo", "--yes")
        assert result.exit_code == 0, result.output
        assert "Successfully reset demo" in result.output
        assert "100.0%" in result.output
        assert list((demo_app / "Cache").iterdir()) == []

    def test_declined_confirmation(self, run, demo_app):
        result = run("clean", "demo", input="n\n")
        assert result.exit_code == 0
        assert "Aborted." in result.output
        assert len(list((demo_app / "Cache").iterdir())) == 3

    def test_accepted_confirmation(self, run, demo_app):
        result = run("clean", "demo", input="y\n")
        assert result.exit_code == 0, result.output
        assert list((demo_app / "Cache").iterdir()) == []

    def test_dry_run(self, run, demo_app):
        result = run("--dry-run", "clean", "demo")
        assert result.exit_code == 0, result.output
        assert "dry run" in result.output
        assert len(list((demo_app / "Cache").iterdir())) == 3

    def test_unknown_application(self, run):
        result = run("clean", "nope", "--yes")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_running_application(self, run, monkeypatch, demo_app):
        monkeypatch.setattr(engine_module, "PsutilInspector", lambda: FakeInspector({"demo"}))
        result = run("clean", "demo", "--yes")
        assert result.exit_code == 1
        assert "currently running" in result.output
        assert len(list((demo_app / "Cache").iterdir())) == 3

    def test_clean_all(self, run, demo_app):
        result = run("clean-all", "--yes")
        assert result.exit_code == 0, result.output
        assert "Reset 1/1 applications" in result.output
        assert list((demo_app / "Cache").iterdir()) == []

    def test_log_file(self, run, tmp_path):
        log_file = tmp_path / "scrub.log"
        root = logging.getLogger()
        level = root.level
        try:
            result = run("--log-file", str(log_file), "clean", "demo", "--yes")
            assert result.exit_code == 0, result.output
        finally:
            for handler in list(root.handlers):
                if isinstance(handler, logging.handlers.RotatingFileHandler):
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)
        assert "Created backup" in log_file.read_text()


class TestBackups:
    def test_empty(self, run, backup_root):
        result = run("backups")
        assert result.exit_code == 0
        assert "No backups" in result.output

    def test_list_after_clean(self, run):
        run("clean", "demo", "--yes")
        result = run("backups", "--json")
        assert result.exit_code == 0, result.output
        names = [entry["name"] for entry in json.loads(result.output)]
        assert any(name.startswith("demo_cache_Cache_") for name in names)
        assert len(names) >= 3

    def test_restore_by_name(self, run, backup_root, tmp_path):
        run("clean", "demo", "--yes")
        cache_backup = next(p for p in backup_root.iterdir() if p.name.startswith("demo_cache_Cache_"))
        dest = tmp_path / "restored"
        result = run("restore", cache_backup.name, str(dest))
        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in dest.iterdir()) == ["a.bin", "b.bin", "c.bin"]

    def test_restore_missing(self, run, tmp_path):
        result = run("restore", "no_such_backup", str(tmp_path / "dest"))
        assert result.exit_code == 1


class TestDatabaseCheck:
    def test_reports_tables(self, run, tmp_path):
        path = make_item_db(tmp_path / "check.vscdb", {"machineId": "abc"})
        result = run("test-db", str(path))
        assert result.exit_code == 0, result.output
        assert "ItemTable" in result.output
        assert "machineId" in result.output

    def test_garbage(self, run, tmp_path):
        path = tmp_path / "garbage.db"
        path.write_bytes(b"\x00garbage" * 512)
        result = run("test-db", str(path))
        assert result.exit_code == 1


class TestConfigInit:
    def test_writes_defaults(self, tmp_path):
        path = tmp_path / "fresh" / "reset_config.json"
        result = CliRunner().invoke(main, ["--config", str(path), "config", "init"])
        assert result.exit_code == 0, result.output
        assert set(json.loads(path.read_text())["applications"]) == {"cursor", "windsurf"}

    def test_refuses_overwrite(self, run, config_file):
        before = config_file.read_text()
        result = run("config", "init")
        assert result.exit_code == 1
        assert config_file.read_text() == before

    def test_force(self, run, config_file):
        result = run("config", "init", "--force")
        assert result.exit_code == 0
        assert "cursor" in json.loads(config_file.read_text())["applications"]

    def test_malformed_config(self, tmp_path):
        path = tmp_path / "reset_config.json"
        path.write_text("{oops")
        result = CliRunner().invoke(main, ["--config", str(path), "discover"])
        assert result.exit_code == 1
