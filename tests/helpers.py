"""Test doubles and SQLite helpers shared across the suite."""

from __future__ import annotations

import sqlite3
from pathlib import Path


class FakeInspector:
    """Process inspector that reports a fixed set of names as running."""

    def __init__(self, running: set[str] | None = None):
        self.running = {name.lower() for name in running or ()}
        self.calls: list[str] = []

    def is_running(self, name: str) -> bool:
        self.calls.append(name)
        return name.lower() in self.running


def make_item_db(path: Path, rows: dict[str, str]) -> Path:
    """Create a VS Code style ``ItemTable`` key/value database."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        conn.executemany("INSERT INTO ItemTable (key, value) VALUES (?, ?)", list(rows.items()))
        conn.commit()
    finally:
        conn.close()
    return path


def read_item_db(path: Path) -> dict[str, str]:
    conn = sqlite3.connect(path)
    try:
        return dict(conn.execute("SELECT key, value FROM ItemTable").fetchall())
    finally:
        conn.close()


def journal_mode(path: Path) -> str:
    conn = sqlite3.connect(path)
    try:
        return conn.execute("PRAGMA journal_mode").fetchone()[0].lower()
    finally:
        conn.close()
