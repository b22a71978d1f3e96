"""Identifier mutation and keyword sanitization for SQLite stores.

Table and column names cannot be bound as SQL parameters, so every
identifier is checked against :data:`SAFE_IDENTIFIER` and quoted before it
is interpolated.  Identifiers that fail the check are skipped.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from contextlib import closing
from pathlib import Path
from typing import Callable, Iterable

from scrub.errors import DatabaseError
from scrub.models.clean_result import FileOutcome, SanitizeOutcome
from scrub.models.scan_result import TableDescriptor

log = logging.getLogger(__name__)

SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

PRIORITY_TABLES = ("ItemTable", "Settings", "Preferences", "Config", "Configuration")
KEY_HINTS = ("key", "name", "id", "setting")
VALUE_HINTS = ("value", "data", "content")
ACCOUNT_COLUMNS = ("user_id", "account_id", "email", "username", "userid", "accountid")

BUSY_TIMEOUT = 5.0


def is_safe_identifier(name: str) -> bool:
    """Whether *name* may be interpolated into SQL text."""
    return bool(SAFE_IDENTIFIER.match(name))


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _connect_wal(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path, timeout=BUSY_TIMEOUT, isolation_level=None)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def _connect_ro(path: Path) -> sqlite3.Connection:
    return sqlite3.connect(
        f"{path.resolve().as_uri()}?mode=ro", uri=True, timeout=BUSY_TIMEOUT, isolation_level=None
    )


def _connect_rw(path: Path) -> sqlite3.Connection:
    return sqlite3.connect(
        f"{path.resolve().as_uri()}?mode=rw", uri=True, timeout=BUSY_TIMEOUT, isolation_level=None
    )


def _connect_plain(path: Path) -> sqlite3.Connection:
    return sqlite3.connect(path, timeout=BUSY_TIMEOUT, isolation_level=None)


Strategies = tuple[tuple[str, Callable[[Path], sqlite3.Connection]], ...]

# Switches the file to write-ahead logging; only for runs that commit.
CONNECT_STRATEGIES: Strategies = (
    ("wal", _connect_wal),
    ("read-write", _connect_rw),
    ("plain", _connect_plain),
)

# Leave the journal mode as found.
PRESERVING_STRATEGIES: Strategies = (
    ("read-write", _connect_rw),
    ("plain", _connect_plain),
)

READ_ONLY_STRATEGIES: Strategies = (
    ("read-only", _connect_ro),
) + PRESERVING_STRATEGIES


def open_database(path: Path | str, strategies: Strategies = CONNECT_STRATEGIES) -> sqlite3.Connection | None:
    """Open *path* with escalating connection strategies.

    Each strategy must survive a ping against ``sqlite_master``.  The
    connection is in autocommit mode so callers manage transactions
    explicitly.  Pass :data:`PRESERVING_STRATEGIES` or
    :data:`READ_ONLY_STRATEGIES` to keep the file's journal mode untouched.

    Returns:
        An open connection, or None when every strategy failed.
    """
    path = Path(path)
    if not path.is_file():
        log.warning("Database file does not exist: %s", path)
        return None

    for label, connect in strategies:
        try:
            conn = connect(path)
        except sqlite3.Error as e:
            log.debug("Connecting to %s (%s) failed: %s", path, label, e)
            continue
        try:
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as e:
            log.debug("Ping of %s (%s) failed: %s", path, label, e)
            conn.close()
            continue
        log.debug("Connected to %s (%s)", path, label)
        return conn
    return None


def user_tables(conn: sqlite3.Connection) -> list[str]:
    """Names of all non-internal tables."""
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return [name for (name,) in rows if not name.startswith("sqlite_")]


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    """Column names of *table*, or an empty list for unsafe names."""
    if not is_safe_identifier(table):
        log.warning("Skipping unsafe table name: %r", table)
        return []
    rows = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
    return [row[1] for row in rows]


def describe_table(conn: sqlite3.Connection, table: str) -> TableDescriptor | None:
    """Infer the key/value column pair of *table*.

    Exact ``key``/``value`` columns win.  Otherwise a column whose name
    contains a key hint is paired with one containing a value hint.
    """
    try:
        columns = table_columns(conn, table)
    except sqlite3.Error as e:
        log.debug("Cannot inspect table %s: %s", table, e)
        return None

    if "key" in columns and "value" in columns:
        return TableDescriptor(table, "key", "value")

    key_col = value_col = ""
    for col in columns:
        lower = col.lower()
        if any(hint in lower for hint in KEY_HINTS):
            key_col = col
        elif any(hint in lower for hint in VALUE_HINTS):
            value_col = col

    if key_col and value_col and is_safe_identifier(key_col) and is_safe_identifier(value_col):
        return TableDescriptor(table, key_col, value_col)
    return None


def find_relevant_tables(conn: sqlite3.Connection) -> list[TableDescriptor]:
    """Find key/value settings tables, checking well-known names first."""
    names = user_tables(conn)
    tables: list[TableDescriptor] = []
    for name in PRIORITY_TABLES:
        if name in names:
            desc = describe_table(conn, name)
            if desc is not None:
                tables.append(desc)

    if not tables:
        for name in names:
            desc = describe_table(conn, name)
            if desc is not None:
                tables.append(desc)
    return tables


def _vacuum(conn: sqlite3.Connection, path: Path) -> None:
    try:
        conn.execute("VACUUM")
    except sqlite3.Error as e:
        log.warning("VACUUM of %s failed: %s", path, e)


class DatabaseSanitizer:
    """Mutates identifiers and strips account data from SQLite files.

    With ``dry_run`` every transaction is rolled back instead of committed
    and the journal mode is left as found, so the reported counts describe
    what would change.
    """

    def __init__(
        self,
        cache_table_patterns: Iterable[str] = (),
        *,
        dry_run: bool = False,
    ) -> None:
        self.cache_table_patterns = [p.lower() for p in cache_table_patterns]
        self.dry_run = dry_run
        self._strategies = PRESERVING_STRATEGIES if dry_run else CONNECT_STRATEGIES

    def mutate_identifiers(
        self,
        path: Path | str,
        telemetry_keys: Iterable[str],
        session_keys: Iterable[str],
    ) -> FileOutcome:
        """Replace telemetry values and delete session rows in one database.

        Telemetry keys containing ``session`` get a fresh session id, all
        others share one fresh machine id.  Counts are keys touched.
        """
        path = Path(path)
        conn = open_database(path, self._strategies)
        if conn is None:
            log.error("Could not open database %s", path)
            return FileOutcome(success=False)

        with closing(conn):
            try:
                tables = find_relevant_tables(conn)
            except sqlite3.Error as e:
                log.error("Failed to inspect tables in %s: %s", path, e)
                return FileOutcome(success=False)

            if not tables:
                log.warning("No key/value tables found in %s", path)
                return FileOutcome()

            machine_id = str(uuid.uuid4())
            session_id = str(uuid.uuid4())
            outcome = FileOutcome()

            try:
                conn.execute("BEGIN")
                for desc in tables:
                    table = quote_identifier(desc.table)
                    key_col = quote_identifier(desc.key_column)
                    value_col = quote_identifier(desc.value_column)

                    for key in telemetry_keys:
                        value = session_id if "session" in key.lower() else machine_id
                        sql = f"UPDATE {table} SET {value_col} = ? WHERE {key_col} = ?"
                        if self._execute(conn, sql, (value, key)) > 0:
                            outcome.updated_keys += 1
                            log.debug("Updated %s in %s", key, desc.table)

                    for key in session_keys:
                        sql = f"DELETE FROM {table} WHERE {key_col} = ?"
                        if self._execute(conn, sql, (key,)) > 0:
                            outcome.deleted_keys += 1
                            log.debug("Deleted %s from %s", key, desc.table)

                self._finish(conn)
            except sqlite3.Error as e:
                log.error("Transaction on %s failed: %s", path, e)
                _rollback(conn)
                return FileOutcome(success=False)

            if outcome.changed and not self.dry_run:
                _vacuum(conn, path)
            return outcome

    def clean_advanced(self, path: Path | str, keywords: Iterable[str]) -> SanitizeOutcome:
        """Strip cache tables, keyword rows and account columns from a database.

        Runs in one transaction: tables named after a cache pattern are
        emptied, rows where any column matches ``%keyword%`` are deleted,
        and account-like columns are set to NULL (or ``''`` when NULL is
        rejected).
        """
        path = Path(path)
        keywords = list(keywords)
        conn = open_database(path, self._strategies)
        if conn is None:
            log.error("Could not open database %s", path)
            return SanitizeOutcome(success=False)

        with closing(conn):
            try:
                conn.execute("BEGIN")
                names = [n for n in user_tables(conn) if self._check_table(n)]
                if not names:
                    log.warning("No user tables found in %s", path)
                    _rollback(conn)
                    return SanitizeOutcome()

                rows = 0
                for name in names:
                    rows += self._empty_cache_table(conn, name)
                for name in names:
                    try:
                        columns = [c for c in table_columns(conn, name) if is_safe_identifier(c)]
                    except sqlite3.Error as e:
                        log.warning("Cannot read columns of %s: %s", name, e)
                        continue
                    rows += self._delete_keyword_rows(conn, name, columns, keywords)
                    rows += self._blank_account_columns(conn, name, columns)

                self._finish(conn)
            except sqlite3.Error as e:
                log.error("Sanitizing %s failed: %s", path, e)
                _rollback(conn)
                return SanitizeOutcome(success=False)

            if rows > 0 and not self.dry_run:
                log.info("Compacting %s", path)
                _vacuum(conn, path)
            return SanitizeOutcome(rows_affected=rows)

    @staticmethod
    def _check_table(name: str) -> bool:
        if is_safe_identifier(name):
            return True
        log.warning("Skipping unsafe table name: %r", name)
        return False

    def _empty_cache_table(self, conn: sqlite3.Connection, table: str) -> int:
        lower = table.lower()
        pattern = next((p for p in self.cache_table_patterns if p in lower), None)
        if pattern is None:
            return 0
        affected = self._execute(conn, f"DELETE FROM {quote_identifier(table)}")
        if affected > 0:
            log.info("Emptied table %s (%d rows, pattern %s)", table, affected, pattern)
        return affected

    def _delete_keyword_rows(
        self,
        conn: sqlite3.Connection,
        table: str,
        columns: list[str],
        keywords: list[str],
    ) -> int:
        total = 0
        for keyword in keywords:
            for column in columns:
                sql = f"DELETE FROM {quote_identifier(table)} WHERE {quote_identifier(column)} LIKE ?"
                affected = self._execute(conn, sql, (f"%{keyword}%",))
                if affected > 0:
                    log.info("Deleted %d rows from %s where %s matches %s", affected, table, column, keyword)
                    total += affected
        return total

    def _blank_account_columns(self, conn: sqlite3.Connection, table: str, columns: list[str]) -> int:
        total = 0
        for column in columns:
            lower = column.lower()
            if not any(lower == name or name in lower for name in ACCOUNT_COLUMNS):
                continue
            qt, qc = quote_identifier(table), quote_identifier(column)
            try:
                affected = conn.execute(f"UPDATE {qt} SET {qc} = NULL WHERE {qc} IS NOT NULL").rowcount
            except sqlite3.Error as e:
                log.debug("Setting %s.%s to NULL failed, blanking instead: %s", table, column, e)
                affected = self._execute(conn, f"UPDATE {qt} SET {qc} = '' WHERE {qc} != ''")
            if affected > 0:
                log.info("Cleared %d values of %s.%s", affected, table, column)
                total += affected
        return total

    @staticmethod
    def _execute(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> int:
        """Run one statement, returning rows affected; failures count as zero."""
        try:
            return max(conn.execute(sql, params).rowcount, 0)
        except sqlite3.Error as e:
            log.debug("Statement failed (%s): %s", sql, e)
            return 0

    def _finish(self, conn: sqlite3.Connection) -> None:
        if self.dry_run:
            conn.execute("ROLLBACK")
        else:
            conn.execute("COMMIT")

    def test_connection(self, path: Path | str) -> tuple[list[str], list[tuple[str, str]]]:
        """Diagnose whether *path* can be opened and read, without writing to it.

        Returns:
            The user table names and up to ten ``ItemTable`` key/value rows.

        Raises:
            DatabaseError: If no connection strategy yields a readable database.
        """
        conn = open_database(path, READ_ONLY_STRATEGIES)
        if conn is None:
            raise DatabaseError(f"Could not connect to database: {path}")
        with closing(conn):
            try:
                tables = user_tables(conn)
                sample: list[tuple[str, str]] = []
                if "ItemTable" in tables:
                    rows = conn.execute("SELECT key, value FROM ItemTable LIMIT 10").fetchall()
                    sample = [(str(k), str(v)) for k, v in rows]
            except sqlite3.Error as e:
                raise DatabaseError(f"Could not read database {path}: {e}") from e
        log.info("Database %s has %d tables", path, len(tables))
        return tables, sample


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            log.debug("Rollback failed: %s", e)
