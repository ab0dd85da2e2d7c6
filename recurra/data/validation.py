"""Pre-flight checks for ledger database files.

Run before the stores connect, with plain sqlite3, so a foreign or outdated
file is reported instead of being silently extended with Recurra tables.
"""

import sqlite3
from pathlib import Path
from typing import Optional


class DatabaseValidationError(Exception):
    """Raised when a file cannot be used as a Recurra ledger."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


# The generator reads these columns on every run
TEMPLATE_COLUMNS = {
    "id", "amount", "description", "kind", "interval_days", "next_due_date", "is_recurring"
}

# Duplicate detection relies on this key
INSTANCE_KEY = ("template_id", "occurrence_date")


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _has_unique_key(conn: sqlite3.Connection, table: str, key: tuple[str, ...]) -> bool:
    for index in conn.execute(f"PRAGMA index_list({table})").fetchall():
        name, unique = index[1], index[2]
        if not unique:
            continue
        columns = tuple(row[2] for row in conn.execute(f"PRAGMA index_info('{name}')").fetchall())
        if columns == key:
            return True
    return False


def _check_schema(conn: sqlite3.Connection) -> None:
    tables = _tables(conn)
    if not tables:
        return  # Blank file, the store creates the schema

    if "recurring_templates" not in tables:
        raise DatabaseValidationError(
            "Not a Recurra ledger",
            f"Expected a recurring_templates table, found: {', '.join(sorted(tables))}.",
        )

    missing = TEMPLATE_COLUMNS - _columns(conn, "recurring_templates")
    if missing:
        raise DatabaseValidationError(
            "Incompatible database schema",
            f"recurring_templates lacks columns: {', '.join(sorted(missing))}.",
        )

    if "generated_instances" in tables and not _has_unique_key(
        conn, "generated_instances", INSTANCE_KEY
    ):
        raise DatabaseValidationError(
            "Incompatible database schema",
            "generated_instances has no unique (template_id, occurrence_date) key, "
            "so repeated runs could duplicate instances.",
        )


def validate_database(db_path: Path) -> None:
    """Check that ``db_path`` is missing, blank or a compatible ledger.

    Raises:
        DatabaseValidationError: If the file is not usable
    """
    if not db_path.exists():
        return

    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise DatabaseValidationError("Not a valid database file", str(e)) from e

    try:
        _check_schema(conn)
    except sqlite3.Error as e:
        raise DatabaseValidationError(
            "Could not read database structure", f"{db_path}: {e}"
        ) from e
    finally:
        conn.close()


def is_valid_recurra_database(db_path: Path) -> tuple[bool, Optional[str]]:
    """Non-raising variant of validate_database.

    Returns:
        (True, None) or (False, message)
    """
    try:
        validate_database(db_path)
    except DatabaseValidationError as e:
        return False, f"{e}\n\n{e.details}" if e.details else str(e)
    return True, None
