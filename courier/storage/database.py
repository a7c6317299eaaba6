"""SQLite storage for payment attempts: connections and schema migrations.

Migrations are modules named v###_<description> in courier.storage.migrations,
each exposing up(conn). Applied versions are recorded in schema_versions.
"""

import importlib
import logging
import pkgutil
import re
import sqlite3
from pathlib import Path
from types import ModuleType

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "courier.storage.migrations"
_MIGRATION_NAME = re.compile(r"^v\d{3}_\w+$")

# Charge workers, the propagation callback and CLI commands can all hold the file
BUSY_TIMEOUT_SECONDS = 5.0


class MigrationError(RuntimeError):
    def __init__(self, version: str, cause: Exception):
        super().__init__(f"Migration {version} failed: {cause}")
        self.version = version


def connect(
    db_path: str | Path,
    check_same_thread: bool = True,
    busy_timeout: float = BUSY_TIMEOUT_SECONDS,
) -> sqlite3.Connection:
    """Open a connection with WAL journaling, foreign keys and Row access.

    Pass check_same_thread=False only when the caller serialises access
    itself, as the payment orchestrator does behind its lock.
    """
    conn = sqlite3.connect(
        str(db_path), timeout=busy_timeout, check_same_thread=check_same_thread
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def open_database(db_path: str | Path, check_same_thread: bool = True) -> sqlite3.Connection:
    """Connect to db_path, creating its directory, and bring the schema up to date."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(path, check_same_thread=check_same_thread)
    applied = run_migrations(conn)
    if applied:
        logger.info("Applied migrations to %s: %s", path, ", ".join(applied))
    return conn


def applied_migrations(conn: sqlite3.Connection) -> list[str]:
    _ensure_version_table(conn)
    rows = conn.execute("SELECT version FROM schema_versions ORDER BY version").fetchall()
    return [row[0] for row in rows]


def run_migrations(conn: sqlite3.Connection) -> list[str]:
    """Apply pending migrations oldest first and return their names.

    A failing migration stops the run and is not recorded; versions applied
    before it stay recorded.
    """
    done = set(applied_migrations(conn))
    newly_applied = []
    for version in _discover_migrations():
        if version in done:
            continue
        try:
            _load_migration(version).up(conn)
            conn.execute("INSERT INTO schema_versions (version) VALUES (?)", (version,))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Migration %s failed: %s", version, e)
            raise MigrationError(version, e) from e
        logger.debug("Applied migration %s", version)
        newly_applied.append(version)
    return newly_applied


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_versions ("
        "  version TEXT PRIMARY KEY,"
        "  applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP"
        ")"
    )
    conn.commit()


def _load_migration(version: str) -> ModuleType:
    return importlib.import_module(f"{MIGRATIONS_PACKAGE}.{version}")


def _discover_migrations() -> list[str]:
    package = importlib.import_module(MIGRATIONS_PACKAGE)
    return sorted({
        info.name
        for info in pkgutil.iter_modules(package.__path__)
        if _MIGRATION_NAME.match(info.name)
    })
