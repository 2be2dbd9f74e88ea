"""Database schema migrations and initialization."""

import logging
import sqlite3
from pathlib import Path

from officehub.lib import paths
from officehub.lib.store.sqlite import connect

logger = logging.getLogger(__name__)


def load_migrations(module_path: str) -> list[tuple[str, str]]:
    """Load numbered .sql files from a package's migrations/ directory.

    Args:
        module_path: Module path like 'officehub.backend'

    Returns:
        List of (migration_name, sql_content) tuples in lexical order
    """
    module_dir = paths.package_root()
    for part in module_path.split(".")[1:]:
        module_dir = module_dir / part
    migrations_dir = module_dir / "migrations"

    if not migrations_dir.exists():
        return []

    return [(sql_file.stem, sql_file.read_text()) for sql_file in sorted(migrations_dir.glob("*.sql"))]


def ensure_schema(db_path: Path, migs: list[tuple[str, str]] | None = None) -> None:
    """Ensure schema exists and apply migrations."""
    conn = connect(db_path)
    try:
        if migs:
            migrate(conn, migs)
    finally:
        conn.close()


def migrate(conn: sqlite3.Connection, migs: list[tuple[str, str]]) -> None:
    """Apply pending migrations, refusing any that lose rows."""
    conn.execute("CREATE TABLE IF NOT EXISTS _migrations (name TEXT PRIMARY KEY)")

    for name, sql in migs:
        applied = conn.execute("SELECT 1 FROM _migrations WHERE name = ?", (name,)).fetchone()
        if applied:
            continue

        before = {table: _get_table_count(conn, table) for table in _user_tables(conn)}
        try:
            conn.execute("BEGIN")
            for statement in _split_statements(sql):
                conn.execute(statement)
            for table, count_before in before.items():
                _check_migration_safety(conn, table, count_before)
            conn.execute("INSERT INTO _migrations (name) VALUES (?)", (name,))
            conn.execute("COMMIT")
        except Exception as e:
            conn.execute("ROLLBACK")
            logger.error(f"Migration '{name}' failed: {e}")
            raise
        logger.info(f"Applied migration {name}")


def _split_statements(sql: str) -> list[str]:
    statements = []
    buffer = ""
    for line in sql.splitlines(keepends=True):
        if line.strip().startswith("--"):
            continue
        buffer += line
        if sqlite3.complete_statement(buffer):
            statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


def _user_tables(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' "
        "AND name NOT IN ('_migrations', 'sqlite_sequence')"
    ).fetchall()
    return [row[0] for row in rows]


def _get_table_count(conn: sqlite3.Connection, table: str) -> int:
    """Row count for table, 0 if it does not exist."""
    try:
        result = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return result[0] if result else 0
    except sqlite3.OperationalError:
        return 0


def _check_migration_safety(conn: sqlite3.Connection, table: str, before: int) -> None:
    after = _get_table_count(conn, table)
    lost = before - after
    if lost > 0:
        msg = f"Migration {table}: {lost} rows lost (before: {before}, after: {after})"
        logger.error(msg)
        raise ValueError(msg)
