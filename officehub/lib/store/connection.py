import sqlite3
import threading
from dataclasses import fields
from typing import Any, TypeVar

from officehub.lib import paths
from officehub.lib.store import migrations
from officehub.lib.store.sqlite import connect

T = TypeVar("T")

Row = sqlite3.Row

_connections = threading.local()
_all_connections: list[sqlite3.Connection] = []
_all_lock = threading.Lock()
_migrated: set[str] = set()


def database_exists() -> bool:
    return paths.database_file().exists()


def from_row(row: dict[str, Any] | Any, dataclass_type: type[T]) -> T:
    """Convert dict-like row to dataclass instance.

    Row keys that are not dataclass fields are ignored.
    """
    field_names = {f.name for f in fields(dataclass_type) if f.init}
    row_dict = dict(row) if not isinstance(row, dict) else row
    kwargs = {key: row_dict[key] for key in field_names if key in row_dict}
    return dataclass_type(**kwargs)


def ensure() -> sqlite3.Connection:
    """Return this thread's connection to officehub.db, migrating on first use."""
    db_path = paths.database_file()
    cache_key = str(db_path)

    conn = getattr(_connections, "by_path", {}).get(cache_key)
    if conn is not None:
        return conn

    db_path.parent.mkdir(parents=True, exist_ok=True)

    if cache_key not in _migrated:
        migrations.ensure_schema(db_path, migrations.load_migrations("officehub.backend"))
        _migrated.add(cache_key)

    conn = connect(db_path)
    if not hasattr(_connections, "by_path"):
        _connections.by_path = {}
    _connections.by_path[cache_key] = conn
    with _all_lock:
        _all_connections.append(conn)
    return conn


def close_all() -> None:
    """Close every cached connection, across threads."""
    with _all_lock:
        for conn in _all_connections:
            conn.close()
        _all_connections.clear()
    if hasattr(_connections, "by_path"):
        _connections.by_path.clear()


def _reset_for_testing() -> None:
    close_all()
    _migrated.clear()
    _connections.__dict__.clear()
