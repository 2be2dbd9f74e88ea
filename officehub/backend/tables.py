"""Row-level access to the officehub store.

Every write runs inside ``transaction()``. Each changed row is appended to
the ``_changes`` log in the same transaction and published on the live feed
only after COMMIT, so subscribers never observe rolled-back state and a
message is visible together with its attachments.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from officehub.backend import feed
from officehub.backend.feed import DELETE, INSERT, UPDATE, ChangeEvent
from officehub.errors import BackendUnavailable, Conflict, ValidationError
from officehub.lib import store
from officehub.lib.ids import now_iso, uuid7

log = logging.getLogger(__name__)

_tx = threading.local()
_columns_cache: dict[str, frozenset[str]] = {}

# Credentials never enter the change log.
_UNLOGGED = frozenset({"auth_users", "auth_sessions"})


@contextmanager
def _guard(table: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e):
            raise Conflict(f"{table}: {e}") from e
        raise ValidationError(f"{table}: {e}") from e
    except sqlite3.OperationalError as e:
        raise BackendUnavailable(f"{table}: {e}") from e


def columns(table: str) -> frozenset[str]:
    cached = _columns_cache.get(table)
    if cached is not None:
        return cached
    with _guard(table):
        info = store.ensure().execute(f"PRAGMA table_info({table})").fetchall()
    if not info:
        raise ValidationError(f"Unknown table: {table}")
    cols = frozenset(row[1] for row in info)
    _columns_cache[table] = cols
    return cols


def _check_columns(table: str, names) -> None:
    unknown = set(names) - columns(table)
    if unknown:
        raise ValidationError(f"Unknown columns for {table}: {sorted(unknown)}")


def _where(
    table: str,
    eq: dict[str, Any] | None = None,
    in_: dict[str, list] | None = None,
    neq: dict[str, Any] | None = None,
    gt: dict[str, Any] | None = None,
    gte: dict[str, Any] | None = None,
    lt: dict[str, Any] | None = None,
    lte: dict[str, Any] | None = None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []

    for col, value in (eq or {}).items():
        if value is None:
            clauses.append(f"{col} IS NULL")
        else:
            clauses.append(f"{col} = ?")
            params.append(value)
    for col, values in (in_ or {}).items():
        values = list(values)
        placeholders = ", ".join("?" for _ in values)
        clauses.append(f"{col} IN ({placeholders})")
        params.extend(values)
    for col, value in (neq or {}).items():
        if value is None:
            clauses.append(f"{col} IS NOT NULL")
        else:
            clauses.append(f"{col} != ?")
            params.append(value)
    for op, filters in ((">", gt), (">=", gte), ("<", lt), ("<=", lte)):
        for col, value in (filters or {}).items():
            clauses.append(f"{col} {op} ?")
            params.append(value)

    used = [*(eq or {}), *(in_ or {}), *(neq or {}), *(gt or {}), *(gte or {}), *(lt or {}), *(lte or {})]
    _check_columns(table, used)

    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Group writes atomically. Nested calls join the outer transaction."""
    conn = store.ensure()
    if getattr(_tx, "depth", 0):
        _tx.depth += 1
        try:
            yield conn
        finally:
            _tx.depth -= 1
        return

    _tx.depth = 1
    _tx.events = []
    try:
        with _guard("transaction"):
            conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            with _guard("transaction"):
                conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        events = _tx.events
    finally:
        _tx.depth = 0
        _tx.events = []

    feed.dispatch_committed(events)


def in_transaction() -> bool:
    return bool(getattr(_tx, "depth", 0))


def _emit(conn: sqlite3.Connection, event: ChangeEvent) -> None:
    if event.table in _UNLOGGED:
        return
    _tx.events.append(feed.record(conn, event))


def select(
    table: str,
    *,
    eq: dict[str, Any] | None = None,
    in_: dict[str, list] | None = None,
    neq: dict[str, Any] | None = None,
    gt: dict[str, Any] | None = None,
    gte: dict[str, Any] | None = None,
    lt: dict[str, Any] | None = None,
    lte: dict[str, Any] | None = None,
    order_by: str | list[str] | None = None,
    desc: bool = False,
    limit: int | None = None,
    offset: int = 0,
) -> list[dict[str, Any]]:
    if in_ and any(not list(values) for values in in_.values()):
        return []

    where, params = _where(table, eq, in_, neq, gt, gte, lt, lte)
    query = f"SELECT * FROM {table}{where}"

    if order_by:
        order_cols = [order_by] if isinstance(order_by, str) else list(order_by)
        _check_columns(table, order_cols)
        direction = "DESC" if desc else "ASC"
        query += " ORDER BY " + ", ".join(f"{col} {direction}" for col in order_cols)
    if limit is not None:
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, offset])
    elif offset:
        query += " LIMIT -1 OFFSET ?"
        params.append(offset)

    with _guard(table):
        rows = store.ensure().execute(query, params).fetchall()
    return [dict(row) for row in rows]


def select_one(table: str, **filters) -> dict[str, Any] | None:
    rows = select(table, limit=1, **filters)
    return rows[0] if rows else None


def count(
    table: str,
    *,
    eq: dict[str, Any] | None = None,
    in_: dict[str, list] | None = None,
    neq: dict[str, Any] | None = None,
) -> int:
    if in_ and any(not list(values) for values in in_.values()):
        return 0
    where, params = _where(table, eq, in_, neq)
    with _guard(table):
        row = store.ensure().execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()
    return row[0]


def _fill_defaults(table: str, row: dict[str, Any]) -> dict[str, Any]:
    cols = columns(table)
    filled = dict(row)
    if "id" in cols and not filled.get("id"):
        filled["id"] = uuid7()
    if "created_at" in cols and not filled.get("created_at"):
        filled["created_at"] = now_iso()
    return filled


def insert(table: str, rows: dict[str, Any] | list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Insert one or more rows. Returns the stored rows, defaults included."""
    batch = [rows] if isinstance(rows, dict) else list(rows)
    if not batch:
        return []

    inserted = []
    with transaction() as conn:
        for row in batch:
            row = _fill_defaults(table, row)
            _check_columns(table, row)
            names = list(row)
            placeholders = ", ".join("?" for _ in names)
            with _guard(table):
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
                    [row[name] for name in names],
                )
                stored = dict(conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row["id"],)).fetchone())
            _emit(conn, ChangeEvent(INSERT, table, new=stored))
            inserted.append(stored)
    return inserted


def upsert(table: str, row: dict[str, Any], on_conflict: list[str]) -> dict[str, Any]:
    """Insert, or update the row matching ``on_conflict`` columns."""
    _check_columns(table, [*row, *on_conflict])
    with transaction() as conn:
        existing = select_one(table, eq={col: row[col] for col in on_conflict})
        if existing is None:
            return insert(table, row)[0]

        values = {k: v for k, v in row.items() if k not in ("id", "created_at", *on_conflict)}
        if not values:
            return existing
        return update(table, values, eq={"id": existing["id"]})[0]


def update(
    table: str,
    values: dict[str, Any],
    *,
    eq: dict[str, Any] | None = None,
    in_: dict[str, list] | None = None,
) -> list[dict[str, Any]]:
    """Update matching rows. Returns the rows as stored after the update."""
    if not eq and not in_:
        raise ValidationError(f"Refusing unfiltered update on {table}")
    _check_columns(table, values)
    if not values:
        return select(table, eq=eq, in_=in_)

    with transaction() as conn:
        before = select(table, eq=eq, in_=in_)
        if not before:
            return []
        ids = [row["id"] for row in before]
        assignments = ", ".join(f"{col} = ?" for col in values)
        placeholders = ", ".join("?" for _ in ids)
        with _guard(table):
            conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id IN ({placeholders})",
                [*values.values(), *ids],
            )
        after = {row["id"]: row for row in select(table, in_={"id": ids})}
        updated = []
        for old in before:
            new = after[old["id"]]
            _emit(conn, ChangeEvent(UPDATE, table, new=new, old=old))
            updated.append(new)
    return updated


def delete(
    table: str,
    *,
    eq: dict[str, Any] | None = None,
    in_: dict[str, list] | None = None,
) -> list[dict[str, Any]]:
    """Delete matching rows. Returns the rows as they were before deletion."""
    if not eq and not in_:
        raise ValidationError(f"Refusing unfiltered delete on {table}")

    with transaction() as conn:
        before = select(table, eq=eq, in_=in_)
        if not before:
            return []
        ids = [row["id"] for row in before]
        placeholders = ", ".join("?" for _ in ids)
        with _guard(table):
            conn.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", ids)
        for old in before:
            _emit(conn, ChangeEvent(DELETE, table, old=old))
    return before


def _reset_for_testing() -> None:
    _columns_cache.clear()
    _tx.__dict__.clear()
