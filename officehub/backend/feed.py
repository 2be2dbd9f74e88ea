"""Live change feed.

Subscribers register a handler for one table, optionally narrowed by event
type and an equality filter. Writes made through ``backend.tables`` are
dispatched here after commit. Changes committed by other processes reach
this process through ``pump()``/``listen()``, which read the ``_changes`` log
past a cursor and skip events already dispatched locally.
"""

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from officehub import config
from officehub.errors import FeedUnavailable
from officehub.lib import store
from officehub.lib.ids import now_iso, uuid7

log = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_EVENTS = frozenset({INSERT, UPDATE, DELETE})


@dataclass(frozen=True)
class ChangeEvent:
    event_type: str
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    seq: int | None = None

    @property
    def row(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


Handler = Callable[[ChangeEvent], None]


class Subscription:
    """Cancelable handle for one live feed scope."""

    def __init__(
        self,
        table: str,
        handler: Handler,
        events: frozenset[str],
        eq: dict[str, Any] | None,
    ):
        self.subscription_id = uuid7()
        self.table = table
        self.handler = handler
        self.events = events
        self.eq = dict(eq or {})
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, event: ChangeEvent) -> bool:
        if not self._active or event.table != self.table or event.event_type not in self.events:
            return False
        row = event.row
        return all(row.get(column) == value for column, value in self.eq.items())

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        with _lock:
            _subscriptions.pop(self.subscription_id, None)

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"<Subscription {self.table} {self.eq} {state}>"


_lock = threading.RLock()
_subscriptions: dict[str, Subscription] = {}
_connected = True
_cursor: int | None = None
_local_seqs: set[int] = set()


def is_available() -> bool:
    return _connected and bool(config.get("realtime", "enabled"))


def connect() -> None:
    global _connected
    _connected = True


def disconnect() -> None:
    """Drop realtime. Existing handles stop receiving; new subscribes fail."""
    global _connected
    _connected = False


def subscribe(
    table: str,
    handler: Handler,
    *,
    events: frozenset[str] | set[str] = ALL_EVENTS,
    eq: dict[str, Any] | None = None,
) -> Subscription:
    if not is_available():
        raise FeedUnavailable("Live feed is not available")
    events = frozenset(events)
    unknown = events - ALL_EVENTS
    if unknown:
        raise ValueError(f"Unknown event types: {sorted(unknown)}")

    subscription = Subscription(table, handler, events, eq)
    with _lock:
        _subscriptions[subscription.subscription_id] = subscription
    log.debug(f"Subscribed {subscription!r}")
    return subscription


def active_count(table: str | None = None) -> int:
    with _lock:
        return sum(1 for sub in _subscriptions.values() if table is None or sub.table == table)


def publish(event: ChangeEvent) -> None:
    """Deliver one event to every matching subscription.

    Handler failures are logged; they never propagate to the writer.
    """
    if not _connected:
        return
    with _lock:
        targets = [sub for sub in _subscriptions.values() if sub.matches(event)]
    for sub in targets:
        try:
            sub.handler(event)
        except Exception as e:
            log.error(f"Feed handler failed for {event.table} {event.event_type}: {e}", exc_info=True)


def dispatch_committed(events: list[ChangeEvent]) -> None:
    """Publish events that this process just committed.

    A foreign seq below ours leaves a gap the cursor cannot cross, so pump
    right away to deliver it and drain ``_local_seqs``.
    """
    for event in events:
        if event.seq is not None:
            _mark_local(event.seq)
        publish(event)
    if _local_seqs:
        try:
            pump()
        except Exception as e:
            log.error(f"Feed catch-up failed: {e}", exc_info=True)


def record(conn, event: ChangeEvent) -> ChangeEvent:
    """Append an event to the change log on the caller's connection."""
    cursor = conn.execute(
        "INSERT INTO _changes (table_name, event_type, new_row, old_row, created_at) VALUES (?, ?, ?, ?, ?)",
        (
            event.table,
            event.event_type,
            json.dumps(event.new) if event.new is not None else None,
            json.dumps(event.old) if event.old is not None else None,
            now_iso(),
        ),
    )
    return ChangeEvent(event.event_type, event.table, event.new, event.old, cursor.lastrowid)


def _init_cursor() -> None:
    global _cursor
    if _cursor is None:
        row = store.ensure().execute("SELECT COALESCE(MAX(seq), 0) FROM _changes").fetchone()
        _cursor = row[0]


def _mark_local(seq: int) -> None:
    global _cursor
    with _lock:
        _init_cursor()
        if seq <= _cursor:
            return
        _local_seqs.add(seq)
        while _cursor + 1 in _local_seqs:
            _cursor += 1
            _local_seqs.discard(_cursor)


def pump() -> int:
    """Deliver changes committed elsewhere since the last pump. Returns count delivered."""
    global _cursor
    with _lock:
        _init_cursor()
        rows = (
            store.ensure()
            .execute(
                "SELECT seq, table_name, event_type, new_row, old_row FROM _changes WHERE seq > ? ORDER BY seq",
                (_cursor,),
            )
            .fetchall()
        )
        pending = []
        for row in rows:
            seq = row["seq"]
            if seq in _local_seqs:
                _local_seqs.discard(seq)
            else:
                pending.append(
                    ChangeEvent(
                        event_type=row["event_type"],
                        table=row["table_name"],
                        new=json.loads(row["new_row"]) if row["new_row"] else None,
                        old=json.loads(row["old_row"]) if row["old_row"] else None,
                        seq=seq,
                    )
                )
            _cursor = max(_cursor, seq)

    for event in pending:
        publish(event)
    return len(pending)


def listen(poll_interval: float | None = None, stop: threading.Event | None = None) -> None:
    """Pump the change log until ``stop`` is set."""
    interval = poll_interval if poll_interval is not None else float(config.get("realtime", "poll_interval"))
    stop = stop or threading.Event()
    log.info("Listening for changes")

    while not stop.is_set():
        try:
            pump()
        except Exception as e:
            log.error(f"Feed poll error: {e}", exc_info=True)
        time.sleep(interval)


def _reset_for_testing() -> None:
    global _connected, _cursor
    with _lock:
        for sub in list(_subscriptions.values()):
            sub._active = False
        _subscriptions.clear()
        _local_seqs.clear()
        _cursor = None
        _connected = True
