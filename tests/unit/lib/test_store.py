import sqlite3
import threading

import pytest

from officehub.core.models import Profile
from officehub.lib import paths, store
from officehub.lib.store import migrations


def _tables(conn):
    return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}


def test_ensure_creates_schema(test_office):
    conn = store.ensure()

    assert {
        "organizations",
        "profiles",
        "chat_channels",
        "chat_channel_members",
        "chat_messages",
        "chat_message_attachments",
        "notifications",
        "push_subscriptions",
        "user_settings",
        "_changes",
        "_migrations",
    } <= _tables(conn)
    assert paths.database_file().exists()


def test_ensure_uses_wal(test_office):
    assert store.ensure().execute("PRAGMA journal_mode").fetchone()[0] == "wal"


def test_ensure_reuses_connection_per_thread(test_office):
    main = store.ensure()
    other = []
    worker = threading.Thread(target=lambda: other.append(store.ensure()))
    worker.start()
    worker.join()

    assert store.ensure() is main
    assert other[0] is not main


def test_migrations_applied_once(test_office):
    conn = store.ensure()
    applied = [row[0] for row in conn.execute("SELECT name FROM _migrations ORDER BY name")]
    assert applied == ["001_initial", "002_push_and_settings"]

    migrations.migrate(conn, migrations.load_migrations("officehub.backend"))

    assert conn.execute("SELECT COUNT(*) FROM _migrations").fetchone()[0] == 2


def test_migration_that_loses_rows_is_rolled_back(test_office, tmp_path):
    conn = store.connect(tmp_path / "scratch.db")
    migrations.migrate(conn, [("001", "CREATE TABLE notes (id TEXT PRIMARY KEY);")])
    conn.execute("INSERT INTO notes VALUES ('a')")

    with pytest.raises(ValueError, match="rows lost"):
        migrations.migrate(conn, [("002", "DELETE FROM notes;")])

    assert conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0] == 1
    assert [row[0] for row in conn.execute("SELECT name FROM _migrations")] == ["001"]
    conn.close()


def test_failed_migration_raises_and_is_not_recorded(test_office, tmp_path):
    conn = store.connect(tmp_path / "scratch.db")

    with pytest.raises(sqlite3.OperationalError):
        migrations.migrate(conn, [("001", "CREATE TABLE broken (;")])

    assert conn.execute("SELECT COUNT(*) FROM _migrations").fetchone()[0] == 0
    conn.close()


def test_split_statements_skips_comments():
    sql = "-- header\nCREATE TABLE a (x TEXT);\n-- note\nCREATE INDEX i ON a(x);\n"

    assert migrations._split_statements(sql) == ["CREATE TABLE a (x TEXT);", "CREATE INDEX i ON a(x);"]


def test_from_row_ignores_extra_keys():
    profile = store.from_row(
        {"id": "u1", "email": "a@example.com", "name": "A", "password_hash": "x"},
        Profile,
    )

    assert profile == Profile(id="u1", email="a@example.com", name="A")
