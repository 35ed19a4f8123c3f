from __future__ import annotations

import sqlite3

import pytest

from anchorline.store import CURRENT_SCHEMA_VERSION, Store, generate_id


def test_schema_created_and_versioned(tmp_path):
    db_path = tmp_path / "nested" / "anchorline.db"
    store = Store(db_path=db_path)

    with store.read() as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        foreign_keys = conn.execute("PRAGMA foreign_keys").fetchone()[0]
        journal = conn.execute("PRAGMA journal_mode").fetchone()[0]

    assert {"projects", "sessions", "turns", "session_ops", "schema_version"} <= tables
    assert foreign_keys == 1
    assert journal.lower() == "wal"
    assert store.schema_version() == CURRENT_SCHEMA_VERSION
    store.close()


def test_reopen_keeps_data(tmp_path):
    db_path = tmp_path / "anchorline.db"
    with Store(db_path=db_path) as store:
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO projects (id, root_dir, name, created_at_ms, updated_at_ms) VALUES (?, ?, ?, 1, 1)",
                ("proj_1", "/tmp/x", "x"),
            )

    with Store(db_path=db_path) as store:
        with store.read() as conn:
            row = conn.execute("SELECT name FROM projects WHERE id = 'proj_1'").fetchone()
        assert row["name"] == "x"
        assert store.schema_version() == CURRENT_SCHEMA_VERSION


def test_transaction_rolls_back_on_error():
    store = Store()

    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO projects (id, root_dir, name, created_at_ms, updated_at_ms) VALUES ('p', '/r', 'r', 1, 1)"
            )
            raise RuntimeError("boom")

    with store.read() as conn:
        assert conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0] == 0


def test_json_columns_are_checked():
    store = Store()
    with store.transaction() as conn:
        conn.execute("INSERT INTO projects (id, root_dir, name, created_at_ms, updated_at_ms) VALUES ('p', '/r', 'r', 1, 1)")
        conn.execute(
            """
            INSERT INTO sessions (id, project_id, title, root_turn_id, current_turn_id, created_at_ms, updated_at_ms)
            VALUES ('s', 'p', NULL, 't', 't', 1, 1)
            """
        )

    with pytest.raises(sqlite3.IntegrityError):
        with store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO turns (id, session_id, parent_turn_id, user_parts_json, assistant_parts_json,
                                   conversation_state_json, usage_json, created_at_ms)
                VALUES ('t', 's', NULL, 'not json', '[]', '{}', NULL, 1)
                """
            )


def test_newer_schema_is_refused(tmp_path):
    db_path = tmp_path / "anchorline.db"
    with Store(db_path=db_path) as store:
        with store.transaction() as conn:
            conn.execute("UPDATE schema_version SET version = ?", (CURRENT_SCHEMA_VERSION + 1,))

    with pytest.raises(RuntimeError, match="newer"):
        Store(db_path=db_path)


def test_closed_store_rejects_use():
    store = Store()
    store.close()

    assert store.closed
    with pytest.raises(RuntimeError):
        with store.read():
            pass
    store.close()


def test_generate_id_prefix():
    ident = generate_id("turn")
    assert ident.startswith("turn_")
    assert len(ident) == len("turn_") + 32
