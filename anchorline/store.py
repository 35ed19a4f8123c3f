"""
SQLite database handle for anchorline.

Schema:
- projects: One row per workspace root directory
- sessions: Conversation sessions scoped to a project
- turns: Conversation turns forming a tree per session
- session_ops: Append-only operation log (store-wide sequence)

The handle is opened once and passed explicitly to everything that needs it.
Writes go through ``transaction()``, which serialises writers and rolls back
on any exception.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator
from uuid import uuid4

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"
CURRENT_SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    root_dir TEXT NOT NULL UNIQUE,
    name TEXT,
    created_at_ms INTEGER NOT NULL,
    updated_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title TEXT,
    root_turn_id TEXT NOT NULL,
    current_turn_id TEXT NOT NULL,
    created_at_ms INTEGER NOT NULL,
    updated_at_ms INTEGER NOT NULL
);

-- parent_turn_id is nulled, not cascaded, when the parent is deleted
CREATE TABLE IF NOT EXISTS turns (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    parent_turn_id TEXT REFERENCES turns(id) ON DELETE SET NULL,
    user_parts_json TEXT NOT NULL CHECK (json_valid(user_parts_json)),
    assistant_parts_json TEXT NOT NULL CHECK (json_valid(assistant_parts_json)),
    conversation_state_json TEXT NOT NULL CHECK (json_valid(conversation_state_json)),
    usage_json TEXT CHECK (usage_json IS NULL OR json_valid(usage_json)),
    created_at_ms INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS session_ops (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    op_type TEXT NOT NULL,
    payload_json TEXT NOT NULL CHECK (json_valid(payload_json)),
    created_at_ms INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_project_updated ON sessions(project_id, updated_at_ms DESC);
CREATE INDEX IF NOT EXISTS idx_turns_session_created ON turns(session_id, created_at_ms ASC);
CREATE INDEX IF NOT EXISTS idx_turns_session_parent ON turns(session_id, parent_turn_id);
CREATE INDEX IF NOT EXISTS idx_session_ops_session_seq ON session_ops(session_id, seq);
"""


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


class Store:
    """Owns the single SQLite connection for the process."""

    def __init__(self, db_path: Path | str = IN_MEMORY):
        self.db_path = db_path if db_path == IN_MEMORY else Path(db_path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = self._open()
        self._ensure_schema()

    def _open(self) -> sqlite3.Connection:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if isinstance(self.db_path, Path):
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        logger.debug("opened store at %s", self.db_path)
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("store is closed")
        return self._conn

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("closed store at %s", self.db_path)

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        with self._lock:
            self.conn.executescript(SCHEMA)
            with self.transaction() as conn:
                self._run_migrations(conn)

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            return 0
        value = row[0]
        return int(value) if value is not None else 0

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        current = self._get_schema_version(conn)
        if current > CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"database schema v{current} is newer than this anchorline (v{CURRENT_SCHEMA_VERSION})"
            )
        if current == CURRENT_SCHEMA_VERSION:
            return
        # v0 -> v1: initial schema, created by SCHEMA above
        self._set_schema_version(conn, CURRENT_SCHEMA_VERSION)

    def schema_version(self) -> int:
        with self.read() as conn:
            return self._get_schema_version(conn)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """One write transaction; commits on success, rolls back on error."""
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @contextmanager
    def read(self) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            yield self.conn
