"""
Session store: projects, sessions, turn trees, and the op log behind them.

Every mutating call runs in one SQLite transaction that writes both the
metadata rows and the matching op-log entry. The per-session TurnGraph is a
cache rebuilt from the op log on first use. After each commit, and on every
read through `graph()`, it catches up on ops it has not seen, including ops
written by other processes sharing the database.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from ..errors import (
    DanglingReferenceError,
    ProjectNotFoundError,
    SessionNotFoundError,
    TurnNotFoundError,
)
from ..store import Store, generate_id, now_ms
from .graph import TurnGraph
from .models import (
    PROJECT_COLUMNS,
    SESSION_COLUMNS,
    TURN_COLUMNS,
    Project,
    Session,
    Turn,
    row_to_project,
    row_to_session,
    row_to_turn,
)
from .oplog import (
    BranchSwitched,
    OpReplay,
    SessionCreated,
    SessionOp,
    SessionOpLog,
    TitleSet,
    TurnAppended,
    TurnDeleted,
)
from .parts import (
    ASSISTANT_PARTS,
    CONVERSATION_STATE,
    USAGE,
    USER_PARTS,
    ConversationState,
    TextPart,
    coerce,
    derive_session_title,
    encode,
)

logger = logging.getLogger(__name__)


def _as_parts(value: Any, adapter: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [TextPart(text=value)]
    return coerce(adapter, value, what)


class SessionStore:
    """Durable conversation history consumed by the orchestration loop."""

    def __init__(self, store: Store):
        self.store = store
        self.oplog = SessionOpLog(store)
        self._graphs: dict[str, TurnGraph] = {}
        self._last_ts = 0

    def _now(self) -> int:
        """Epoch ms, strictly increasing within this process."""
        ts = now_ms()
        if ts <= self._last_ts:
            ts = self._last_ts + 1
        self._last_ts = ts
        return ts

    # =========================================================================
    # Projects
    # =========================================================================

    def create_project(self, root_dir: Path | str, name: str | None = None) -> Project:
        """Create the project for ``root_dir``, or return the existing one."""
        root = str(Path(root_dir).expanduser().resolve())
        now = self._now()
        with self.store.transaction() as conn:
            row = conn.execute(
                f"SELECT {PROJECT_COLUMNS} FROM projects WHERE root_dir = ?", (root,)
            ).fetchone()
            if row is not None:
                project = row_to_project(row)
                if name is not None and project.name != name:
                    conn.execute(
                        "UPDATE projects SET name = ?, updated_at_ms = ? WHERE id = ?",
                        (name, now, project.id),
                    )
                    project.name = name
                    project.updated_at_ms = now
                return project

            project = Project(
                id=generate_id("proj"),
                root_dir=root,
                name=name if name is not None else Path(root).name,
                created_at_ms=now,
                updated_at_ms=now,
            )
            conn.execute(
                f"INSERT INTO projects ({PROJECT_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (project.id, project.root_dir, project.name, now, now),
            )
        logger.info("created project %s for %s", project.id, root)
        return project

    def get_project(self, project_id: str) -> Project | None:
        with self.store.read() as conn:
            row = conn.execute(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)).fetchone()
        return row_to_project(row) if row else None

    def project_by_root_dir(self, root_dir: Path | str) -> Project | None:
        root = str(Path(root_dir).expanduser().resolve())
        with self.store.read() as conn:
            row = conn.execute(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE root_dir = ?", (root,)).fetchone()
        return row_to_project(row) if row else None

    def list_projects(self) -> list[Project]:
        with self.store.read() as conn:
            rows = conn.execute(f"SELECT {PROJECT_COLUMNS} FROM projects ORDER BY updated_at_ms DESC").fetchall()
        return [row_to_project(row) for row in rows]

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(self, project_id: str, title: str | None = None) -> Session:
        """Create a session together with its (empty) root turn."""
        title = title.strip() if title and title.strip() else None
        now = self._now()
        session_id = generate_id("sess")
        root_turn_id = generate_id("turn")
        with self.store.transaction() as conn:
            exists = conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone()
            if exists is None:
                raise ProjectNotFoundError(project_id)
            conn.execute(
                f"INSERT INTO sessions ({SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session_id, project_id, title, root_turn_id, root_turn_id, now, now),
            )
            self._insert_turn(conn, Turn(id=root_turn_id, session_id=session_id, parent_turn_id=None, created_at_ms=now))
            seq = self.oplog.append(
                conn,
                session_id,
                SessionCreated(project_id=project_id, root_turn_id=root_turn_id, title=title),
                created_at_ms=now,
            )
            session = self._load_session(conn, session_id)
        graph = TurnGraph(session_id, root_turn_id)
        graph.title = title
        graph.last_seq = seq
        self._graphs[session_id] = graph
        logger.info("created session %s in project %s", session_id, project_id)
        return session

    def get_session(self, session_id: str) -> Session | None:
        with self.store.read() as conn:
            row = conn.execute(f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return row_to_session(row) if row else None

    def require_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self, project_id: str, limit: int = 50) -> list[Session]:
        """Sessions of a project, most recently updated first."""
        with self.store.read() as conn:
            rows = conn.execute(
                f"""
                SELECT {SESSION_COLUMNS} FROM sessions
                WHERE project_id = ?
                ORDER BY updated_at_ms DESC, created_at_ms DESC
                LIMIT ?
                """,
                (project_id, limit),
            ).fetchall()
        return [row_to_session(row) for row in rows]

    def set_title_if_missing(self, session_id: str, title: str) -> bool:
        title = title.strip()
        if not title:
            return False
        now = self._now()
        with self.store.transaction() as conn:
            self._load_session(conn, session_id)
            changed = self._set_title_if_missing(conn, session_id, title, now)
        if changed:
            self._after_commit(session_id)
        return changed

    def delete_session(self, session_id: str) -> bool:
        """Delete a session; its turns and op log go with it. Returns True if found."""
        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            found = cursor.rowcount > 0
        self._graphs.pop(session_id, None)
        if found:
            logger.info("deleted session %s", session_id)
        return found

    # =========================================================================
    # Turns
    # =========================================================================

    def append_turn(
        self,
        session_id: str,
        user_parts: Any,
        assistant_parts: Any = None,
        conversation_state: Any = None,
        usage: Any = None,
        parent_turn_id: str | None = None,
    ) -> Turn:
        """Append a turn under ``parent_turn_id`` (default: current) and make it current.

        ``user_parts`` / ``assistant_parts`` accept a plain string, part models,
        or part dicts. When ``conversation_state`` is omitted it is derived from
        the parent's snapshot plus this exchange.
        """
        user = _as_parts(user_parts, USER_PARTS, "user_parts")
        assistant = _as_parts(assistant_parts, ASSISTANT_PARTS, "assistant_parts")
        usage_model = coerce(USAGE, usage, "usage") if usage is not None else None
        now = self._now()
        turn_id = generate_id("turn")

        with self.store.transaction() as conn:
            session = self._load_session(conn, session_id)
            parent_id = parent_turn_id or session.current_turn_id
            parent = self._load_turn_in_session(conn, session_id, parent_id)
            if conversation_state is None:
                state = ConversationState(messages=[*parent.conversation_state.messages])
                turn_preview = Turn(id=turn_id, session_id=session_id, parent_turn_id=parent_id,
                                    user_parts=user, assistant_parts=assistant)
                state.messages.extend(turn_preview.messages())
            else:
                state = coerce(CONVERSATION_STATE, conversation_state, "conversation_state")

            turn = Turn(
                id=turn_id,
                session_id=session_id,
                parent_turn_id=parent_id,
                user_parts=user,
                assistant_parts=assistant,
                conversation_state=state,
                usage=usage_model,
                created_at_ms=now,
            )
            self._insert_turn(conn, turn)
            conn.execute(
                "UPDATE sessions SET current_turn_id = ?, updated_at_ms = ? WHERE id = ?",
                (turn_id, now, session_id),
            )
            payload = TurnAppended(
                turn_id=turn_id,
                parent_turn_id=parent_id,
                user_parts=user,
                assistant_parts=assistant,
                conversation_state=state,
                usage=usage_model,
            )
            self.oplog.append(conn, session_id, payload, created_at_ms=now)

            if not session.title:
                title = derive_session_title(user)
                if title:
                    self._set_title_if_missing(conn, session_id, title, now)

        self._after_commit(session_id)
        logger.debug("appended turn %s to session %s (parent %s)", turn_id, session_id, parent_id)
        return turn

    def switch_branch(self, session_id: str, turn_id: str) -> Session:
        """Point the session's current turn at any existing turn of the session."""
        now = self._now()
        with self.store.transaction() as conn:
            session = self._load_session(conn, session_id)
            self._load_turn_in_session(conn, session_id, turn_id)
            conn.execute(
                "UPDATE sessions SET current_turn_id = ?, updated_at_ms = ? WHERE id = ?",
                (turn_id, now, session_id),
            )
            payload = BranchSwitched(turn_id=turn_id, previous_turn_id=session.current_turn_id)
            self.oplog.append(conn, session_id, payload, created_at_ms=now)
            session = self._load_session(conn, session_id)
        self._after_commit(session_id)
        logger.debug("session %s switched to turn %s", session_id, turn_id)
        return session

    def delete_turn(self, session_id: str, turn_id: str) -> Session:
        """Delete one turn. Its children are detached (parent set to NULL), not deleted."""
        now = self._now()
        with self.store.transaction() as conn:
            session = self._load_session(conn, session_id)
            turn = self._load_turn_in_session(conn, session_id, turn_id)
            if turn_id == session.root_turn_id:
                raise ValueError("the session root turn cannot be deleted")
            children = [
                row[0]
                for row in conn.execute(
                    "SELECT id FROM turns WHERE parent_turn_id = ? ORDER BY created_at_ms, rowid",
                    (turn_id,),
                ).fetchall()
            ]
            current = session.current_turn_id
            if current == turn_id:
                current = turn.parent_turn_id or session.root_turn_id
            conn.execute("DELETE FROM turns WHERE id = ?", (turn_id,))
            conn.execute(
                "UPDATE sessions SET current_turn_id = ?, updated_at_ms = ? WHERE id = ?",
                (current, now, session_id),
            )
            payload = TurnDeleted(turn_id=turn_id, detached_children=children, current_turn_id=current)
            self.oplog.append(conn, session_id, payload, created_at_ms=now)
            session = self._load_session(conn, session_id)
        self._after_commit(session_id)
        if children:
            logger.warning("deleting turn %s detached %d child turn(s) in session %s", turn_id, len(children), session_id)
        return session

    def get_turn(self, turn_id: str) -> Turn | None:
        with self.store.read() as conn:
            row = conn.execute(f"SELECT {TURN_COLUMNS} FROM turns WHERE id = ?", (turn_id,)).fetchone()
        return row_to_turn(row) if row else None

    def require_turn(self, turn_id: str) -> Turn:
        turn = self.get_turn(turn_id)
        if turn is None:
            raise TurnNotFoundError(turn_id)
        return turn

    def current_turn(self, session_id: str) -> Turn:
        session = self.require_session(session_id)
        turn = self.get_turn(session.current_turn_id)
        if turn is None:
            raise DanglingReferenceError(
                f"session '{session_id}' points at missing turn '{session.current_turn_id}'"
            )
        return turn

    def children(self, session_id: str, turn_id: str) -> list[Turn]:
        with self.store.read() as conn:
            rows = conn.execute(
                f"""
                SELECT {TURN_COLUMNS} FROM turns
                WHERE session_id = ? AND parent_turn_id = ?
                ORDER BY created_at_ms, rowid
                """,
                (session_id, turn_id),
            ).fetchall()
        return [row_to_turn(row) for row in rows]

    def list_turns(self, session_id: str) -> list[Turn]:
        with self.store.read() as conn:
            rows = conn.execute(
                f"SELECT {TURN_COLUMNS} FROM turns WHERE session_id = ? ORDER BY created_at_ms, rowid",
                (session_id,),
            ).fetchall()
        return [row_to_turn(row) for row in rows]

    def turn_path(self, session_id: str, turn_id: str | None = None) -> list[Turn]:
        """Turns from the branch root down to ``turn_id`` (default: current turn)."""
        self.require_session(session_id)
        ids = self.graph(session_id).path(turn_id)
        placeholders = ", ".join("?" for _ in ids)
        with self.store.read() as conn:
            rows = conn.execute(
                f"SELECT {TURN_COLUMNS} FROM turns WHERE id IN ({placeholders})", ids
            ).fetchall()
        by_id = {row["id"]: row_to_turn(row) for row in rows}
        missing = [turn for turn in ids if turn not in by_id]
        if missing:
            raise DanglingReferenceError(f"turns missing from session '{session_id}': {', '.join(missing)}")
        return [by_id[turn] for turn in ids]

    def build_context(self, session_id: str, turn_id: str | None = None) -> list[Any]:
        """Messages for a reasoning step: every turn's exchange, root first."""
        messages: list[Any] = []
        for turn in self.turn_path(session_id, turn_id):
            messages.extend(turn.messages())
        return messages

    # =========================================================================
    # Op log
    # =========================================================================

    def list_ops(self, session_id: str, after_seq: int | None = None, limit: int = 100) -> list[SessionOp]:
        return self.oplog.list_ops(session_id, after_seq=after_seq, limit=limit)

    def replay(self, session_id: str, after_seq: int | None = None) -> OpReplay:
        return self.oplog.replay(session_id, after_seq=after_seq)

    def graph(self, session_id: str) -> TurnGraph:
        graph = self._graphs.get(session_id)
        if graph is None:
            return self.rebuild_graph(session_id)
        return self._catch_up(graph)

    def rebuild_graph(self, session_id: str) -> TurnGraph:
        """Rebuild the session's turn graph from scratch by replaying its op log."""
        self.require_session(session_id)
        graph = TurnGraph.from_ops(session_id, self.oplog.replay(session_id))
        self._graphs[session_id] = graph
        return graph

    # =========================================================================
    # Internals
    # =========================================================================

    def _catch_up(self, graph: TurnGraph) -> TurnGraph:
        """Apply ops logged after ``graph.last_seq``, whichever process wrote them."""
        try:
            for op in self.oplog.replay(graph.session_id, after_seq=graph.last_seq):
                graph.apply(op.payload)
                graph.last_seq = op.seq
        except (DanglingReferenceError, ValueError):
            logger.warning("turn graph cache for %s out of sync; rebuilding", graph.session_id)
            return self.rebuild_graph(graph.session_id)
        return graph

    def _after_commit(self, session_id: str) -> None:
        graph = self._graphs.get(session_id)
        if graph is not None:
            self._catch_up(graph)

    @staticmethod
    def _load_session(conn: sqlite3.Connection, session_id: str) -> Session:
        row = conn.execute(f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)
        return row_to_session(row)

    @staticmethod
    def _load_turn_in_session(conn: sqlite3.Connection, session_id: str, turn_id: str) -> Turn:
        row = conn.execute(f"SELECT {TURN_COLUMNS} FROM turns WHERE id = ?", (turn_id,)).fetchone()
        if row is None or row["session_id"] != session_id:
            raise DanglingReferenceError(f"turn '{turn_id}' is not part of session '{session_id}'")
        return row_to_turn(row)

    def _set_title_if_missing(self, conn: sqlite3.Connection, session_id: str, title: str, now: int) -> bool:
        cursor = conn.execute(
            """
            UPDATE sessions SET title = ?, updated_at_ms = ?
            WHERE id = ? AND (title IS NULL OR trim(title) = '')
            """,
            (title, now, session_id),
        )
        if cursor.rowcount == 0:
            return False
        self.oplog.append(conn, session_id, TitleSet(title=title), created_at_ms=now)
        return True

    @staticmethod
    def _insert_turn(conn: sqlite3.Connection, turn: Turn) -> None:
        conn.execute(
            f"INSERT INTO turns ({TURN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                turn.id,
                turn.session_id,
                turn.parent_turn_id,
                encode(USER_PARTS, turn.user_parts),
                encode(ASSISTANT_PARTS, turn.assistant_parts),
                encode(CONVERSATION_STATE, turn.conversation_state),
                encode(USAGE, turn.usage) if turn.usage is not None else None,
                turn.created_at_ms,
            ),
        )
