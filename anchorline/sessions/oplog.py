"""
Append-only session operation log.

Every session mutation writes exactly one entry here, in the same transaction
as the metadata change. Entries are never updated or deleted (except by the
session cascade), and ``seq`` is a store-wide AUTOINCREMENT, so replaying a
session's entries in ``seq`` order rebuilds its turn graph.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..errors import MalformedPayloadError
from ..store import Store, now_ms
from .parts import AssistantPart, ConversationState, Usage, UserPart

SESSION_CREATED = "session.created"
TURN_APPENDED = "turn.appended"
SESSION_CHECKOUT = "session.checkout"
SESSION_TITLE_SET = "session.title_set"
TURN_DELETED = "turn.deleted"


class SessionCreated(BaseModel):
    op_type: Literal["session.created"] = SESSION_CREATED
    project_id: str
    root_turn_id: str
    title: Optional[str] = None


class TurnAppended(BaseModel):
    op_type: Literal["turn.appended"] = TURN_APPENDED
    turn_id: str
    parent_turn_id: str
    user_parts: list[UserPart] = Field(default_factory=list)
    assistant_parts: list[AssistantPart] = Field(default_factory=list)
    conversation_state: ConversationState = Field(default_factory=ConversationState)
    usage: Optional[Usage] = None


class BranchSwitched(BaseModel):
    op_type: Literal["session.checkout"] = SESSION_CHECKOUT
    turn_id: str
    previous_turn_id: Optional[str] = None


class TitleSet(BaseModel):
    op_type: Literal["session.title_set"] = SESSION_TITLE_SET
    title: str


class TurnDeleted(BaseModel):
    op_type: Literal["turn.deleted"] = TURN_DELETED
    turn_id: str
    detached_children: list[str] = Field(default_factory=list)
    current_turn_id: str


OpPayload = Annotated[
    Union[SessionCreated, TurnAppended, BranchSwitched, TitleSet, TurnDeleted],
    Field(discriminator="op_type"),
]
_PAYLOAD: TypeAdapter[Any] = TypeAdapter(OpPayload)


@dataclass
class SessionOp:
    seq: int
    session_id: str
    op_type: str
    payload: Any
    created_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "session_id": self.session_id,
            "op_type": self.op_type,
            "payload": self.payload.model_dump(mode="json", exclude={"op_type"}),
            "created_at_ms": self.created_at_ms,
        }


def decode_payload(op_type: str, payload_json: str, seq: int | None = None) -> Any:
    where = f"op {seq}" if seq is not None else "op"
    try:
        data = json.loads(payload_json)
    except json.JSONDecodeError as exc:
        raise MalformedPayloadError(f"{where} payload is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedPayloadError(f"{where} payload must be an object")
    data["op_type"] = op_type
    try:
        return _PAYLOAD.validate_python(data)
    except ValidationError as exc:
        raise MalformedPayloadError(f"{where} ({op_type}) failed validation: {exc.errors()[0]['msg']}") from exc


def row_to_session_op(row: sqlite3.Row) -> SessionOp:
    return SessionOp(
        seq=row["seq"],
        session_id=row["session_id"],
        op_type=row["op_type"],
        payload=decode_payload(row["op_type"], row["payload_json"], seq=row["seq"]),
        created_at_ms=row["created_at_ms"],
    )


class OpReplay:
    """Lazy, restartable view over one session's log; each iteration re-queries."""

    def __init__(self, log: "SessionOpLog", session_id: str, after_seq: int | None = None):
        self.log = log
        self.session_id = session_id
        self.after_seq = after_seq

    def __iter__(self) -> Iterator[SessionOp]:
        cursor = self.after_seq
        while True:
            page = self.log.list_ops(self.session_id, after_seq=cursor, limit=self.log.page_size)
            yield from page
            if len(page) < self.log.page_size:
                return
            cursor = page[-1].seq


class SessionOpLog:
    def __init__(self, store: Store, page_size: int = 200):
        self.store = store
        self.page_size = page_size

    def append(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        payload: Any,
        created_at_ms: int | None = None,
    ) -> int:
        """Insert one entry using the caller's open transaction; returns its seq."""
        cursor = conn.execute(
            """
            INSERT INTO session_ops (session_id, op_type, payload_json, created_at_ms)
            VALUES (?, ?, ?, ?)
            """,
            (
                session_id,
                payload.op_type,
                payload.model_dump_json(exclude={"op_type"}),
                created_at_ms if created_at_ms is not None else now_ms(),
            ),
        )
        return int(cursor.lastrowid)

    def list_ops(self, session_id: str, after_seq: int | None = None, limit: int = 100) -> list[SessionOp]:
        with self.store.read() as conn:
            rows = conn.execute(
                """
                SELECT seq, session_id, op_type, payload_json, created_at_ms
                FROM session_ops
                WHERE session_id = ? AND seq > COALESCE(?, 0)
                ORDER BY seq ASC
                LIMIT ?
                """,
                (session_id, after_seq, limit),
            ).fetchall()
        return [row_to_session_op(row) for row in rows]

    def replay(self, session_id: str, after_seq: int | None = None) -> OpReplay:
        return OpReplay(self, session_id, after_seq=after_seq)
