"""
In-memory turn tree for one session.

States are turn ids. ``append`` adds a child under a parent (default: the
current turn) and moves ``current`` to it; ``switch`` moves ``current`` to
any turn in the session. The graph is a cache: ``from_ops`` rebuilds it
from the session op log.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import DanglingReferenceError, MalformedPayloadError
from .oplog import BranchSwitched, SessionCreated, SessionOp, TitleSet, TurnAppended, TurnDeleted


@dataclass
class TurnNode:
    id: str
    parent_id: str | None
    children: list[str] = field(default_factory=list)


class TurnGraph:
    def __init__(self, session_id: str, root_turn_id: str):
        self.session_id = session_id
        self.root_turn_id = root_turn_id
        self.current_turn_id = root_turn_id
        self.title: str | None = None
        self.last_seq = 0  # seq of the last op applied
        self._nodes: dict[str, TurnNode] = {root_turn_id: TurnNode(root_turn_id, None)}

    def __contains__(self, turn_id: object) -> bool:
        return turn_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def _require(self, turn_id: str) -> TurnNode:
        node = self._nodes.get(turn_id)
        if node is None:
            raise DanglingReferenceError(f"turn '{turn_id}' is not part of session '{self.session_id}'")
        return node

    def append(self, turn_id: str, parent_id: str | None = None) -> str:
        parent = self._require(parent_id or self.current_turn_id)
        if turn_id in self._nodes:
            raise ValueError(f"turn '{turn_id}' already exists in session '{self.session_id}'")
        self._nodes[turn_id] = TurnNode(turn_id, parent.id)
        parent.children.append(turn_id)
        self.current_turn_id = turn_id
        return turn_id

    def switch(self, turn_id: str) -> str:
        self._require(turn_id)
        self.current_turn_id = turn_id
        return turn_id

    def parent_of(self, turn_id: str) -> str | None:
        return self._require(turn_id).parent_id

    def children(self, turn_id: str) -> list[str]:
        return list(self._require(turn_id).children)

    def roots(self) -> list[str]:
        """The session root plus any turns detached by a parent deletion."""
        return [node.id for node in self._nodes.values() if node.parent_id is None]

    def path(self, turn_id: str | None = None) -> list[str]:
        """Turn ids from the branch root down to ``turn_id`` (default: current)."""
        chain: list[str] = []
        seen: set[str] = set()
        cursor: str | None = turn_id or self.current_turn_id
        while cursor is not None:
            if cursor in seen:
                raise DanglingReferenceError(f"cycle in session '{self.session_id}' at turn '{cursor}'")
            seen.add(cursor)
            chain.append(cursor)
            cursor = self._require(cursor).parent_id
        chain.reverse()
        return chain

    def detach(self, turn_id: str) -> list[str]:
        """Remove a turn; its children become roots. Returns the detached children."""
        if turn_id == self.root_turn_id:
            raise ValueError("the session root turn cannot be deleted")
        node = self._require(turn_id)
        if node.parent_id is not None:
            self._nodes[node.parent_id].children.remove(turn_id)
        for child_id in node.children:
            self._nodes[child_id].parent_id = None
        del self._nodes[turn_id]
        if self.current_turn_id == turn_id:
            self.current_turn_id = node.parent_id or self.root_turn_id
        return list(node.children)

    # =========================================================================
    # Replay
    # =========================================================================

    def apply(self, payload: Any) -> None:
        if isinstance(payload, TurnAppended):
            self.append(payload.turn_id, payload.parent_turn_id)
        elif isinstance(payload, BranchSwitched):
            self.switch(payload.turn_id)
        elif isinstance(payload, TitleSet):
            self.title = payload.title
        elif isinstance(payload, TurnDeleted):
            self.detach(payload.turn_id)
            if self.current_turn_id != payload.current_turn_id:
                self.switch(payload.current_turn_id)
        elif isinstance(payload, SessionCreated):
            raise MalformedPayloadError(f"duplicate session.created in session '{self.session_id}'")
        else:
            raise MalformedPayloadError(f"unknown op payload: {payload!r}")

    @classmethod
    def from_ops(cls, session_id: str, ops: Iterable[SessionOp]) -> "TurnGraph":
        graph: TurnGraph | None = None
        for op in ops:
            if graph is None:
                if not isinstance(op.payload, SessionCreated):
                    raise MalformedPayloadError(
                        f"session '{session_id}' log starts with {op.op_type}, expected session.created"
                    )
                graph = cls(session_id, op.payload.root_turn_id)
                graph.title = op.payload.title
            else:
                graph.apply(op.payload)
            graph.last_seq = op.seq
        if graph is None:
            raise MalformedPayloadError(f"session '{session_id}' has no op log entries")
        return graph
