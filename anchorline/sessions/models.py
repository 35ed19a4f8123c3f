"""
Stored session records and their row mappers.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any

from .parts import (
    ASSISTANT_PARTS,
    CONVERSATION_STATE,
    USAGE,
    USER_PARTS,
    AssistantMessage,
    ConversationState,
    Usage,
    UserMessage,
    decode,
)

PROJECT_COLUMNS = "id, root_dir, name, created_at_ms, updated_at_ms"
SESSION_COLUMNS = "id, project_id, title, root_turn_id, current_turn_id, created_at_ms, updated_at_ms"
TURN_COLUMNS = (
    "id, session_id, parent_turn_id, user_parts_json, assistant_parts_json, "
    "conversation_state_json, usage_json, created_at_ms"
)


@dataclass
class Project:
    """Stored project (one per workspace root)."""

    id: str
    root_dir: str
    name: str | None
    created_at_ms: int
    updated_at_ms: int


@dataclass
class Session:
    """Stored session."""

    id: str
    project_id: str
    title: str | None
    root_turn_id: str
    current_turn_id: str
    created_at_ms: int
    updated_at_ms: int


@dataclass
class Turn:
    """Stored conversation turn."""

    id: str
    session_id: str
    parent_turn_id: str | None
    user_parts: list[Any] = field(default_factory=list)
    assistant_parts: list[Any] = field(default_factory=list)
    conversation_state: ConversationState = field(default_factory=ConversationState)
    usage: Usage | None = None
    created_at_ms: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.user_parts and not self.assistant_parts

    def messages(self) -> list[Any]:
        """This turn's exchange as a user message followed by an assistant message."""
        out: list[Any] = []
        if self.user_parts:
            out.append(UserMessage(parts=list(self.user_parts)))
        if self.assistant_parts:
            out.append(AssistantMessage(parts=list(self.assistant_parts)))
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "parent_turn_id": self.parent_turn_id,
            "user_parts": [part.model_dump(exclude_none=True) for part in self.user_parts],
            "assistant_parts": [part.model_dump(exclude_none=True) for part in self.assistant_parts],
            "conversation_state": self.conversation_state.model_dump(exclude_none=True),
            "usage": self.usage.model_dump(exclude_none=True) if self.usage else None,
            "created_at_ms": self.created_at_ms,
        }


def row_to_project(row: sqlite3.Row) -> Project:
    return Project(**dict(row))


def row_to_session(row: sqlite3.Row) -> Session:
    return Session(**dict(row))


def row_to_turn(row: sqlite3.Row) -> Turn:
    turn_id = row["id"]
    usage_raw = row["usage_json"]
    return Turn(
        id=turn_id,
        session_id=row["session_id"],
        parent_turn_id=row["parent_turn_id"],
        user_parts=decode(USER_PARTS, row["user_parts_json"], f"turn {turn_id} user_parts"),
        assistant_parts=decode(ASSISTANT_PARTS, row["assistant_parts_json"], f"turn {turn_id} assistant_parts"),
        conversation_state=decode(
            CONVERSATION_STATE, row["conversation_state_json"], f"turn {turn_id} conversation_state"
        ),
        usage=decode(USAGE, usage_raw, f"turn {turn_id} usage") if usage_raw is not None else None,
        created_at_ms=row["created_at_ms"],
    )
