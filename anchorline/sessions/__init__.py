"""Session history: projects, sessions, branching turn trees and the op log."""

from .graph import TurnGraph, TurnNode
from .models import Project, Session, Turn
from .oplog import (
    BranchSwitched,
    SessionCreated,
    SessionOp,
    SessionOpLog,
    TitleSet,
    TurnAppended,
    TurnDeleted,
)
from .parts import (
    AssistantMessage,
    ConversationState,
    ImagePart,
    SystemMessage,
    TextPart,
    ToolCallPart,
    ToolMessage,
    ToolResultPart,
    Usage,
    UserMessage,
    derive_session_title,
)
from .service import SessionStore

__all__ = [
    "AssistantMessage",
    "BranchSwitched",
    "ConversationState",
    "ImagePart",
    "Project",
    "Session",
    "SessionCreated",
    "SessionOp",
    "SessionOpLog",
    "SessionStore",
    "SystemMessage",
    "TextPart",
    "TitleSet",
    "ToolCallPart",
    "ToolMessage",
    "ToolResultPart",
    "Turn",
    "TurnAppended",
    "TurnDeleted",
    "TurnGraph",
    "TurnNode",
    "Usage",
    "UserMessage",
    "derive_session_title",
]
