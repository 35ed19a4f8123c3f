"""Anchored edit engine."""

from .anchors import AnchorCheck, AnchorValidator
from .applier import EditApplier, EditResult
from .hashline import Anchor, FileLines, Line, line_hash
from .operations import (
    Delete,
    DeleteFile,
    DeleteRange,
    EditOperation,
    InsertAfter,
    InsertBefore,
    MoveFile,
    Replace,
    ReplaceRange,
    RewriteFile,
    parse_edit_request,
)
from .view import FileView

__all__ = [
    "Anchor",
    "AnchorCheck",
    "AnchorValidator",
    "Delete",
    "DeleteFile",
    "DeleteRange",
    "EditApplier",
    "EditOperation",
    "EditResult",
    "FileLines",
    "FileView",
    "InsertAfter",
    "InsertBefore",
    "Line",
    "MoveFile",
    "Replace",
    "ReplaceRange",
    "RewriteFile",
    "line_hash",
    "parse_edit_request",
]
