"""
Function-calling tool definitions and sandboxed execution for the edit engine.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .config import AnchorlineConfig
from .editing import AnchorValidator, EditApplier, FileView, MoveFile, parse_edit_request
from .editing.hashline import Anchor, format_hashlines
from .errors import AnchorlineError, InvalidBatchError

logger = logging.getLogger(__name__)

RECOVERABLE_KINDS = {"stale_anchor", "destination_exists", "invalid_batch", "not_found", "not_a_file"}


class ToolSafetyError(RuntimeError):
    """Raised when a tool invocation violates sandbox policy."""


EDIT_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "read_file",
            "description": (
                "Read a text file. Each line is returned as '<line>:<hash>|<content>'; "
                "use '<line>:<hash>' as the anchor when editing."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "offset": {"type": "integer", "description": "0-based first line"},
                    "limit": {"type": "integer", "description": "Maximum number of lines"},
                },
                "required": ["path"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "check_anchors",
            "description": "Check whether '<line>:<hash>' anchors still match the file",
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "anchors": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["path", "anchors"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "edit_file",
            "description": (
                "Apply a batch of anchored edits to one file. Anchors refer to the file as last read; "
                "if any anchor is stale nothing is written. Kinds: replace, insert_before, insert_after, "
                "delete, replace_range, delete_range, rewrite_file, move_file, delete_file."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "operations": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "kind": {"type": "string"},
                                "anchor": {"type": "string"},
                                "start_anchor": {"type": "string"},
                                "end_anchor": {"type": "string"},
                                "new_content": {"type": "string"},
                                "dest_path": {"type": "string"},
                                "overwrite": {"type": "boolean"},
                            },
                            "required": ["kind"],
                        },
                    },
                },
                "required": ["path", "operations"],
            },
        },
    },
]


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]
    error: str | None = None  # set when the arguments could not be decoded


class ToolExecutor:
    """Sandboxed anchored-edit tools, confined to one workspace root."""

    def __init__(self, workspace_root: Path, config: AnchorlineConfig | None = None):
        self.workspace_root = workspace_root.resolve()
        self.config = config or AnchorlineConfig(root=self.workspace_root)
        self.blocked_patterns = [p.lower() for p in self.config.tools.blocked_patterns]
        self.view = FileView(max_limit=self.config.read.max_limit)
        self.validator = AnchorValidator()
        self.applier = EditApplier(self.validator)
        self.accessed_paths: set[str] = set()

    def _safe_path(self, raw_path: str | None) -> Path:
        if not raw_path:
            raise ToolSafetyError("path is required")
        candidate = Path(raw_path).expanduser()
        if not candidate.is_absolute():
            candidate = (self.workspace_root / candidate).resolve()
        else:
            candidate = candidate.resolve()

        try:
            candidate.relative_to(self.workspace_root)
        except ValueError as exc:
            raise ToolSafetyError(f"Path escapes workspace root: {raw_path}") from exc

        lower_name = candidate.name.lower()
        if any(token in lower_name for token in self.blocked_patterns):
            raise ToolSafetyError(f"Blocked sensitive file: {raw_path}")
        return candidate

    def _rel(self, path: Path) -> str:
        return str(path.relative_to(self.workspace_root))

    def read_file(self, path: str, offset: int = 0, limit: int | None = None) -> dict[str, Any]:
        safe = self._safe_path(path)
        if limit is None:
            limit = self.config.read.default_limit
        lines = self.view.read(safe, offset=offset, limit=limit)
        total = self.view.total_lines(safe)
        rel = self._rel(safe)
        self.accessed_paths.add(rel)
        return {
            "path": rel,
            "line_count": total,
            "start_line": lines[0].index if lines else offset + 1,
            "end_line": lines[-1].index if lines else offset,
            "truncated": offset > 0 or (lines[-1].index if lines else offset) < total,
            "content": format_hashlines(lines),
        }

    def check_anchors(self, path: str, anchors: list[str]) -> dict[str, Any]:
        safe = self._safe_path(path)
        parsed: list[Anchor] = []
        for index, raw in enumerate(anchors):
            try:
                parsed.append(Anchor.parse(raw))
            except ValueError as exc:
                raise InvalidBatchError(str(exc), operation_index=index) from exc
        checks = self.validator.check(safe, parsed)
        return {
            "path": self._rel(safe),
            "all_valid": all(check.valid for check in checks),
            "anchors": [check.to_dict() for check in checks],
        }

    def edit_file(self, path: str, operations: Any) -> dict[str, Any]:
        safe = self._safe_path(path)
        batch = parse_edit_request(operations, default_overwrite=self.config.edit.allow_overwrite)
        batch = [
            replace(op, dest_path=str(self._safe_path(op.dest_path))) if isinstance(op, MoveFile) else op
            for op in batch
        ]
        result = self.applier.apply(safe, batch).to_dict()
        result["path"] = self._rel(safe)
        if result.get("dest_path"):
            result["dest_path"] = self._rel(Path(result["dest_path"]))
        self.accessed_paths.add(result["path"])
        return result

    @staticmethod
    def _parse_tool_call(raw_call: Any) -> ToolCall:
        call_id = getattr(raw_call, "id", None) or raw_call.get("id", "tool-call")
        func = getattr(raw_call, "function", None) or raw_call.get("function", {})
        name = getattr(func, "name", None) or func.get("name")
        raw_args = getattr(func, "arguments", None) or func.get("arguments", "{}")
        error = None
        if isinstance(raw_args, str):
            try:
                raw_args = json.loads(raw_args)
            except json.JSONDecodeError as exc:
                error = f"arguments are not valid JSON: {exc.msg} at position {exc.pos}"
        if error is None and not isinstance(raw_args, dict):
            error = f"arguments must be a JSON object, got {type(raw_args).__name__}"
        args = raw_args if error is None else {}
        return ToolCall(id=call_id, name=name or "", arguments=args, error=error)

    def _dispatch(self, parsed: ToolCall) -> dict[str, Any]:
        if parsed.error is not None:
            raise ValueError(parsed.error)
        args = parsed.arguments
        if parsed.name == "read_file":
            return self.read_file(
                path=str(args.get("path", "")),
                offset=int(args.get("offset", 0) or 0),
                limit=int(args["limit"]) if args.get("limit") is not None else None,
            )
        if parsed.name == "check_anchors":
            anchors = args.get("anchors") or []
            if not isinstance(anchors, list):
                raise ToolSafetyError("check_anchors requires a list of anchors")
            return self.check_anchors(path=str(args.get("path", "")), anchors=[str(a) for a in anchors])
        if parsed.name == "edit_file":
            return self.edit_file(path=str(args.get("path", "")), operations=args.get("operations"))
        raise ToolSafetyError(f"Unknown tool: {parsed.name}")

    def execute(self, raw_tool_call: Any) -> dict[str, Any]:
        parsed = self._parse_tool_call(raw_tool_call)
        try:
            result = self._dispatch(parsed)
        except AnchorlineError as exc:
            if exc.kind not in RECOVERABLE_KINDS:
                raise
            logger.info("tool %s returned %s: %s", parsed.name, exc.kind, exc)
            result = {"error": exc.to_dict()}
        except ValueError as exc:
            # undecodable arguments, or a negative offset/limit rejected by FileView
            result = {"error": {"kind": "invalid_argument", "message": str(exc), "recoverable": True}}

        return {
            "tool_call_id": parsed.id,
            "name": parsed.name,
            "result": result,
        }
