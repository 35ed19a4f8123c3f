"""
Edit operations and the wire format the tool layer submits them in.

Operations are plain frozen dataclasses; the request models below are the
only place untyped JSON is accepted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import InvalidBatchError
from .hashline import Anchor


@dataclass(frozen=True)
class Replace:
    anchor: Anchor
    new_content: str


@dataclass(frozen=True)
class InsertBefore:
    anchor: Anchor
    new_content: str


@dataclass(frozen=True)
class InsertAfter:
    anchor: Anchor
    new_content: str


@dataclass(frozen=True)
class Delete:
    anchor: Anchor


@dataclass(frozen=True)
class ReplaceRange:
    start: Anchor
    end: Anchor
    new_content: str


@dataclass(frozen=True)
class DeleteRange:
    start: Anchor
    end: Anchor


@dataclass(frozen=True)
class RewriteFile:
    new_content: str


@dataclass(frozen=True)
class MoveFile:
    dest_path: str
    overwrite: bool = False


@dataclass(frozen=True)
class DeleteFile:
    pass


EditOperation = Union[
    Replace, InsertBefore, InsertAfter, Delete, ReplaceRange, DeleteRange, RewriteFile, MoveFile, DeleteFile
]
LINE_OPERATIONS = (Replace, InsertBefore, InsertAfter, Delete, ReplaceRange, DeleteRange)
WHOLE_FILE_OPERATIONS = (RewriteFile, MoveFile, DeleteFile)


def operation_kind(op: EditOperation) -> str:
    return _KIND_BY_TYPE[type(op)]


def operation_anchors(op: EditOperation) -> tuple[Anchor, ...]:
    if isinstance(op, (Replace, InsertBefore, InsertAfter, Delete)):
        return (op.anchor,)
    if isinstance(op, (ReplaceRange, DeleteRange)):
        return (op.start, op.end)
    if isinstance(op, WHOLE_FILE_OPERATIONS):
        return ()
    raise TypeError(f"unknown edit operation: {op!r}")


# =========================================================================
# Wire format
# =========================================================================


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ReplaceRequest(_Request):
    kind: Literal["replace"]
    anchor: str
    new_content: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return Replace(Anchor.parse(self.anchor), self.new_content)


class InsertBeforeRequest(_Request):
    kind: Literal["insert_before"]
    anchor: str
    new_content: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return InsertBefore(Anchor.parse(self.anchor), self.new_content)


class InsertAfterRequest(_Request):
    kind: Literal["insert_after"]
    anchor: str
    new_content: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return InsertAfter(Anchor.parse(self.anchor), self.new_content)


class DeleteRequest(_Request):
    kind: Literal["delete"]
    anchor: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return Delete(Anchor.parse(self.anchor))


class ReplaceRangeRequest(_Request):
    kind: Literal["replace_range"]
    start_anchor: str
    end_anchor: str
    new_content: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return ReplaceRange(Anchor.parse(self.start_anchor), Anchor.parse(self.end_anchor), self.new_content)


class DeleteRangeRequest(_Request):
    kind: Literal["delete_range"]
    start_anchor: str
    end_anchor: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return DeleteRange(Anchor.parse(self.start_anchor), Anchor.parse(self.end_anchor))


class RewriteFileRequest(_Request):
    kind: Literal["rewrite_file"]
    new_content: str

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return RewriteFile(self.new_content)


class MoveFileRequest(_Request):
    kind: Literal["move_file"]
    dest_path: str = Field(min_length=1)
    overwrite: bool | None = None

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        overwrite = default_overwrite if self.overwrite is None else self.overwrite
        return MoveFile(self.dest_path, overwrite=overwrite)


class DeleteFileRequest(_Request):
    kind: Literal["delete_file"]

    def to_operation(self, default_overwrite: bool) -> EditOperation:
        return DeleteFile()


EditRequestItem = Annotated[
    Union[
        ReplaceRequest,
        InsertBeforeRequest,
        InsertAfterRequest,
        DeleteRequest,
        ReplaceRangeRequest,
        DeleteRangeRequest,
        RewriteFileRequest,
        MoveFileRequest,
        DeleteFileRequest,
    ],
    Field(discriminator="kind"),
]

_ITEM_ADAPTER: TypeAdapter[Any] = TypeAdapter(EditRequestItem)

_KIND_BY_TYPE: dict[type, str] = {
    Replace: "replace",
    InsertBefore: "insert_before",
    InsertAfter: "insert_after",
    Delete: "delete",
    ReplaceRange: "replace_range",
    DeleteRange: "delete_range",
    RewriteFile: "rewrite_file",
    MoveFile: "move_file",
    DeleteFile: "delete_file",
}


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part)
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def parse_edit_request(raw: Any, default_overwrite: bool = False) -> list[EditOperation]:
    """Parse the JSON edit request (a list of operation objects)."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidBatchError(f"edit request is not valid JSON: {exc}") from exc
    if isinstance(raw, dict) and "operations" in raw:
        raw = raw["operations"]
    if not isinstance(raw, list):
        raise InvalidBatchError("edit request must be a list of operations")

    operations: list[EditOperation] = []
    for index, item in enumerate(raw):
        try:
            request = _ITEM_ADAPTER.validate_python(item)
        except ValidationError as exc:
            raise InvalidBatchError(_first_error(exc), operation_index=index) from exc
        try:
            operations.append(request.to_operation(default_overwrite))
        except ValueError as exc:
            raise InvalidBatchError(str(exc), operation_index=index) from exc
    return operations
